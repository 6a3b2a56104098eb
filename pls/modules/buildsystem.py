# pls/modules/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - turn a source project into a distributable .pls archive

API:
  path = BuildCapture().add(project_path=".", draft=False, output_dir=None)

Flow:
  - detect the project kind (meta.detect_project)
  - work out where the build leaves the binary for that kind
  - if the binary is not there yet, run the kind's build steps
  - stage bin/<name> + info in a private workspace and pack it to
    <output_dir or packages_dir>/<name>.pls

Build recipes (draft builds use the debug profile):
  cargo   cargo build [--release]                      -> target/<profile>/<name>
  cmake   (in build/) cmake .. -DCMAKE_BUILD_TYPE=...  -> build/<name>
          make -j<jobs>
  meson   meson setup builddir --buildtype ...         -> builddir/<name>
          ninja -C builddir
  pls     none, pls.toml names the binary               -> <binary>
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from pls.modules.config import Config, get_config
from pls.modules.errors import BuildFailure, NotFound, PlsIOError
from pls.modules.fetcher import workspace
from pls.modules.logging import get_logger
from pls.modules.meta import DetectedProject, INFO_FILE, Manifest, detect_project, read_pls_binary
from pls.modules.pkgtool import PKG_EXT, pack

logger = get_logger("buildsystem")

STDERR_TAIL = 2000


def _safe_run(cmd: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> Tuple[int, str, str]:
    """Run command and capture output. Returns (rc, stdout, stderr)"""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), str(cwd) if cwd else None)
    p = subprocess.run(cmd, cwd=str(cwd) if cwd else None, env=(env or os.environ),
                       capture_output=True, text=True)
    return p.returncode, p.stdout or "", p.stderr or ""


@dataclass
class BuildStep:
    cmd: List[str]
    cwd: Path
    # directory to create before running (cmake's out-of-tree build dir)
    mkdir: bool = False


@dataclass
class BuildPlan:
    binary: Path
    steps: List[BuildStep] = field(default_factory=list)


# --- recipes ---
def plan_build(project: DetectedProject, draft: bool = False, jobs: int = 4) -> BuildPlan:
    root = Path(project.path)
    name = project.manifest.name
    if project.kind == "cargo":
        profile = "debug" if draft else "release"
        cmd = ["cargo", "build"] if draft else ["cargo", "build", "--release"]
        return BuildPlan(root / "target" / profile / name, [BuildStep(cmd, root)])
    if project.kind == "cmake":
        build_dir = root / "build"
        build_type = "Debug" if draft else "Release"
        return BuildPlan(build_dir / name, [
            BuildStep(["cmake", "..", f"-DCMAKE_BUILD_TYPE={build_type}"], build_dir, mkdir=True),
            BuildStep(["make", f"-j{jobs}"], build_dir),
        ])
    if project.kind == "meson":
        build_type = "debug" if draft else "release"
        return BuildPlan(root / "builddir" / name, [
            BuildStep(["meson", "setup", "builddir", "--buildtype", build_type], root),
            BuildStep(["ninja", "-C", "builddir"], root),
        ])
    if project.kind == "pls":
        try:
            content = Path(project.manifest_file).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PlsIOError(f"couldn't read pls.toml: {e}") from e
        binary = read_pls_binary(content)
        if not binary:
            raise NotFound("pls.toml needs 'binary' field")
        return BuildPlan(root / binary)
    raise NotFound(f"no build recipe for project kind {project.kind!r}")


def run_steps(steps: List[BuildStep]) -> None:
    for step in steps:
        tool = step.cmd[0]
        try:
            if step.mkdir:
                step.cwd.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlsIOError(f"couldn't create build dir {step.cwd}: {e}") from e
        try:
            rc, _, err = _safe_run(step.cmd, cwd=step.cwd)
        except OSError as e:
            raise BuildFailure(f"{tool} failed: {e}") from e
        if rc != 0:
            tail = err[-STDERR_TAIL:]
            raise BuildFailure(f"build failed: {tool} exited with status {rc}",
                               returncode=rc, stderr=tail)


class BuildCapture:
    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = cfg or get_config()
        self.jobs = int(self.cfg.get("build.jobs", 4) or 4)

    def stage(self, manifest: Manifest, binary: Path, staging: Path) -> None:
        try:
            (staging / "bin").mkdir(parents=True, exist_ok=True)
            shutil.copy2(binary, staging / "bin" / manifest.name)
            info = Manifest(name=manifest.name, version=manifest.version).to_info()
            (staging / INFO_FILE).write_text(info, encoding="utf-8")
        except OSError as e:
            raise PlsIOError(f"couldn't stage {manifest.name}: {e}") from e

    def add(self, project_path: Union[str, Path] = ".", draft: bool = False,
            output_dir: Optional[Union[str, Path]] = None) -> Path:
        """Build (if needed) and package the project at project_path. Returns the archive path."""
        project = detect_project(os.fspath(project_path))
        manifest = project.manifest
        plan = plan_build(project, draft=draft, jobs=self.jobs)

        if not plan.binary.is_file() and plan.steps:
            logger.info("building %s %s with %s...", "debug" if draft else "release",
                        manifest.name, project.kind)
            run_steps(plan.steps)
        if not plan.binary.is_file():
            raise NotFound(f"binary not found at {plan.binary}")

        out_dir = Path(output_dir) if output_dir else self.cfg.packages_dir()
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlsIOError(f"couldn't create output directory {out_dir} (need sudo?): {e}") from e
        out = out_dir / f"{manifest.name}{PKG_EXT}"

        with workspace("build") as staging:
            self.stage(manifest, plan.binary, staging)
            pack(staging, out)
        logger.info("%s v%s is ready: %s", manifest.name, manifest.version, out)
        return out
