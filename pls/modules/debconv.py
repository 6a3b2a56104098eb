# pls/modules/debconv.py
"""
debconv.py - turn Debian binary packages (.deb) into .pls archives

A .deb is an `ar` container holding debian-binary, control.tar.* and a
data.tar.* payload. Conversion:

  1. fetch/copy the .deb into a private scratch dir and run `ar x` on it
  2. pick the first payload in PAYLOAD_NAMES and extract it into a second dir
  3. copy every regular file directly under BIN_DIRS into a staging bin/,
     following relative symlinks that stay inside the extracted tree
  4. write a minimal info (Debian control data is not compatible) and pack

Nothing is written to the cache unless every step succeeds.
"""

from __future__ import annotations

import os
import gzip
import lzma
import zlib
import shutil
import tarfile
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

import zstandard as zstd

from pls.modules.config import Config, get_config
from pls.modules.errors import BrokenArchive, NotFound, PlsIOError
from pls.modules.fetcher import Fetcher, workspace
from pls.modules.logging import get_logger
from pls.modules.meta import INFO_FILE, Manifest
from pls.modules.pkgtool import PKG_EXT, pack

logger = get_logger("debconv")

DEB_EXT = ".deb"
# preference order when a .deb ships more than one payload
PAYLOAD_NAMES = ("data.tar.xz", "data.tar.zst", "data.tar.gz", "data.tar.bz2", "data.tar")
BIN_DIRS = ("usr/bin", "usr/local/bin", "bin")
PLACEHOLDER_VERSION = "1.0.0"


def _safe_run(cmd: List[str], cwd: Optional[Path] = None) -> Tuple[int, str, str]:
    """Run command and capture output. Returns (rc, stdout, stderr)"""
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), str(cwd) if cwd else None)
    p = subprocess.run(cmd, cwd=str(cwd) if cwd else None, capture_output=True, text=True)
    return p.returncode, p.stdout or "", p.stderr or ""


def package_name_from(identifier: str) -> str:
    """`https://x/pool/foo_1.2-1_amd64.deb` -> `foo`"""
    base = identifier.rstrip("/").split("/")[-1] or identifier
    if base.endswith(DEB_EXT):
        base = base[: -len(DEB_EXT)]
    return base.split("_")[0]


class DebConverter:
    def __init__(self, cfg: Optional[Config] = None, fetcher: Optional[Fetcher] = None):
        self.cfg = cfg or get_config()
        self.fetcher = fetcher or Fetcher()
        self.cache_dir = self.cfg.cache_dir()

    # -----------------------------
    # steps
    # -----------------------------
    def extract_outer(self, deb_path: Path, workdir: Path) -> None:
        try:
            rc, _, err = _safe_run(["ar", "x", deb_path.name], cwd=workdir)
        except FileNotFoundError:
            raise BrokenArchive("ar not found, install binutils") from None
        if rc != 0:
            raise BrokenArchive(f"failed to extract .deb: {err.strip() or 'ar exited ' + str(rc)}")

    @staticmethod
    def select_payload(workdir: Path) -> Path:
        for name in PAYLOAD_NAMES:
            candidate = workdir / name
            if candidate.is_file():
                return candidate
        raise BrokenArchive("couldn't find data.tar in .deb")

    @staticmethod
    def _wanted(member: tarfile.TarInfo, dest: Path) -> bool:
        if member.isfile() or member.isdir():
            return True
        if not member.issym() or os.path.isabs(member.linkname):
            return False
        # relative links are kept only when they resolve inside the tree
        target = os.path.normpath(os.path.join(str(dest), os.path.dirname(member.name), member.linkname))
        return target.startswith(str(dest) + os.sep)

    @classmethod
    def extract_payload(cls, payload: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        dest = Path(os.path.realpath(dest))
        try:
            if payload.name.endswith(".zst"):
                with open(payload, "rb") as fh, zstd.ZstdDecompressor().stream_reader(fh) as reader:
                    with tarfile.open(fileobj=reader, mode="r|") as tar:
                        for member in tar:
                            if cls._wanted(member, dest):
                                tar.extract(member, dest, filter="data")
            else:
                with tarfile.open(payload, mode="r:*") as tar:
                    for member in tar:
                        if cls._wanted(member, dest):
                            tar.extract(member, dest, filter="data")
        except (zstd.ZstdError, tarfile.TarError, EOFError, lzma.LZMAError, zlib.error) as e:
            raise BrokenArchive(f"failed to extract {payload.name}: {e}") from e
        except OSError as e:
            # gzip/bz2 report corrupt streams as OSError without an errno
            if isinstance(e, gzip.BadGzipFile) or e.errno is None:
                raise BrokenArchive(f"failed to extract {payload.name}: {e}") from e
            raise PlsIOError(f"failed to extract {payload.name}: {e}") from e

    @staticmethod
    def collect_binaries(tree: Path, bin_dir: Path) -> List[str]:
        bin_dir.mkdir(parents=True, exist_ok=True)
        root = os.path.realpath(tree)
        found: List[str] = []
        for rel in BIN_DIRS:
            src_dir = tree / rel
            if not src_dir.is_dir():
                continue
            for entry in sorted(os.listdir(src_dir)):
                src = src_dir / entry
                real = os.path.realpath(src)
                if not real.startswith(root + os.sep) or not os.path.isfile(real):
                    continue
                try:
                    shutil.copy2(real, bin_dir / entry)
                except OSError as e:
                    raise PlsIOError(f"couldn't copy {entry}: {e}") from e
                found.append(entry)
        return found

    # -----------------------------
    # public
    # -----------------------------
    def convert(self, source: str, name: Optional[str] = None) -> Path:
        """Convert the .deb at source (URL or path) into <cache_dir>/<name>.pls."""
        name = name or package_name_from(source)
        if not name or name.startswith(".") or os.sep in name:
            raise NotFound(f"couldn't derive a package name from '{source}'")
        logger.info("converting %s from debian...", name)

        with workspace("deb") as deb_dir, workspace("deb-build") as build_dir:
            deb_path = self.fetcher.download(source, deb_dir / "package.deb")
            self.extract_outer(deb_path, deb_dir)
            payload = self.select_payload(deb_dir)
            extract_dir = deb_dir / "extract"
            self.extract_payload(payload, extract_dir)

            binaries = self.collect_binaries(extract_dir, build_dir / "bin")
            if not binaries:
                raise NotFound(f"no binaries found in .deb for {name}")

            manifest = Manifest(name=name, version=PLACEHOLDER_VERSION)
            try:
                (build_dir / INFO_FILE).write_text(manifest.to_info(), encoding="utf-8")
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PlsIOError(f"couldn't stage {name}: {e}") from e
            out = self.cache_dir / f"{name}{PKG_EXT}"
            pack(build_dir, out)

        logger.info("converted deb to pls: %s (%s)", out, ", ".join(binaries))
        return out
