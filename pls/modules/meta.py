# pls/modules/meta.py
# -*- coding: utf-8 -*-
"""
meta.py - manifest grammars and project detection for pls

Every package carries an `info` file; every source project carries one of four
build descriptions. All five are read with small line-oriented parsers that
produce the same Manifest record:

  info            key = value, repeatable `depend = x`
  Cargo.toml      [package] name/version, [dependencies] keys
  CMakeLists.txt  project(<name> ... VERSION <v>)
  meson.build     project('<name>', ..., version: '<v>')
  pls.toml        name/version/depend|deps (+ binary) with optional quotes

A Manifest with an empty name means "this grammar did not match".
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from pls.modules.errors import NotFound
from pls.modules.logging import get_logger

logger = get_logger("meta")

DEFAULT_VERSION = "0.1.0"
INFO_FILE = "info"


@dataclass
class Manifest:
    name: str = ""
    version: str = ""
    dependencies: List[str] = field(default_factory=list)

    def to_info(self) -> str:
        lines = [f"name = {self.name}", f"version = {self.version}"]
        lines.extend(f"depend = {d}" for d in self.dependencies)
        return "\n".join(lines) + "\n"


def _unquote(value: str) -> str:
    return value.strip().strip('"').strip("'")


# -----------------------------
# Grammars
# -----------------------------
def parse_info(content: str) -> Manifest:
    m = Manifest()
    for line in content.splitlines():
        key, sep, value = line.strip().partition(" = ")
        if not sep:
            continue
        if key == "name":
            m.name = value
        elif key == "version":
            m.version = value
        elif key == "depend":
            m.dependencies.append(value)
    return m


def parse_cargo_toml(content: str) -> Manifest:
    m = Manifest()
    section = ""
    for line in content.splitlines():
        line = line.strip()
        if line.startswith("["):
            section = line.strip("[]")
            continue
        key, sep, value = line.partition(" = ")
        if not sep:
            continue
        if section == "package":
            if key == "name":
                m.name = value.strip('"')
            elif key == "version":
                m.version = value.strip('"')
        elif section == "dependencies":
            m.dependencies.append(key.strip())
    return m


def parse_cmake(content: str) -> Manifest:
    m = Manifest()
    for line in content.splitlines():
        line = line.strip()
        if not line.lower().startswith("project("):
            continue
        inner = line[line.index("(") + 1:].rstrip(")").strip()
        parts = inner.split()
        if parts:
            m.name = parts[0].strip('"')
        for i, tok in enumerate(parts[:-1]):
            if tok.upper() == "VERSION":
                m.version = parts[i + 1].strip('"')
                break
    if not m.version:
        m.version = DEFAULT_VERSION
    return m


def _first_single_quoted(text: str) -> Optional[str]:
    start = text.find("'")
    if start < 0:
        return None
    end = text.find("'", start + 1)
    if end < 0:
        return None
    return text[start + 1:end]


def parse_meson(content: str) -> Manifest:
    m = Manifest()
    for line in content.splitlines():
        line = line.strip()
        if not line.startswith("project("):
            continue
        name = _first_single_quoted(line)
        if name is not None:
            m.name = name
        pos = line.find("version:")
        if pos >= 0:
            version = _first_single_quoted(line[pos + len("version:"):])
            if version is not None:
                m.version = version
    if not m.version:
        m.version = DEFAULT_VERSION
    return m


def parse_pls_toml(content: str) -> Manifest:
    m = Manifest()
    for line in content.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep:
            continue
        key = key.strip()
        value = _unquote(value)
        if key == "name":
            m.name = value
        elif key == "version":
            m.version = value
        elif key in ("depend", "deps"):
            if value.startswith("["):
                for dep in value.strip("[]").split(","):
                    dep = _unquote(dep)
                    if dep:
                        m.dependencies.append(dep)
            else:
                m.dependencies.append(value)
    if not m.version:
        m.version = DEFAULT_VERSION
    return m


def read_pls_binary(content: str) -> str:
    """Return the `binary` field of a pls.toml ('' when absent)."""
    binary = ""
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "binary":
            binary = _unquote(value)
    return binary


# -----------------------------
# Files
# -----------------------------
def load_info(path: str) -> Manifest:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return parse_info(f.read())
    except FileNotFoundError:
        raise NotFound(f"no info file at {path}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise NotFound(f"couldn't read info file {path}: {e}") from e


# -----------------------------
# Project detection
# -----------------------------
@dataclass(frozen=True)
class ProjectProbe:
    kind: str
    filename: str
    parse: Callable[[str], Manifest]


# fixed priority: first existing file that yields a name wins
PROJECT_PROBES: Tuple[ProjectProbe, ...] = (
    ProjectProbe("cargo", "Cargo.toml", parse_cargo_toml),
    ProjectProbe("cmake", "CMakeLists.txt", parse_cmake),
    ProjectProbe("meson", "meson.build", parse_meson),
    ProjectProbe("pls", "pls.toml", parse_pls_toml),
)


@dataclass
class DetectedProject:
    kind: str
    manifest: Manifest
    path: str

    @property
    def manifest_file(self) -> str:
        for probe in PROJECT_PROBES:
            if probe.kind == self.kind:
                return os.path.join(self.path, probe.filename)
        raise KeyError(self.kind)


def detect_project(path: str) -> DetectedProject:
    for probe in PROJECT_PROBES:
        candidate = os.path.join(path, probe.filename)
        if not os.path.isfile(candidate):
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError):
            logger.debug("skipping unreadable %s", candidate, exc_info=True)
            continue
        manifest = probe.parse(content)
        if manifest.name:
            logger.debug("detected %s project %s v%s", probe.kind, manifest.name, manifest.version)
            return DetectedProject(kind=probe.kind, manifest=manifest, path=path)
        logger.debug("%s has no package name, trying next", candidate)
    raise NotFound(
        "dunno what project this is, need Cargo.toml, CMakeLists.txt, meson.build, or pls.toml"
    )
