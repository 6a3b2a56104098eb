# pls/modules/repo_sync.py
"""
repo_sync.py
- Typed model of the repository catalog (index.json) and its wire format
- Fetches the catalog from the configured repository
- Diffs installed packages against the catalog (update plan)
- Resolves named bundles to an ordered package list
- Repository side: scans packages/*.pls and regenerates index.json,
  preserving the bundles section
"""

from __future__ import annotations

import os
import json
import datetime
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pls.modules.config import get_config
from pls.modules.errors import MalformedIndex, NotFound, PlsIOError
from pls.modules.fetcher import Fetcher, workspace
from pls.modules.logging import get_logger
from pls.modules.meta import Manifest
from pls.modules.pkgtool import PKG_EXT, read_manifest, sha256_file, unpack

logger = get_logger("repo_sync")

INDEX_FILE = "index.json"
PACKAGES_SUBDIR = "packages"
SCHEMA_VERSION = 1


# -------------------------
# Catalog model
# -------------------------
def _expect(value: Any, kind, what: str):
    # bool is an int subclass; never accept it where a number is expected
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise MalformedIndex(f"index: {what} has the wrong type ({type(value).__name__})")
    return value


@dataclass
class PackageMeta:
    version: str
    size_bytes: int
    sha256_hex: str
    dependencies: List[str] = field(default_factory=list)
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "PackageMeta":
        _expect(data, dict, f"package '{name}'")
        try:
            version = _expect(data["version"], str, f"{name}.version")
            size = _expect(data["size"], int, f"{name}.size")
            sha = _expect(data["sha256"], str, f"{name}.sha256")
            desc = _expect(data["desc"], str, f"{name}.desc")
        except KeyError as e:
            raise MalformedIndex(f"index: package '{name}' is missing {e}") from None
        deps = _expect(data.get("deps", []), list, f"{name}.deps")
        for d in deps:
            _expect(d, str, f"{name}.deps entry")
        return cls(version=version, size_bytes=size, sha256_hex=sha,
                   dependencies=list(deps), description=desc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "size": self.size_bytes,
            "sha256": self.sha256_hex,
            "deps": list(self.dependencies),
            "desc": self.description,
        }


@dataclass
class RepoIndex:
    schema_version: int = SCHEMA_VERSION
    updated_date: str = ""
    packages: Dict[str, PackageMeta] = field(default_factory=dict)
    bundles: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "RepoIndex":
        _expect(data, dict, "document")
        try:
            version = _expect(data["version"], int, "version")
            updated = _expect(data["updated"], str, "updated")
            raw_pkgs = _expect(data["packages"], dict, "packages")
        except KeyError as e:
            raise MalformedIndex(f"index: missing field {e}") from None
        raw_bundles = _expect(data.get("bundles", {}), dict, "bundles")
        packages = {name: PackageMeta.from_dict(name, meta) for name, meta in raw_pkgs.items()}
        bundles: Dict[str, List[str]] = {}
        for bname, members in raw_bundles.items():
            _expect(members, list, f"bundle '{bname}'")
            for m in members:
                _expect(m, str, f"bundle '{bname}' entry")
            bundles[bname] = list(members)
        return cls(schema_version=version, updated_date=updated, packages=packages, bundles=bundles)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "RepoIndex":
        try:
            data = json.loads(text)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedIndex(f"invalid index.json: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.schema_version,
            "updated": self.updated_date,
            "packages": {name: meta.to_dict() for name, meta in self.packages.items()},
            "bundles": {name: list(members) for name, members in self.bundles.items()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"


def repo_url(url: Optional[str] = None) -> str:
    return (url or get_config().get("repo.url") or "").rstrip("/")


def package_url(name: str, url: Optional[str] = None) -> str:
    return f"{repo_url(url)}/{PACKAGES_SUBDIR}/{name}{PKG_EXT}"


def fetch_index(url: Optional[str] = None, fetcher: Optional[Fetcher] = None) -> RepoIndex:
    """Download and parse <repo>/index.json."""
    fetcher = fetcher or Fetcher()
    body = fetcher.get_bytes(f"{repo_url(url)}/{INDEX_FILE}")
    index = RepoIndex.from_json(body)
    logger.debug("index: %d packages, %d bundles (updated %s)",
                 len(index.packages), len(index.bundles), index.updated_date)
    return index


# -------------------------
# Update plan / bundles
# -------------------------
@dataclass(frozen=True)
class UpdateItem:
    name: str
    local_version: str
    remote_version: str


def compute_update_plan(local_entries: Iterable[Union[Manifest, Tuple[str, str]]],
                        index: RepoIndex) -> List[UpdateItem]:
    """
    Every local package whose catalog version differs from the installed one.
    Versions are compared as plain strings, so "1.0" and "1.0.0" differ and a
    lower remote version still counts as an update.
    """
    plan: List[UpdateItem] = []
    for entry in local_entries:
        if isinstance(entry, Manifest):
            name, version = entry.name, entry.version
        else:
            name, version = entry
        meta = index.packages.get(name)
        if meta is None:
            continue
        if meta.version != version:
            plan.append(UpdateItem(name=name, local_version=version, remote_version=meta.version))
    return plan


def resolve_bundle(index: RepoIndex, bundle_name: str) -> List[str]:
    members = index.bundles.get(bundle_name)
    if not members:
        raise NotFound(f"bundle '{bundle_name}' not found")
    return list(members)


# -------------------------
# Repository side (repo update)
# -------------------------
def scan_repository(repo_dir: Union[str, Path]) -> Optional[RepoIndex]:
    """Build a fresh catalog from <repo_dir>/packages/*.pls (None if there are none)."""
    repo_dir = Path(repo_dir)
    pkg_dir = repo_dir / PACKAGES_SUBDIR
    if not pkg_dir.is_dir():
        raise NotFound(f"no {PACKAGES_SUBDIR}/ directory in {repo_dir}")
    try:
        archives = sorted(p for p in pkg_dir.iterdir() if p.suffix == PKG_EXT and p.is_file())
    except OSError as e:
        raise PlsIOError(f"couldn't list {pkg_dir}: {e}") from e
    if not archives:
        return None

    index = RepoIndex(updated_date=datetime.date.today().isoformat())
    for archive in archives:
        try:
            size = archive.stat().st_size
            digest = sha256_file(archive)
        except OSError as e:
            raise PlsIOError(f"couldn't read {archive}: {e}") from e
        with workspace("scan") as tmp:
            unpack(archive, tmp / "pkg")
            manifest, _ = read_manifest(tmp / "pkg")
        index.packages[manifest.name] = PackageMeta(
            version=manifest.version,
            size_bytes=size,
            sha256_hex=digest,
            dependencies=list(manifest.dependencies),
            description=f"{manifest.name} package",
        )
        logger.info("added %s v%s", manifest.name, manifest.version)

    existing = repo_dir / INDEX_FILE
    if existing.is_file():
        try:
            index.bundles = RepoIndex.from_json(existing.read_bytes()).bundles
        except (MalformedIndex, OSError):
            logger.warning("existing %s is unreadable, bundles not preserved", existing)
    return index


def update_repository(repo_dir: Union[str, Path] = ".") -> Optional[RepoIndex]:
    """Regenerate <repo_dir>/index.json from the archives under packages/."""
    index = scan_repository(repo_dir)
    if index is None:
        logger.warning("no packages found")
        return None
    target = Path(repo_dir) / INDEX_FILE
    tmp = target.with_name(f".{INDEX_FILE}.tmp")
    try:
        tmp.write_text(index.to_json(), encoding="utf-8")
        os.replace(tmp, target)
    except OSError as e:
        if tmp.exists():
            tmp.unlink()
        raise PlsIOError(f"couldn't write {target}: {e}") from e
    logger.info("updated %s with %d packages", INDEX_FILE, len(index.packages))
    return index
