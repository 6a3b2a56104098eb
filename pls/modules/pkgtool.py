# pls/modules/pkgtool.py
"""
pkgtool.py - .pls archive codec and binary installation for pls

Features:
- pack: stream a directory tree into a zstandard-compressed tar (.pls)
- unpack: destructively replace a directory with an archive's contents,
  rejecting members that would land outside of it
- sha256_file: streaming checksum used by the repository scan
- PkgTool.install_bin: unpack a local archive, copy bin/* into the install
  root and record the package in the local store
- PkgTool.install / PkgTool.info: command-level entry points
"""

from __future__ import annotations

import os
import shutil
import tarfile
import hashlib
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import zstandard as zstd

from pls.modules.config import Config, get_config
from pls.modules.db import PackageStore, valid_name
from pls.modules.errors import AlreadyInstalled, BrokenArchive, NotFound, PlsIOError
from pls.modules.fetcher import workspace
from pls.modules.logging import get_logger
from pls.modules.meta import INFO_FILE, Manifest, parse_info

logger = get_logger("pkgtool")

PKG_EXT = ".pls"
ZSTD_LEVEL = 3

PathLike = Union[str, Path]


# -----------------------------
# Utilities
# -----------------------------
def sha256_file(path: PathLike) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _inside(root: str, target: str) -> bool:
    return target == root or target.startswith(root + os.sep)


def _checked_members(tar: tarfile.TarFile, dest: str) -> Iterator[tarfile.TarInfo]:
    root = os.path.realpath(dest)
    for member in tar:
        target = os.path.realpath(os.path.join(root, member.name))
        if os.path.isabs(member.name) or not _inside(root, target):
            raise BrokenArchive(f"archive member escapes destination: {member.name}")
        if member.issym():
            link = os.path.realpath(os.path.join(os.path.dirname(target), member.linkname))
            if os.path.isabs(member.linkname) or not _inside(root, link):
                raise BrokenArchive(f"archive link escapes destination: {member.name} -> {member.linkname}")
        elif member.islnk():
            link = os.path.realpath(os.path.join(root, member.linkname))
            if not _inside(root, link):
                raise BrokenArchive(f"archive link escapes destination: {member.name} -> {member.linkname}")
        elif member.isdev():
            raise BrokenArchive(f"archive contains a device node: {member.name}")
        yield member


# -----------------------------
# Archive codec
# -----------------------------
def pack(source_dir: PathLike, output_path: PathLike) -> None:
    """Serialize source_dir into a zstd-compressed tar at output_path (overwritten)."""
    source_dir = os.fspath(source_dir)
    output_path = os.fspath(output_path)
    if not os.path.isdir(source_dir):
        raise PlsIOError(f"package source {source_dir} is not a readable directory")
    cctx = zstd.ZstdCompressor(level=ZSTD_LEVEL)
    try:
        with open(output_path, "wb") as fh:
            with cctx.stream_writer(fh, closefd=False) as zw:
                with tarfile.open(fileobj=zw, mode="w|") as tar:
                    tar.add(source_dir, arcname=".")
    except OSError as e:
        if os.path.isfile(output_path):
            os.remove(output_path)
        raise PlsIOError(f"couldn't create package {output_path}: {e}") from e
    logger.debug("packed %s -> %s", source_dir, output_path)


def unpack(archive_path: PathLike, dest_dir: PathLike) -> None:
    """Replace dest_dir with the tree stored in archive_path."""
    archive_path = os.fspath(archive_path)
    dest_dir = os.fspath(dest_dir)
    if not os.path.isfile(archive_path):
        raise NotFound(f"couldn't find package {archive_path}")
    try:
        if os.path.lexists(dest_dir):
            shutil.rmtree(dest_dir)
        os.makedirs(dest_dir)
    except OSError as e:
        raise PlsIOError(f"couldn't prepare {dest_dir}: {e}") from e

    dctx = zstd.ZstdDecompressor()
    try:
        with open(archive_path, "rb") as fh:
            with dctx.stream_reader(fh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    for member in _checked_members(tar, dest_dir):
                        tar.extract(member, dest_dir, filter="data")
    except (zstd.ZstdError, tarfile.TarError, EOFError) as e:
        raise BrokenArchive(f"couldn't unpack {archive_path}: {e}") from e
    except OSError as e:
        raise PlsIOError(f"couldn't unpack {archive_path}: {e}") from e
    logger.debug("unpacked %s -> %s", archive_path, dest_dir)


def read_manifest(pkg_root: PathLike) -> Tuple[Manifest, bytes]:
    """Return (Manifest, raw info bytes) for an unpacked package tree."""
    info_path = os.path.join(os.fspath(pkg_root), INFO_FILE)
    try:
        with open(info_path, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        raise BrokenArchive("package seems broken, no info file found") from None
    except OSError as e:
        raise PlsIOError(f"couldn't read package info: {e}") from e
    manifest = parse_info(raw.decode("utf-8", errors="replace"))
    if not manifest.name:
        raise BrokenArchive("package info has no name")
    # checked before anything touches the install root
    if not valid_name(manifest.name):
        raise BrokenArchive(f"package info has an invalid name {manifest.name!r}")
    return manifest, raw


# -----------------------------
# PkgTool main class
# -----------------------------
class PkgTool:
    def __init__(self, cfg: Optional[Config] = None, store: Optional[PackageStore] = None, resolver=None):
        self.cfg = cfg or get_config()
        self.store = store or PackageStore(self.cfg.db_dir())
        self.bin_dir = self.cfg.bin_dir()
        if resolver is None:
            from pls.modules.resolver import Resolver
            resolver = Resolver(cfg=self.cfg)
        self.resolver = resolver

    def _copy_binaries(self, src_bin: str) -> List[str]:
        try:
            names = sorted(os.listdir(src_bin))
        except FileNotFoundError:
            raise BrokenArchive("package has no bin/ directory") from None
        except OSError as e:
            raise PlsIOError(f"couldn't read bin dir: {e}") from e
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlsIOError(f"couldn't create bin dir {self.bin_dir}: {e}") from e
        installed: List[str] = []
        for name in names:
            src = os.path.join(src_bin, name)
            if not os.path.isfile(src):
                continue
            dest = self.bin_dir / name
            try:
                if os.path.lexists(dest):
                    os.remove(dest)
                shutil.copy2(src, dest)
            except OSError as e:
                raise PlsIOError(f"couldn't copy {name}: {e}") from e
            installed.append(name)
        return installed

    def install_bin(self, package_path: PathLike) -> Manifest:
        """Install a local .pls archive into the install root."""
        with workspace("extract") as tmp:
            pkg_root = tmp / "pkg"
            unpack(package_path, pkg_root)
            manifest, raw = read_manifest(pkg_root)
            if self.store.is_installed(manifest.name):
                logger.info("%s", AlreadyInstalled(manifest.name))
            files = self._copy_binaries(os.path.join(pkg_root, "bin"))
            self.store.record_install(manifest, raw, files=files)
        logger.info("%s v%s installed", manifest.name, manifest.version)
        return manifest

    def install(self, identifier: str) -> Manifest:
        return self.install_bin(self.resolver.resolve(identifier))

    def info(self, identifier: str) -> Manifest:
        """Read the manifest of a local package archive without installing it."""
        path = self.resolver.resolve_local(identifier)
        if path is None:
            raise NotFound(f"couldn't find '{identifier}'")
        with workspace("info") as tmp:
            unpack(path, tmp / "pkg")
            manifest, _ = read_manifest(tmp / "pkg")
        return manifest
