"""
Shared test fixtures for the pls test suite.

  - cfg: Config rooted in a temporary directory (install root, db, cache,
    packages dir and scratch space all live under tmp_path) installed as the
    active config
  - make_pls: factory writing a real .pls archive from a name/version/binaries
  - write_raw_archive: zstd-compressed tar built member by member, for
    archives the packer would never produce
"""

import io
import os
import tarfile

import pytest
import zstandard as zstd

from pls.modules import config as config_mod
from pls.modules.pkgtool import pack


@pytest.fixture
def cfg(tmp_path, monkeypatch):
    for var in ("PLS_CONFIG", "PLS_ROOT", "PLS_REPO_URL"):
        monkeypatch.delenv(var, raising=False)
    root = tmp_path / "root"
    scratch = tmp_path / "scratch"
    root.mkdir()
    scratch.mkdir()
    conf = config_mod.from_dict({
        "paths": {"root": str(root), "tmp_dir": str(scratch)},
        "repo": {"url": "https://repo.example.org"},
    })
    config_mod.set_config(conf)
    yield conf
    config_mod.set_config(None)


@pytest.fixture
def scratch_dir(cfg):
    return cfg.tmp_dir()


@pytest.fixture
def make_pls(tmp_path):
    """Return a factory: make_pls(name, version, deps=(), binaries=None, info=True, dest=None)."""
    counter = {"n": 0}

    def _make(name, version="1.0.0", deps=(), binaries=None, info=True, with_bin=True, dest=None):
        counter["n"] += 1
        src = tmp_path / f"pkgsrc-{name}-{counter['n']}"
        src.mkdir()
        if info:
            lines = [f"name = {name}", f"version = {version}"]
            lines.extend(f"depend = {d}" for d in deps)
            (src / "info").write_text("\n".join(lines) + "\n")
        if with_bin:
            (src / "bin").mkdir()
            if binaries is None:
                binaries = {name: f"#!/bin/sh\necho {name} {version}\n"}
            for bname, content in binaries.items():
                path = src / "bin" / bname
                path.write_text(content)
                os.chmod(path, 0o755)
        out_dir = dest or (tmp_path / "built")
        os.makedirs(out_dir, exist_ok=True)
        out = os.path.join(out_dir, f"{name}.pls")
        pack(src, out)
        return out

    return _make


def write_raw_archive(path, members):
    """members: list of (TarInfo, bytes-or-None). Writes a zstd tar at path."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for info, data in members:
            if data is not None:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
            else:
                tar.addfile(info)
    with open(path, "wb") as fh:
        fh.write(zstd.ZstdCompressor(level=3).compress(buf.getvalue()))
    return path


def file_member(name, data, mode=0o644):
    info = tarfile.TarInfo(name)
    info.mode = mode
    return info, data


def symlink_member(name, target):
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    return info, None
