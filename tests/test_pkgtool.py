"""
Tests for pls.modules.pkgtool: archive codec and binary installation.
"""

import hashlib
import os
import stat

import pytest

from conftest import file_member, symlink_member, write_raw_archive
from pls.modules.db import PackageStore
from pls.modules.errors import BrokenArchive, NotFound, PlsIOError
from pls.modules.pkgtool import PkgTool, pack, read_manifest, sha256_file, unpack


def _tree(root):
    out = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel = os.path.relpath(dirpath, root)
        for d in dirnames:
            out[os.path.normpath(os.path.join(rel, d))] = None
        for f in filenames:
            with open(os.path.join(dirpath, f), "rb") as fh:
                out[os.path.normpath(os.path.join(rel, f))] = fh.read()
    return out


# ---------------------------------------------------------------------------
# Archive codec
# ---------------------------------------------------------------------------

class TestArchiveCodec:
    def test_round_trip_preserves_tree(self, tmp_path):
        src = tmp_path / "src"
        (src / "bin").mkdir(parents=True)
        (src / "share" / "doc").mkdir(parents=True)
        (src / "info").write_text("name = hello\nversion = 1.0\n")
        (src / "bin" / "hello").write_bytes(b"\x7fELF fake binary")
        os.chmod(src / "bin" / "hello", 0o755)
        (src / "share" / "doc" / "README").write_text("docs")

        archive = tmp_path / "hello.pls"
        pack(src, archive)
        dest = tmp_path / "out"
        unpack(archive, dest)

        assert _tree(dest) == _tree(src)
        mode = os.stat(dest / "bin" / "hello").st_mode
        assert mode & stat.S_IXUSR

    def test_pack_overwrites_output(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "info").write_text("name = a\n")
        archive = tmp_path / "a.pls"
        archive.write_bytes(b"stale")
        pack(src, archive)
        dest = tmp_path / "out"
        unpack(archive, dest)
        assert (dest / "info").read_text() == "name = a\n"

    def test_unpack_replaces_existing_destination(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "info").write_text("name = a\n")
        archive = tmp_path / "a.pls"
        pack(src, archive)

        dest = tmp_path / "out"
        dest.mkdir()
        (dest / "stale").write_text("old")
        unpack(archive, dest)
        assert not (dest / "stale").exists()
        assert (dest / "info").exists()

    def test_pack_missing_source(self, tmp_path):
        with pytest.raises(PlsIOError):
            pack(tmp_path / "nope", tmp_path / "x.pls")

    def test_pack_unwritable_destination(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        with pytest.raises(PlsIOError):
            pack(src, tmp_path / "missing-dir" / "x.pls")

    def test_unpack_missing_archive(self, tmp_path):
        with pytest.raises(NotFound):
            unpack(tmp_path / "nope.pls", tmp_path / "out")

    def test_unpack_not_zstd(self, tmp_path):
        bad = tmp_path / "bad.pls"
        bad.write_bytes(b"this is definitely not a zstd frame" * 4)
        with pytest.raises(BrokenArchive):
            unpack(bad, tmp_path / "out")

    def test_unpack_zstd_but_not_tar(self, tmp_path):
        import zstandard as zstd
        bad = tmp_path / "bad.pls"
        bad.write_bytes(zstd.ZstdCompressor().compress(b"hello world" * 10))
        with pytest.raises(BrokenArchive):
            unpack(bad, tmp_path / "out")

    def test_unpack_rejects_parent_traversal(self, tmp_path):
        archive = write_raw_archive(tmp_path / "evil.pls", [
            file_member("info", b"name = evil\n"),
            file_member("../escaped.txt", b"gotcha"),
        ])
        dest = tmp_path / "deep" / "out"
        with pytest.raises(BrokenArchive):
            unpack(archive, dest)
        assert not (tmp_path / "deep" / "escaped.txt").exists()

    def test_unpack_rejects_absolute_symlink(self, tmp_path):
        archive = write_raw_archive(tmp_path / "evil.pls", [
            symlink_member("bin/passwd", "/etc/passwd"),
        ])
        with pytest.raises(BrokenArchive):
            unpack(archive, tmp_path / "out")

    def test_sha256_file(self, tmp_path):
        p = tmp_path / "blob"
        p.write_bytes(b"abc" * 100000)
        assert sha256_file(p) == hashlib.sha256(b"abc" * 100000).hexdigest()


class TestReadManifest:
    def test_reads_info(self, tmp_path):
        (tmp_path / "info").write_text("name = x\nversion = 2\ndepend = y\n")
        manifest, raw = read_manifest(tmp_path)
        assert manifest.name == "x"
        assert manifest.dependencies == ["y"]
        assert raw == b"name = x\nversion = 2\ndepend = y\n"

    def test_missing_info(self, tmp_path):
        with pytest.raises(BrokenArchive, match="no info file"):
            read_manifest(tmp_path)

    def test_nameless_info(self, tmp_path):
        (tmp_path / "info").write_text("version = 2\n")
        with pytest.raises(BrokenArchive):
            read_manifest(tmp_path)

    def test_info_name_must_be_storable(self, tmp_path):
        (tmp_path / "info").write_text("name = ../escape\nversion = 1\n")
        with pytest.raises(BrokenArchive, match="invalid name"):
            read_manifest(tmp_path)


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------

class TestInstall:
    def test_install_copies_binaries_and_records(self, cfg, make_pls):
        pkg = make_pls("hello", "1.2.0", deps=["libc"], binaries={"hello": "v1", "hello-helper": "h"})
        tool = PkgTool(cfg=cfg)
        manifest = tool.install(pkg)

        assert manifest.name == "hello"
        assert (cfg.bin_dir() / "hello").read_text() == "v1"
        assert (cfg.bin_dir() / "hello-helper").exists()
        store = PackageStore(cfg.db_dir())
        assert store.get("hello").version == "1.2.0"
        assert store.get("hello").dependencies == ["libc"]
        assert sorted(store.installed_files("hello")) == ["hello", "hello-helper"]

    def test_reinstall_is_idempotent(self, cfg, make_pls):
        tool = PkgTool(cfg=cfg)
        tool.install(make_pls("hello", "1.0", binaries={"hello": "one"}))
        tool.install(make_pls("hello", "2.0", binaries={"hello": "two"}))

        listed = list(PackageStore(cfg.db_dir()).list_installed())
        assert [(m.name, m.version) for m in listed] == [("hello", "2.0")]
        assert (cfg.bin_dir() / "hello").read_text() == "two"

    def test_install_keeps_executable_bit(self, cfg, make_pls):
        PkgTool(cfg=cfg).install(make_pls("hello"))
        assert os.stat(cfg.bin_dir() / "hello").st_mode & stat.S_IXUSR

    def test_install_without_info_records_nothing(self, cfg, make_pls):
        pkg = make_pls("noinfo", info=False)
        with pytest.raises(BrokenArchive):
            PkgTool(cfg=cfg).install(pkg)
        assert not PackageStore(cfg.db_dir()).is_installed("noinfo")
        assert not (cfg.bin_dir() / "noinfo").exists()

    def test_install_without_bin_dir(self, cfg, make_pls):
        pkg = make_pls("nobin", with_bin=False)
        with pytest.raises(BrokenArchive):
            PkgTool(cfg=cfg).install(pkg)
        assert not PackageStore(cfg.db_dir()).is_installed("nobin")

    def test_install_missing_path(self, cfg, tmp_path):
        with pytest.raises(NotFound):
            PkgTool(cfg=cfg).install(str(tmp_path / "missing.pls"))

    def test_scratch_space_is_cleaned(self, cfg, make_pls, scratch_dir):
        PkgTool(cfg=cfg).install(make_pls("hello"))
        with pytest.raises(BrokenArchive):
            PkgTool(cfg=cfg).install(make_pls("broken", info=False))
        assert os.listdir(scratch_dir) == []

    def test_info_does_not_install(self, cfg, make_pls):
        pkg = make_pls("peek", "0.9", deps=["a", "b"])
        manifest = PkgTool(cfg=cfg).info(pkg)
        assert (manifest.name, manifest.version, manifest.dependencies) == ("peek", "0.9", ["a", "b"])
        assert not PackageStore(cfg.db_dir()).is_installed("peek")

    def test_info_bare_name_is_not_looked_up(self, cfg):
        with pytest.raises(NotFound):
            PkgTool(cfg=cfg).info("somepackage")

    def test_invalid_name_installs_nothing(self, cfg, make_pls):
        pkg = make_pls(".tool", binaries={"tool": "#!/bin/sh\n"})
        with pytest.raises(BrokenArchive, match="invalid name"):
            PkgTool(cfg=cfg).install(pkg)
        assert not (cfg.bin_dir() / "tool").exists()
        assert list(PackageStore(cfg.db_dir()).list_installed()) == []
