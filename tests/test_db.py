"""
Tests for pls.modules.db.PackageStore.
"""

import os

import pytest

from pls.modules.db import PackageStore
from pls.modules.errors import NotFound, PlsIOError
from pls.modules.meta import Manifest


def _record(store, name, version="1.0", deps=(), files=None):
    m = Manifest(name, version, list(deps))
    return store.record_install(m, m.to_info().encode(), files=files)


@pytest.fixture
def store(tmp_path):
    return PackageStore(tmp_path / "db")


class TestRecordInstall:
    def test_new_entry(self, store):
        assert _record(store, "hello", "1.0", files=["hello"]) is False
        assert store.is_installed("hello")
        assert store.get("hello") == Manifest("hello", "1.0", [])
        assert store.installed_files("hello") == ["hello"]

    def test_reinstall_overwrites_single_entry(self, store):
        _record(store, "hello", "1.0", files=["hello", "old-helper"])
        assert _record(store, "hello", "2.0", deps=["z"], files=["hello"]) is True
        assert [m.version for m in store.list_installed()] == ["2.0"]
        assert store.get("hello").dependencies == ["z"]
        assert store.installed_files("hello") == ["hello"]

    def test_no_staging_leftovers(self, store):
        _record(store, "hello")
        _record(store, "hello", "1.1")
        assert os.listdir(store.db_dir) == ["hello"]
        assert sorted(os.listdir(store.entry_dir("hello"))) == ["info"]

    def test_stores_exact_manifest_bytes(self, store):
        raw = b"name = hello\nversion = 1.0\nextra = kept\n"
        store.record_install(Manifest("hello", "1.0"), raw)
        assert (store.entry_dir("hello") / "info").read_bytes() == raw

    @pytest.mark.parametrize("bad", ["", ".", "..", ".hidden", "a/b"])
    def test_invalid_names_rejected(self, store, bad):
        with pytest.raises(PlsIOError):
            store.record_install(Manifest(bad, "1"), b"")

    def test_files_record_missing_means_empty(self, store):
        _record(store, "hello")
        assert store.installed_files("hello") == []


class TestQueries:
    def test_get_missing(self, store):
        with pytest.raises(NotFound):
            store.get("ghost")

    def test_is_installed_rejects_traversal(self, store, tmp_path):
        _record(store, "hello")
        assert not store.is_installed("../db")
        assert not store.is_installed("")


class TestListInstalled:
    def test_sorted_and_restartable(self, store):
        for name in ("zeta", "alpha", "mid"):
            _record(store, name)
        first = [m.name for m in store.list_installed()]
        second = [m.name for m in store.list_installed()]
        assert first == second == ["alpha", "mid", "zeta"]

    def test_empty_when_db_missing(self, store):
        assert list(store.list_installed()) == []

    def test_skips_corrupt_entries(self, store):
        _record(store, "good")
        bad = store.db_dir / "nameless"
        bad.mkdir()
        (bad / "info").write_text("version = 1.0\n")
        undecodable = store.db_dir / "binary"
        undecodable.mkdir()
        (undecodable / "info").write_bytes(b"\xff\xfe\x00garbage")
        (store.db_dir / "stray-file").write_text("not a directory")
        (store.db_dir / ".staging.abc123").mkdir()

        assert [m.name for m in store.list_installed()] == ["good"]

    def test_self_heals_entry_without_info(self, store):
        _record(store, "good")
        orphan = store.db_dir / "orphan"
        orphan.mkdir()
        assert [m.name for m in store.list_installed()] == ["good"]
        assert not orphan.exists()
        assert not store.is_installed("orphan")


class TestRemove:
    def test_remove(self, store):
        _record(store, "hello")
        store.remove("hello")
        assert not store.is_installed("hello")
        assert list(store.list_installed()) == []

    def test_remove_missing(self, store):
        with pytest.raises(NotFound, match="isn't even installed"):
            store.remove("ghost")
