# pls/modules/db.py
"""
db.py - local package database for pls

Layout (one directory per installed package):

    <db_dir>/<name>/info     copy of the package's info manifest
    <db_dir>/<name>/files    binaries placed under the install root (optional)

The existence of <db_dir>/<name> is the only "is installed" predicate, so an
entry directory must never appear without its info file. New entries are
assembled in a hidden staging directory and renamed into place in one step;
existing entries have their files replaced via temp file + os.replace.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional, Union

from pls.modules.errors import NotFound, PlsIOError
from pls.modules.logging import get_logger
from pls.modules.meta import INFO_FILE, Manifest, load_info

logger = get_logger("db")

FILES_RECORD = "files"


def valid_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and not name.startswith(".") \
        and "/" not in name and os.sep not in name


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class PackageStore:
    """Directory-backed record of installed packages, keyed by name."""

    def __init__(self, db_dir: Union[str, Path]):
        self.db_dir = Path(db_dir)

    def entry_dir(self, name: str) -> Path:
        return self.db_dir / name

    # ------------------------
    # Queries
    # ------------------------
    def is_installed(self, name: str) -> bool:
        if not valid_name(name):
            return False
        return self.entry_dir(name).is_dir()

    def get(self, name: str) -> Manifest:
        if not self.is_installed(name):
            raise NotFound(f"'{name}' isn't installed")
        manifest = load_info(str(self.entry_dir(name) / INFO_FILE))
        if not manifest.name:
            raise NotFound(f"'{name}' has a corrupt database entry")
        return manifest

    def installed_files(self, name: str) -> List[str]:
        record = self.entry_dir(name) / FILES_RECORD
        try:
            text = record.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PlsIOError(f"couldn't read file list of {name}: {e}") from e
        return [line.strip() for line in text.splitlines() if line.strip()]

    def list_installed(self) -> Iterator[Manifest]:
        """Yield every valid entry in name order; each call starts a fresh scan."""
        try:
            names = sorted(os.listdir(self.db_dir))
        except FileNotFoundError:
            return
        except OSError as e:
            raise PlsIOError(f"couldn't read package database: {e}") from e
        for name in names:
            if not valid_name(name):
                continue
            entry = self.entry_dir(name)
            if not entry.is_dir():
                continue
            info = entry / INFO_FILE
            if not info.exists():
                # left behind by an interrupted install
                logger.warning("removing corrupt database entry %s (no info file)", name)
                shutil.rmtree(entry, ignore_errors=True)
                continue
            try:
                manifest = load_info(str(info))
            except NotFound:
                logger.debug("skipping unreadable entry %s", name, exc_info=True)
                continue
            if not manifest.name:
                logger.debug("skipping entry %s with unparsable info", name)
                continue
            yield manifest

    # ------------------------
    # Mutations
    # ------------------------
    def record_install(self, manifest: Manifest, manifest_bytes: bytes, files: Optional[List[str]] = None) -> bool:
        """
        Create or overwrite the entry for manifest.name.
        Returns True when an entry already existed (a reinstall).
        """
        name = manifest.name
        if not valid_name(name):
            raise PlsIOError(f"invalid package name {name!r}")
        entry = self.entry_dir(name)
        files_data = ("".join(f"{f}\n" for f in files).encode("utf-8")) if files is not None else None
        try:
            self.db_dir.mkdir(parents=True, exist_ok=True)
            if entry.is_dir():
                logger.debug("%s already has a database entry, overwriting", name)
                _atomic_write_bytes(entry / INFO_FILE, manifest_bytes)
                if files_data is not None:
                    _atomic_write_bytes(entry / FILES_RECORD, files_data)
                return True

            staging = Path(tempfile.mkdtemp(prefix=f".{name}.", dir=str(self.db_dir)))
            try:
                (staging / INFO_FILE).write_bytes(manifest_bytes)
                if files_data is not None:
                    (staging / FILES_RECORD).write_bytes(files_data)
                os.chmod(staging, 0o755)
                os.replace(staging, entry)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise
        except OSError as e:
            raise PlsIOError(f"couldn't save package info for {name}: {e}") from e
        logger.debug("recorded %s v%s", name, manifest.version)
        return False

    def remove(self, name: str) -> None:
        if not self.is_installed(name):
            raise NotFound(f"'{name}' isn't even installed")
        try:
            shutil.rmtree(self.entry_dir(name))
        except OSError as e:
            raise PlsIOError(f"couldn't remove {name} from db: {e}") from e
        logger.debug("removed database entry %s", name)
