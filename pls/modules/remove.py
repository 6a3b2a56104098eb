# pls/modules/remove.py
"""
remove.py - uninstall a package: delete its binaries, then its database entry
"""

from __future__ import annotations

import os
from typing import List, Optional

from pls.modules.config import Config, get_config
from pls.modules.db import PackageStore
from pls.modules.errors import NotFound, PlsIOError
from pls.modules.logging import get_logger

logger = get_logger("remove")


class Remover:
    def __init__(self, cfg: Optional[Config] = None, store: Optional[PackageStore] = None):
        self.cfg = cfg or get_config()
        self.store = store or PackageStore(self.cfg.db_dir())
        self.bin_dir = self.cfg.bin_dir()

    def _list_package_files(self, name: str) -> List[str]:
        # entries written before file tracking only know the package's own binary
        return self.store.installed_files(name) or [name]

    def remove(self, name: str) -> List[str]:
        """Remove name; returns the binaries actually deleted."""
        if not self.store.is_installed(name):
            raise NotFound(f"'{name}' isn't even installed")
        removed: List[str] = []
        for fname in self._list_package_files(name):
            target = self.bin_dir / os.path.basename(fname)
            if not os.path.lexists(target):
                logger.debug("%s already gone", target)
                continue
            try:
                os.remove(target)
            except OSError as e:
                raise PlsIOError(f"couldn't remove {target}: {e}") from e
            removed.append(str(target))
        self.store.remove(name)
        logger.info("removed %s", name)
        return removed
