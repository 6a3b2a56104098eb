# pls/modules/upgrade.py
"""
upgrade.py - batch operations over the repository catalog

- update: reinstall every installed package whose catalog version differs
- bundle: install the members of a named catalog bundle, in order

Batches run strictly sequentially. A failing package is recorded and the
batch moves on; nothing is rolled back. PartialFailure is raised at the end
only if at least one package failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from pls.modules.config import Config, get_config
from pls.modules.db import PackageStore
from pls.modules.errors import PartialFailure, PlsError
from pls.modules.fetcher import Fetcher
from pls.modules.logging import get_logger
from pls.modules.pkgtool import PkgTool
from pls.modules import repo_sync

logger = get_logger("upgrade")


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, PlsError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> "BatchResult":
        if self.failed:
            raise PartialFailure(self)
        return self

    def to_dict(self):
        return {
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "errors": {k: str(v) for k, v in self.errors.items()},
        }


def run_batch(names: Iterable[str], install_one: Callable[[str], object]) -> BatchResult:
    """Apply install_one to each name in order, isolating per-item PlsErrors."""
    result = BatchResult()
    for name in names:
        try:
            install_one(name)
        except PlsError as e:
            logger.error("failed to install %s: %s", name, e)
            result.failed.append(name)
            result.errors[name] = e
            continue
        result.succeeded.append(name)
    return result


class Upgrader:
    def __init__(self, cfg: Optional[Config] = None, store: Optional[PackageStore] = None,
                 pkgtool: Optional[PkgTool] = None, fetcher: Optional[Fetcher] = None):
        self.cfg = cfg or get_config()
        self.fetcher = fetcher or Fetcher()
        self.store = store or PackageStore(self.cfg.db_dir())
        self.pkgtool = pkgtool or PkgTool(cfg=self.cfg, store=self.store)

    def _index(self) -> repo_sync.RepoIndex:
        return repo_sync.fetch_index(self.cfg.get("repo.url"), fetcher=self.fetcher)

    def plan(self) -> List[repo_sync.UpdateItem]:
        return repo_sync.compute_update_plan(self.store.list_installed(), self._index())

    def update(self) -> BatchResult:
        """Reinstall every outdated package; raises PartialFailure if any failed."""
        logger.info("checking for updates...")
        plan = self.plan()
        if not plan:
            logger.info("everything's up to date!")
            return BatchResult()
        for item in plan:
            logger.info("%s: %s -> %s", item.name, item.local_version, item.remote_version)
        logger.info("updating %d packages...", len(plan))
        result = run_batch([item.name for item in plan], self.pkgtool.install)
        return result.raise_for_failures()

    def bundle(self, bundle_name: str) -> BatchResult:
        """Install every member of bundle_name; raises PartialFailure if any failed."""
        members = repo_sync.resolve_bundle(self._index(), bundle_name)
        logger.info("installing bundle %s: %s", bundle_name, ", ".join(members))
        result = run_batch(members, self.pkgtool.install)
        return result.raise_for_failures()
