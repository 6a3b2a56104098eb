# pls/modules/resolver.py
"""
resolver.py - turn a user-supplied identifier into a local .pls archive

Rules, first match wins:

  1. looks like a path (has a separator or ends in .pls): use it if it exists
  2. URL or *.deb (remote or local): convert the Debian package into the cache
  3. bare name listed in the repository index: download into the cache
  4. otherwise NotFound
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pls.modules.config import Config, get_config
from pls.modules.debconv import DEB_EXT, DebConverter, package_name_from
from pls.modules.errors import NotFound, PlsIOError
from pls.modules.fetcher import Fetcher, is_url
from pls.modules.logging import get_logger
from pls.modules.pkgtool import PKG_EXT
from pls.modules import repo_sync

logger = get_logger("resolver")


def looks_like_path(identifier: str) -> bool:
    # local .deb files go to the converter, not straight to unpack
    if is_url(identifier) or identifier.endswith(DEB_EXT):
        return False
    return "/" in identifier or os.sep in identifier or identifier.endswith(PKG_EXT)


class Resolver:
    def __init__(self, cfg: Optional[Config] = None, fetcher: Optional[Fetcher] = None,
                 converter: Optional[DebConverter] = None):
        self.cfg = cfg or get_config()
        self.fetcher = fetcher or Fetcher()
        self.converter = converter or DebConverter(cfg=self.cfg, fetcher=self.fetcher)
        self.cache_dir = self.cfg.cache_dir()

    def resolve_local(self, identifier: str) -> Optional[Path]:
        """Rule 1 only: the path if identifier names an existing file, else None."""
        if looks_like_path(identifier) and os.path.isfile(identifier):
            return Path(identifier)
        return None

    def from_repo(self, name: str) -> Optional[Path]:
        index = repo_sync.fetch_index(self.cfg.get("repo.url"), fetcher=self.fetcher)
        if name not in index.packages:
            return None
        logger.info("found %s in repo, downloading...", name)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlsIOError(f"couldn't create cache dir {self.cache_dir}: {e}") from e
        dest = self.cache_dir / f"{name}{PKG_EXT}"
        return self.fetcher.download(repo_sync.package_url(name, self.cfg.get("repo.url")), dest)

    def resolve(self, identifier: str) -> Path:
        if looks_like_path(identifier):
            path = self.resolve_local(identifier)
            if path is None:
                raise NotFound(f"couldn't find '{identifier}'")
            return path

        if is_url(identifier) or identifier.endswith(DEB_EXT):
            return self.converter.convert(identifier, package_name_from(identifier))

        path = self.from_repo(identifier)
        if path is not None:
            return path
        raise NotFound(
            f"couldn't find '{identifier}' in repo, try a direct .deb url "
            f"(e.g. pls install https://example.org/{identifier}.deb)"
        )
