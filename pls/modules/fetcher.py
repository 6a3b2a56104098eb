# pls/modules/fetcher.py
"""
fetcher.py - download and scratch-space layer for pls

Features:
- Fetcher: HTTP(S) GET into memory (get_bytes) or streamed to disk (download)
- Local paths are copied instead of downloaded, so callers can treat URLs and
  files the same way
- Downloads land in a temp file next to the destination and are moved into
  place with os.replace
- workspace(): private, per-invocation scratch directories that are removed on
  every exit path
- Every transport failure surfaces as errors.NetworkError; there are no retries
"""

from __future__ import annotations

import os
import shutil
import tempfile
import contextlib
from pathlib import Path
from typing import Iterator, Optional, Union

import requests

from pls.modules.config import get_config
from pls.modules.errors import NetworkError, NotFound, PlsIOError
from pls.modules.logging import get_logger

logger = get_logger("fetcher")

CHUNK_SIZE = 1024 * 1024


# -----------------------------------------------------------------------
# Scratch space
# -----------------------------------------------------------------------
@contextlib.contextmanager
def workspace(prefix: str = "work") -> Iterator[Path]:
    """Yield a fresh private directory; it is removed however the block exits."""
    try:
        path = tempfile.mkdtemp(prefix=f"pls-{prefix}-", dir=get_config().tmp_dir())
    except OSError as e:
        raise PlsIOError(f"couldn't create scratch directory: {e}") from e
    logger.debug("workspace %s created", path)
    try:
        yield Path(path)
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("workspace %s removed", path)


def is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


# -----------------------------------------------------------------------
# Fetcher
# -----------------------------------------------------------------------
class Fetcher:
    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        cfg = get_config()
        self.timeout = timeout or cfg.get("fetcher.timeout", 60)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", cfg.get("fetcher.user_agent", "pls"))

    def _get(self, url: str, stream: bool = False) -> requests.Response:
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(url, timeout=self.timeout, stream=stream)
        except requests.RequestException as e:
            raise NetworkError(f"couldn't reach {url}: {e}") from e
        if not resp.ok:
            resp.close()
            raise NetworkError(f"failed to download {url}: HTTP {resp.status_code}")
        return resp

    def get_bytes(self, url: str) -> bytes:
        """Return the body of url or raise NetworkError."""
        resp = self._get(url)
        try:
            return resp.content
        except requests.RequestException as e:
            raise NetworkError(f"download of {url} interrupted: {e}") from e
        finally:
            resp.close()

    def download(self, source: str, dest: Union[str, Path]) -> Path:
        """
        Fetch source (URL or local path) into dest, overwriting it.
        Returns the destination path.
        """
        dest = Path(dest)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlsIOError(f"couldn't create {dest.parent}: {e}") from e

        if not is_url(source):
            if not os.path.isfile(source):
                raise NotFound(f"couldn't find '{source}'")
            try:
                shutil.copyfile(source, dest)
            except OSError as e:
                raise PlsIOError(f"couldn't copy {source}: {e}") from e
            return dest

        tmp = dest.with_name(f".{dest.name}.part")
        resp = self._get(source, stream=True)
        try:
            with open(tmp, "wb") as f:
                for chunk in resp.iter_content(CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
            os.replace(tmp, dest)
        except requests.RequestException as e:
            raise NetworkError(f"download of {source} interrupted: {e}") from e
        except OSError as e:
            raise PlsIOError(f"couldn't write {dest}: {e}") from e
        finally:
            resp.close()
            if tmp.exists():
                tmp.unlink()
        logger.info("downloaded %s -> %s (%d bytes)", source, dest, dest.stat().st_size)
        return dest
