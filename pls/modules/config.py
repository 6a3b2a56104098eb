# pls/modules/config.py
# -*- coding: utf-8 -*-
"""
pls central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize/coerce types (human sizes to bytes, paths)
- Validate structure and types, warn or error (fatal optional)
- Environment overrides for the install root and the repository URL
- Typed access via Config dataclass (get_config(), dotted get, path helpers)
"""

from __future__ import annotations

import os
import json
import logging
import threading
from pathlib import Path
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, List, Tuple, Union

import yaml

from pls import __version__

logger = logging.getLogger("pls.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "paths": {
        "root": "/",
        # null -> resolved beneath root (see helpers below)
        "db_dir": None,
        "packages_dir": None,
        "cache_dir": None,
        "tmp_dir": None,
    },
    "repo": {
        "url": "https://tostcra.github.io/aura-repo",
    },
    "fetcher": {
        "timeout": 60,
        "user_agent": f"pls/{__version__}",
    },
    "build": {
        "jobs": 4,
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 3,
        "module_levels": {},
    },
}

ENV_CONFIG = "PLS_CONFIG"
ENV_ROOT = "PLS_ROOT"
ENV_REPO_URL = "PLS_REPO_URL"


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

    # path helpers
    def root(self) -> Path:
        return Path(self.get("paths.root") or "/")

    def _under_root(self, key: str, *default_parts: str) -> Path:
        val = self.get(f"paths.{key}")
        if val:
            return Path(val)
        return self.root().joinpath(*default_parts)

    def db_dir(self) -> Path:
        return self._under_root("db_dir", "var", "lib", "pls", "db")

    def packages_dir(self) -> Path:
        return self._under_root("packages_dir", "var", "lib", "pls", "packages")

    def cache_dir(self) -> Path:
        return self._under_root("cache_dir", "var", "cache", "pls")

    def bin_dir(self) -> Path:
        return self.root() / "usr" / "bin"

    def tmp_dir(self) -> Optional[str]:
        return self.get("paths.tmp_dir") or None


# ----------------------------
# Module state
# ----------------------------
_CONFIG: Optional[Config] = None
_CONFIG_LOCK = threading.RLock()


# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    units = {"KB": 1024, "K": 1024, "MB": 1024**2, "M": 1024**2, "GB": 1024**3, "G": 1024**3}
    try:
        for suffix, mul in units.items():
            if s.endswith(suffix):
                num = float(s[: -len(suffix)].strip())
                return int(num * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None


def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get(ENV_CONFIG)
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "pls.yaml",
        Path.home() / ".config" / "pls" / "config.yaml",
        Path("/etc") / "pls" / "config.yaml",
    ])
    return candidates


def _load_file(path: Path) -> Dict[str, Any]:
    """Parse a config file; YAML unless the suffix says JSON."""
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"cannot read config {path}: {e}") from e
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(txt)
        else:
            data = yaml.safe_load(txt)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"cannot parse config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config {path} must be a mapping, got {type(data).__name__}")
    return data


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    paths = out.get("paths")
    if isinstance(paths, dict):
        for key in ("root", "db_dir", "packages_dir", "cache_dir", "tmp_dir"):
            if isinstance(paths.get(key), str) and paths[key]:
                paths[key] = _expand_path(paths[key])

    log_cfg = out.get("logging")
    if isinstance(log_cfg, dict):
        if isinstance(log_cfg.get("file"), str) and log_cfg["file"]:
            log_cfg["file"] = _expand_path(log_cfg["file"])
        if "max_size" in log_cfg:
            ms = _human_size_to_bytes(log_cfg["max_size"])
            if ms is not None:
                log_cfg["max_size_bytes"] = ms

    # Coerce numbers
    try:
        if isinstance(out.get("build"), dict) and "jobs" in out["build"]:
            out["build"]["jobs"] = int(out["build"]["jobs"])
        if isinstance(out.get("fetcher"), dict) and "timeout" in out["fetcher"]:
            out["fetcher"]["timeout"] = float(out["fetcher"]["timeout"])
    except (TypeError, ValueError):
        logger.debug("config: failed to coerce numeric fields", exc_info=True)

    if isinstance(out.get("repo"), dict) and isinstance(out["repo"].get("url"), str):
        out["repo"]["url"] = out["repo"]["url"].rstrip("/")
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(cfg)
    root = os.environ.get(ENV_ROOT)
    if root:
        out.setdefault("paths", {})["root"] = root
    url = os.environ.get(ENV_REPO_URL)
    if url:
        out.setdefault("repo", {})["url"] = url
    return out


def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list). Non-fatal warnings unless load() is called with fatal=True."""
    warnings: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            warnings.append(f"Unknown top-level config key: {k}")
    for section in DEFAULTS:
        if section in cfg and not isinstance(cfg[section], dict):
            warnings.append(f"{section} must be a mapping")
    build = cfg.get("build") if isinstance(cfg.get("build"), dict) else {}
    jobs = build.get("jobs")
    if not isinstance(jobs, int) or jobs < 1:
        warnings.append("build.jobs must be integer >= 1")
    repo = cfg.get("repo") if isinstance(cfg.get("repo"), dict) else {}
    if not isinstance(repo.get("url"), str) or not repo.get("url"):
        warnings.append("repo.url must be a non-empty string")
    fetcher = cfg.get("fetcher") if isinstance(cfg.get("fetcher"), dict) else {}
    timeout = fetcher.get("timeout")
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        warnings.append("fetcher.timeout must be a positive number")
    return (len(warnings) == 0, warnings)


# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        # an explicit path must exist; do not silently fall back
        p = Path(explicit)
        if not p.exists():
            raise ValueError(f"config file not found: {p}")
        return p
    for p in _find_candidates():
        if p.exists():
            return p
    return None


def load(explicit_path: Optional[str] = None, fatal: bool = False, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """
    Load and merge config, install it as the active config and return it.
    If fatal=True then structural validation failures raise ValueError.
    """
    global _CONFIG
    with _CONFIG_LOCK:
        cfg_path = _find_path(explicit_path)
        raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
        merged = _deep_merge(DEFAULTS, raw)
        merged = _apply_env_overrides(merged)
        if overrides:
            merged = _deep_merge(merged, overrides)
        normalized = _normalize_and_coerce(merged)
        ok, issues = _validate_structure(normalized)
        if not ok:
            msg = f"config: validation issues: {issues}"
            if fatal:
                logger.error(msg)
                raise ValueError(msg)
            logger.warning(msg)
        _CONFIG = Config(raw=raw, merged=normalized, path=cfg_path)
        logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
        return _CONFIG


def from_dict(data: Dict[str, Any]) -> Config:
    """Build a Config from an in-memory mapping without touching the filesystem."""
    merged = _normalize_and_coerce(_deep_merge(DEFAULTS, data))
    return Config(raw=deepcopy(data), merged=merged)


def get_config() -> Config:
    global _CONFIG
    with _CONFIG_LOCK:
        if _CONFIG is None:
            _CONFIG = load()
        return _CONFIG


def set_config(cfg: Optional[Config]) -> None:
    """Install cfg as the active config (None resets to lazy loading)."""
    global _CONFIG
    with _CONFIG_LOCK:
        _CONFIG = cfg
