# pls/modules/logging.py
# -*- coding: utf-8 -*-
"""
pls logging

Features:
 - Console color formatter (stderr, so command output on stdout stays clean)
 - Rotating file handler (logging.file / max_size / backups)
 - Module-level configurable log levels (logging.module_levels)
 - LoggerAdapter per module that injects 'pls_module' into every record
 - Thread-safe reconfiguration from modules.config and level metrics
"""

from __future__ import annotations

import sys
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List

from pls.modules.config import DEFAULTS, get_config

_logger = logging.getLogger("pls.logging")


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = None, datefmt: str = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


# ----------------------
# Module-level filter for per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {
            m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()
        }

    def filter(self, record):
        if not hasattr(record, "pls_module"):
            record.pls_module = record.name
        mod = record.pls_module
        if mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True


# ----------------------
# PlsLogger (singleton)
# ----------------------
class PlsLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("pls")
        self._root.propagate = False
        self._handlers: List[logging.Handler] = []
        self._module_filter: Optional[ModuleLevelFilter] = None
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        # start from defaults; reload_config() picks up the loaded file
        self._apply_config(dict(DEFAULTS["logging"]))
        self._root.addFilter(self._count_levels_filter)
        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    # ----------------------
    # Configuration (apply/reload)
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()
            # handler-level so records propagated from child loggers (pls.config) are covered
            self._module_filter = ModuleLevelFilter(cfg.get("module_levels") or {})

            level = getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO)
            fmt = cfg.get("format") or "[%(levelname)s] [%(pls_module)s] %(message)s"
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(level)
            color = bool(cfg.get("color", True)) and hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=color))
            ch.addFilter(self._module_filter)
            self._root.addHandler(ch)
            self._handlers.append(ch)

            # rotating file handler
            if cfg.get("file"):
                try:
                    file_path = Path(cfg["file"]).expanduser()
                    file_path.parent.mkdir(parents=True, exist_ok=True)
                    max_bytes = int(cfg.get("max_size_bytes") or 10 * 1024 * 1024)
                    backups = int(cfg.get("backups", 3))
                    fh = logging.handlers.RotatingFileHandler(
                        str(file_path), maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
                    )
                    fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                    fh.setFormatter(logging.Formatter(
                        "%(asctime)s %(levelname)s [%(pls_module)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
                    ))
                    fh.addFilter(self._module_filter)
                    self._root.addHandler(fh)
                    self._handlers.append(fh)
                except OSError:
                    _logger.warning("logging: cannot open log file %s", cfg.get("file"), exc_info=True)

            # file handler may want DEBUG while console stays at INFO
            self._root.setLevel(min([level] + [h.level for h in self._handlers]))

    def reload_config(self):
        """Re-apply logging settings from the active modules.config Config."""
        self._apply_config(get_config().merged.get("logging", {}))

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'pls_module' into records."""
        base = logging.getLogger("pls")
        return logging.LoggerAdapter(base, {"pls_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = PlsLogger()


def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)


def reload_config():
    return _GLOBAL_LOGGER.reload_config()


def get_metrics() -> Dict[str, int]:
    return _GLOBAL_LOGGER.get_metrics()
