#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_logger.py — logging for hznfetch

Features:
 - hznfetch.<name> loggers sharing one set of handlers
 - console output with ANSI colors (only when attached to a TTY)
 - optional session log directory (session-YYYYmmdd-HHMMSS) holding a text
   log and a JSON-lines event log
 - structured events via log_event()/log_exception()
 - nothing touches the filesystem until configure() is given a log_dir
"""

from __future__ import annotations
import os
import sys
import json
import time
import logging
import datetime
import traceback
from pathlib import Path
from typing import Optional, Dict, Any, List

DEFAULT_LEVEL = os.environ.get("HZNFETCH_LOGGING_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

LEVEL_COLORS = {
    "DEBUG": "\033[36m",   # cyan
    "INFO": "\033[32m",    # green
    "WARNING": "\033[33m", # yellow
    "ERROR": "\033[31m",   # red
    "CRITICAL": "\033[41m" # red bg
}
RESET_COLOR = "\033[0m"


def _colorize(level: str, text: str) -> str:
    if not sys.stderr.isatty():
        return text
    color = LEVEL_COLORS.get(level.upper(), "")
    return f"{color}{text}{RESET_COLOR}" if color else text


class AnsiFormatter(logging.Formatter):
    def format(self, record):
        return _colorize(record.levelname, super().format(record))


class _StderrHandler(logging.StreamHandler):
    # always write to the current sys.stderr, even if it was swapped after import
    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


# -------------------------
# Logger Manager
# -------------------------
class HznfetchLoggerManager:
    def __init__(self, level: Optional[str] = None):
        self.level = getattr(logging, (level or DEFAULT_LEVEL).upper(), logging.INFO)
        self.session_id: Optional[str] = None
        self.session_dir: Optional[Path] = None
        self.json_log_path: Optional[Path] = None
        self.handlers: List[logging.Handler] = []
        self.loggers: Dict[str, logging.Logger] = {}
        ch = _StderrHandler()
        ch.setFormatter(AnsiFormatter(LOG_FORMAT))
        self.handlers.append(ch)

    def open_session(self, log_dir: Path):
        ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.session_id = f"session-{ts}"
        self.session_dir = Path(log_dir) / self.session_id
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self.json_log_path = self.session_dir / f"{self.session_id}.json"
        fh = logging.FileHandler(self.session_dir / f"{self.session_id}.log", encoding="utf-8")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        self._add_handler(fh)

    def _add_handler(self, handler: logging.Handler):
        self.handlers.append(handler)
        for logger in self.loggers.values():
            logger.addHandler(handler)

    def set_level(self, level: str):
        self.level = getattr(logging, level.upper(), logging.INFO)
        for logger in self.loggers.values():
            logger.setLevel(self.level)

    def get_logger(self, name: str) -> logging.Logger:
        if name in self.loggers:
            return self.loggers[name]
        logger = logging.getLogger(f"hznfetch.{name}")
        logger.setLevel(self.level)
        for h in self.handlers:
            if h not in logger.handlers:
                logger.addHandler(h)
        # handlers are ours; don't double print through root
        logger.propagate = False
        self.loggers[name] = logger
        return logger

    def emit_json(self, record: Dict[str, Any]):
        if self.json_log_path is None:
            return
        try:
            with open(self.json_log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError as e:
            self.get_logger("logger").warning("failed to append event to %s: %s", self.json_log_path, e)

    def close_session(self):
        for logger in self.loggers.values():
            for h in list(logger.handlers):
                if isinstance(h, logging.FileHandler):
                    logger.removeHandler(h)
        for h in [h for h in self.handlers if isinstance(h, logging.FileHandler)]:
            h.close()
            self.handlers.remove(h)
        self.session_id = None
        self.session_dir = None
        self.json_log_path = None


_manager = HznfetchLoggerManager()


# -------------------------
# Public API
# -------------------------
def configure(level: Optional[str] = None, log_dir: Optional[str] = None) -> Optional[str]:
    """
    Apply logging settings from config. Returns the session id when a
    log_dir was given (a new session is opened), else None.
    """
    if level:
        _manager.set_level(level)
    if log_dir:
        _manager.close_session()
        _manager.open_session(Path(log_dir))
        return _manager.session_id
    return None


def get_logger(name: str) -> logging.Logger:
    """
    Return a configured logger instance. Use like:
        log = get_logger("parts")
        log.info("Fetching %s", part_id)
    """
    return _manager.get_logger(name)


def log_event(component: str, stage: str, message: str, level: str = "info",
              extra: Optional[Dict[str, Any]] = None):
    """
    High-level event logging: text log plus a JSON line when a session is open.
    component: module name (manifest/parts/fetch)
    stage: stage name (fetch/verify/precheck/...)
    """
    lvl = getattr(logging, level.upper(), logging.INFO)
    get_logger(component).log(lvl, "[%s] %s", stage, message)
    _manager.emit_json({
        "ts": int(time.time()),
        "session": _manager.session_id,
        "component": component,
        "stage": stage,
        "level": level.upper(),
        "message": message,
        "extra": extra or {},
    })


def log_exception(component: str, stage: str, exc: BaseException, message: Optional[str] = None,
                  level: str = "error", extra: Optional[Dict[str, Any]] = None):
    """
    log_event() for a caught exception. The console line stays one line;
    the error type and traceback go into the JSON event.
    """
    extra = dict(extra or {})
    extra.setdefault("error", type(exc).__name__)
    tb = getattr(exc, "__traceback__", None)
    if tb:
        extra["traceback"] = "".join(traceback.format_tb(tb))
    log_event(component, stage, message or str(exc), level=level, extra=extra)


def close_session():
    _manager.close_session()


__all__ = ["configure", "get_logger", "log_event", "log_exception", "close_session"]
