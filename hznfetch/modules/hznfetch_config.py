#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_config.py — config loader for hznfetch

Features:
 - hierarchical load: defaults, system file, user file (or explicit path),
   env overrides (HZNFETCH_<SECTION>_<KEY>)
 - TOML via tomllib
 - credential table ([credentials."<url prefix>"] username/password)
 - FetchConfig: the explicit record handed to pkg_fetch
 - summary() with passwords redacted for display
"""

from __future__ import annotations
import os
import copy
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from hznfetch_errors import ConfigurationError
from hznfetch_logger import get_logger

log = get_logger("config")

DEFAULT_SYS_CONFIG = Path("/etc/hznfetch/config.toml")
DEFAULT_USER_CONFIG = Path.home() / ".config" / "hznfetch" / "config.toml"
ENV_PREFIX = "HZNFETCH_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "destination_dir": "/var/cache/hznfetch",
        "log_dir": "",
    },
    "trust": {
        "primary_key": "",
        "keys_dir": "/etc/hznfetch/trust.d",
    },
    "http": {
        "timeout": 20,
        "verify_tls": True,
        "user_agent": "hznfetch",
    },
    "fetch": {
        "progress": True,
    },
    "logging": {
        "level": "INFO",
    },
    "credentials": {},
}


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in b.items():
        if k in a and isinstance(a[k], dict) and isinstance(v, dict):
            a[k] = _deep_merge(a[k], v)
        else:
            a[k] = v
    return a


def _load_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _coerce(raw: str, like: Any) -> Any:
    if isinstance(like, bool):
        return raw.lower() not in ("0", "false", "no", "off", "")
    if isinstance(like, int):
        return int(raw)
    if isinstance(like, float):
        return float(raw)
    return raw


def _apply_env(cfg: Dict[str, Any], environ: Dict[str, str]):
    # HZNFETCH_HTTP_TIMEOUT -> http.timeout, HZNFETCH_PATHS__LOG_DIR -> paths.log_dir
    for k, v in environ.items():
        if not k.startswith(ENV_PREFIX):
            continue
        key = k[len(ENV_PREFIX):].lower()
        sep = "__" if "__" in key else "_"
        if sep not in key:
            continue
        section, name = key.split(sep, 1)
        if section == "credentials" or not isinstance(cfg.get(section), dict):
            continue
        like = DEFAULT_CONFIG.get(section, {}).get(name, "")
        try:
            cfg[section][name] = _coerce(v, like)
        except ValueError:
            raise ConfigurationError(f"invalid value for {k}: {v!r}")


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None, sys_config: Optional[Path] = None,
                 user_config: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.sys_config = Path(sys_config) if sys_config else DEFAULT_SYS_CONFIG
        self.user_config = Path(user_config) if user_config else DEFAULT_USER_CONFIG
        self.environ = dict(os.environ if environ is None else environ)
        self.config: Dict[str, Any] = {}
        self.loaded_from: List[Path] = []
        self.load()

    def load(self) -> Dict[str, Any]:
        """
        Load config from:
          1) defaults
          2) system config (/etc/hznfetch/config.toml)
          3) user config (~/.config/hznfetch/config.toml), or the explicit
             config_path instead of 2) and 3)
          4) env overrides (HZNFETCH_*)
        """
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        self.loaded_from = []

        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigurationError(f"config file not found: {self.config_path}")
            candidates = [self.config_path]
        else:
            candidates = [self.sys_config, self.user_config]

        for path in candidates:
            if not path.exists():
                continue
            log.debug("loading config: %s", path)
            try:
                loaded = _load_toml(path)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(f"failed to load config {path}", e)
            cfg = _deep_merge(cfg, loaded or {})
            self.loaded_from.append(path)

        _apply_env(cfg, self.environ)
        self.config = cfg
        log.debug("config loaded (from %s)", self.loaded_from or "defaults")
        return self.config

    def get(self, *keys, default=None):
        cfg = self.config
        for k in keys:
            if not isinstance(cfg, dict) or k not in cfg:
                return default
            cfg = cfg[k]
        return cfg

    def credentials(self) -> Dict[str, Dict[str, str]]:
        creds = self.config.get("credentials", {}) or {}
        out: Dict[str, Dict[str, str]] = {}
        for prefix, entry in creds.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"credentials entry for {prefix!r} must be a table")
            out[prefix] = {k: str(v) for k, v in entry.items() if k in ("username", "password")}
        return out

    def summary(self) -> Dict[str, Any]:
        s = copy.deepcopy(self.config)
        for entry in s.get("credentials", {}).values():
            if isinstance(entry, dict) and entry.get("password"):
                entry["password"] = "***"
        s["_loaded_from"] = [str(p) for p in self.loaded_from]
        return s


@dataclass
class FetchConfig:
    """Everything one pkg_fetch call needs, passed explicitly."""

    manifest_url: str
    manifest_signature: str
    destination_dir: str
    primary_key: Optional[str] = None
    keys_dir: Optional[str] = None
    credentials: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, mgr: ConfigManager, manifest_url: str, manifest_signature: str,
                    **overrides) -> "FetchConfig":
        credentials = mgr.credentials()
        credentials.update(overrides.pop("credentials", None) or {})
        values = {
            "destination_dir": mgr.get("paths", "destination_dir"),
            "primary_key": mgr.get("trust", "primary_key") or None,
            "keys_dir": mgr.get("trust", "keys_dir") or None,
        }
        for k, v in overrides.items():
            if v is not None:
                values[k] = v
        return cls(manifest_url=manifest_url, manifest_signature=manifest_signature,
                   credentials=credentials, **values)


__all__ = ["ConfigManager", "FetchConfig", "DEFAULT_CONFIG"]
