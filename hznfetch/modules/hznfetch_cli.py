#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch CLI

Commands:
  fetch URL --signature SIG   : fetch and verify a Pkg and all of its parts
  verify FILE --sha256 HASH   : re-check a downloaded part (hash + signatures)
  config --show               : print the merged configuration (passwords redacted)

Configuration comes from hznfetch_config (TOML files + HZNFETCH_* env);
command line flags override it.
"""

from __future__ import annotations
import sys
import json
import argparse
from pathlib import Path
from typing import Dict, List, Optional

from hznfetch_config import ConfigManager, FetchConfig
from hznfetch_errors import ConfigurationError, HznFetchError
from hznfetch_fetch import pkg_fetch_with_config
from hznfetch_http import make_client_factory
from hznfetch_logger import configure, get_logger
from hznfetch_parts import verify_part
from hznfetch_trust import TrustVerifier

log = get_logger("cli")


def print_err(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


def _parse_credentials(values: Optional[List[str]]) -> Dict[str, Dict[str, str]]:
    """PREFIX=USER:PASS, repeatable."""
    out: Dict[str, Dict[str, str]] = {}
    for v in values or []:
        # first "=" ends the prefix; passwords (base64 tokens) may contain "="
        prefix, sep, userpass = v.partition("=")
        if not sep or not prefix or ":" not in userpass:
            raise ConfigurationError(f"credential must look like PREFIX=USER:PASS, got {v!r}")
        user, password = userpass.split(":", 1)
        out[prefix] = {"username": user, "password": password}
    return out


def _add_global_options(parser: argparse.ArgumentParser):
    parser.add_argument("--config", help="config file (TOML); replaces system/user config files")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--json", action="store_true", help="machine readable output")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hznfetch", description="Fetch and verify signed multi-part Pkgs")
    _add_global_options(parser)
    # also accepted after the subcommand; SUPPRESS keeps the top-level value
    common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    _add_global_options(common)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_fetch = sub.add_parser("fetch", parents=[common], help="Fetch a Pkg manifest and all of its parts")
    p_fetch.add_argument("url", help="Pkg manifest URL")
    p_fetch.add_argument("--signature", required=True, help="base64 signature of the manifest")
    p_fetch.add_argument("--dest", help="destination dir (defaults to paths.destination_dir)")
    p_fetch.add_argument("--primary-key", help="primary trusted public key (PEM)")
    p_fetch.add_argument("--keys-dir", help="directory of additional trusted public keys (*.pem)")
    p_fetch.add_argument("--credential", action="append",
                         help="basic auth for a URL prefix: PREFIX=USER:PASS (can repeat)")
    p_fetch.add_argument("--no-progress", action="store_true")

    p_verify = sub.add_parser("verify", parents=[common], help="Verify a downloaded part file")
    p_verify.add_argument("file")
    p_verify.add_argument("--sha256", required=True, help="expected hex SHA-256")
    p_verify.add_argument("--signature", action="append", required=True, help="base64 signature (can repeat)")
    p_verify.add_argument("--primary-key")
    p_verify.add_argument("--keys-dir")

    p_config = sub.add_parser("config", parents=[common], help="Inspect configuration")
    p_config.add_argument("--show", action="store_true", help="print merged config")
    return parser


def _cmd_fetch(args, mgr: ConfigManager) -> int:
    cfg = FetchConfig.from_config(
        mgr, args.url, args.signature,
        destination_dir=args.dest,
        primary_key=args.primary_key,
        keys_dir=args.keys_dir,
        credentials=_parse_credentials(args.credential),
    )
    factory = make_client_factory(timeout=mgr.get("http", "timeout"),
                                  verify_tls=mgr.get("http", "verify_tls"),
                                  user_agent=mgr.get("http", "user_agent"))
    progress = bool(mgr.get("fetch", "progress")) and not args.no_progress and sys.stderr.isatty()
    paths = pkg_fetch_with_config(cfg, client_factory=factory, progress=progress)
    if args.json:
        print(json.dumps({"ok": True, "paths": sorted(paths)}, indent=2, ensure_ascii=False))
    else:
        for p in sorted(paths):
            print(p)
    return 0


def _cmd_verify(args, mgr: ConfigManager) -> int:
    verifier = TrustVerifier(args.primary_key or mgr.get("trust", "primary_key") or None,
                             args.keys_dir or mgr.get("trust", "keys_dir") or None)
    verify_part(verifier, str(Path(args.file)), args.sha256, args.signature)
    if args.json:
        print(json.dumps({"ok": True, "path": str(Path(args.file).resolve())}))
    else:
        print(f"{args.file}: OK")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        mgr = ConfigManager(config_path=Path(args.config) if args.config else None)
        configure(level=args.log_level or mgr.get("logging", "level"),
                  log_dir=mgr.get("paths", "log_dir") or None)

        if args.cmd == "fetch":
            return _cmd_fetch(args, mgr)
        if args.cmd == "verify":
            return _cmd_verify(args, mgr)
        if args.cmd == "config":
            if args.show:
                print(json.dumps(mgr.summary(), indent=2, ensure_ascii=False))
            else:
                for p in mgr.loaded_from or ["(defaults only)"]:
                    print(p)
            return 0
    except HznFetchError as e:
        log.debug("command %s failed", args.cmd, exc_info=True)
        if args.json:
            print(json.dumps({"ok": False, "error": e.to_dict()}, indent=2, ensure_ascii=False))
        else:
            print_err(f"error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
