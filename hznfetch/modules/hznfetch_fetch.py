#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_fetch.py — Pkg fetch entry point

pkg_fetch() fetches a signed Pkg manifest, prechecks it, then downloads and
verifies every part concurrently (one worker per part). It returns the
absolute paths of all parts, or raises; part failures are collected and
reported together in an AggregateFetchError.

On-disk layout:
    <destination_dir>/<pkg id>.json
    <destination_dir>/<pkg id>/<part name>
"""

from __future__ import annotations
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional

from hznfetch_auth import Credentials
from hznfetch_config import FetchConfig
from hznfetch_errors import AggregateFetchError, ConfigurationError, DirectoryError
from hznfetch_http import ClientFactory, default_client_factory
from hznfetch_logger import get_logger, log_event, log_exception
from hznfetch_manifest import fetch_manifest
from hznfetch_parts import fetch_part, part_timeout, precheck_parts, verify_part
from hznfetch_pkg import Part
from hznfetch_trust import TrustVerifier

LOG = get_logger("fetch")


def _mkdirs(path: str):
    try:
        os.makedirs(path, mode=0o700, exist_ok=True)
    except OSError as e:
        raise DirectoryError(f"Failed creating Pkg destination dir {path}", e)


def pkg_url_base(manifest_url: str) -> str:
    """Manifest URL with its final path segment removed."""
    return manifest_url.rsplit("/", 1)[0]


def _fetch_and_verify_part(client_factory: ClientFactory, credentials: Optional[Credentials],
                           url_base: str, name: str, part: Part, destination_dir: str,
                           verifier: TrustVerifier, progress: bool) -> str:
    part_path = os.path.join(destination_dir, name)
    timeout = part_timeout(part.bytes)
    LOG.debug("Fetching part %s to %s (timeout %ss)", name, part_path, timeout)

    client = client_factory(timeout)
    try:
        fetch_part(client, credentials, url_base, part_path, part.bytes, part.sources, progress=progress)
    finally:
        client.close()

    LOG.info("Verifying %s", part.id)
    verify_part(verifier, part_path, part.sha256sum, part.signatures)
    return os.path.abspath(part_path)


def fetch_and_verify(client_factory: ClientFactory, credentials: Optional[Credentials], url_base: str,
                     parts: Dict[str, Part], destination_dir: str, verifier: TrustVerifier,
                     progress: bool = False) -> List[str]:
    """
    Fetch then verify every part, one worker per part. Every part runs to
    completion whatever happens to its siblings; results are only gathered
    here, after each worker finished.
    """
    if not parts:
        return []

    errors: Dict[str, BaseException] = {}
    fetched: List[str] = []
    with ThreadPoolExecutor(max_workers=len(parts), thread_name_prefix="hznfetch-part") as ex:
        futures = {
            ex.submit(_fetch_and_verify_part, client_factory, credentials, url_base, name, part,
                      destination_dir, verifier, progress): name
            for name, part in parts.items()
        }
        for fut in as_completed(futures):
            name = futures[fut]
            try:
                fetched.append(fut.result())
            except Exception as e:
                errors[name] = e
                log_exception("fetch", "part", e, f"{name} failed: {e}", extra={"part": name})
            else:
                log_event("fetch", "part", f"{name} fetched and verified", extra={"part": name})

    if errors:
        raise AggregateFetchError(errors)
    return fetched


def pkg_fetch(client_factory: ClientFactory, manifest_url: str, manifest_signature: str,
              destination_dir: str, primary_key: Optional[str], keys_dir: Optional[str],
              credentials: Optional[Credentials], progress: bool = False,
              verifier: Optional[TrustVerifier] = None) -> List[str]:
    """
    Fetch the Pkg at manifest_url and all of its parts into destination_dir.

    manifest_signature is mandatory; signature checking cannot be disabled.
    Returns the absolute paths of the fetched and verified parts.
    """
    if not manifest_signature:
        raise ConfigurationError("Disabling Pkg file signature checking not supported")

    _mkdirs(destination_dir)
    if verifier is None:
        verifier = TrustVerifier(primary_key, keys_dir)

    client = client_factory(None)
    try:
        pkg = fetch_manifest(client, credentials, verifier, manifest_url, manifest_signature, destination_dir)
    finally:
        client.close()

    # before any part download, so a malformed Pkg fails fast
    precheck_parts(pkg)

    pkg_dir = os.path.join(destination_dir, pkg.id)
    _mkdirs(pkg_dir)

    url_base = pkg_url_base(manifest_url)
    LOG.debug("Extracted Pkg base URL %s from %s", url_base, manifest_url)

    fetched = fetch_and_verify(client_factory, credentials, url_base, pkg.parts, pkg_dir, verifier,
                               progress=progress)
    log_event("fetch", "done", f"Fetched {len(fetched)} part(s) of Pkg {pkg.id}",
              extra={"pkg": pkg.id, "dir": str(Path(pkg_dir).resolve())})
    return fetched


def pkg_fetch_with_config(cfg: FetchConfig, client_factory: Optional[ClientFactory] = None,
                          progress: bool = False) -> List[str]:
    return pkg_fetch(client_factory or default_client_factory, cfg.manifest_url, cfg.manifest_signature,
                     cfg.destination_dir, cfg.primary_key, cfg.keys_dir, cfg.credentials,
                     progress=progress)


__all__ = ["pkg_fetch", "pkg_fetch_with_config", "fetch_and_verify", "pkg_url_base"]
