#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_manifest.py — fetch, verify, parse and persist a Pkg manifest

Side effect: the raw manifest bytes are stored as <destination_dir>/<id>.json,
only after the signature verified and the body parsed.
"""

from __future__ import annotations
import os
import json
import hashlib
from pathlib import Path
from typing import Optional

import requests

from hznfetch_auth import Credentials, authenticated_request
from hznfetch_errors import (ManifestFetchError, ManifestIntegrityError,
                             ManifestParseError, ManifestPersistError)
from hznfetch_http import HttpClient
from hznfetch_logger import get_logger, log_event
from hznfetch_pkg import Pkg, pkg_from_dict
from hznfetch_trust import TrustVerifier

LOG = get_logger("manifest")


def _write_owner_only(path: Path, content: bytes):
    # O_TRUNC: an existing manifest copy is overwritten
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(content)


def fetch_manifest(client: HttpClient, credentials: Optional[Credentials], verifier: TrustVerifier,
                   manifest_url: str, manifest_signature: str, destination_dir: str) -> Pkg:
    LOG.debug("Fetching Pkg from %s", manifest_url)
    req = authenticated_request(manifest_url, credentials)

    try:
        with client.send(req) as response:
            if response.status_code != 200:
                raise ManifestFetchError(
                    f"Unexpected status code in response to Pkg fetch: {response.status_code}",
                    url=manifest_url, status=response.status_code)
            raw_body = response.content
    except requests.RequestException as e:
        raise ManifestFetchError(f"Failed to fetch Pkg meta from {manifest_url}", url=manifest_url, cause=e)

    digest = hashlib.sha256(raw_body).digest()
    if not verifier.verify_any(digest, [manifest_signature]):
        raise ManifestIntegrityError(f"Pkg metadata from {manifest_url} failed cryptographic verification")

    try:
        pkg = pkg_from_dict(json.loads(raw_body))
    except ValueError as e:
        raise ManifestParseError(f"Pkg metadata from {manifest_url} is not valid JSON", e)

    dest = Path(destination_dir) / f"{pkg.id}.json"
    try:
        _write_owner_only(dest, raw_body)
    except OSError as e:
        raise ManifestPersistError(f"Failed to write file {dest}", e)

    log_event("manifest", "fetch", f"Wrote Pkg meta to {dest}", extra={"pkg": pkg.id, "parts": len(pkg.parts)})
    return pkg


__all__ = ["fetch_manifest"]
