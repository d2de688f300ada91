#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_parts.py — per-part precheck, download and verification

Features:
 - precheck of every part against meta.provides before any download
 - skip of parts already on disk with the expected size
 - ordered source fallback; "/"-prefixed sources resolve against the Pkg base URL
 - size mismatch is handled like a failed source (no same-source retry, no ranges)
 - SHA-256 check (file removed on mismatch), then signature check
 - progress bars with tqdm
"""

from __future__ import annotations
import os
import hashlib
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from tqdm import tqdm

from hznfetch_auth import Credentials, authenticated_request
from hznfetch_errors import (PartAuthError, PartFetchError, PartIntegrityError,
                             PartNoSourcesError, PrecheckError)
from hznfetch_http import HttpClient
from hznfetch_logger import get_logger
from hznfetch_pkg import Pkg, PartSource
from hznfetch_trust import TrustVerifier

LOG = get_logger("parts")

CHUNK_SIZE = 64 * 1024
SMALL_PART_BYTES = 1024 * 1024
SMALL_PART_TIMEOUT_S = 120
# conservative transfer rate used to size timeouts of larger parts
MIN_KBITS_PER_S = 100


# ---------------------------
# Utilities
# ---------------------------
def sha256_of_file(path: Path) -> bytes:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.digest()


def part_timeout(size: int) -> int:
    """Seconds allowed for the HTTP operations of one part of `size` bytes."""
    if size <= SMALL_PART_BYTES:
        return SMALL_PART_TIMEOUT_S
    return (size * 8) // 1024 // MIN_KBITS_PER_S


def resolve_source_url(pkg_url_base: str, source: PartSource) -> str:
    if source.url.startswith("/"):
        # absolute path on the Pkg's own host, by convention
        url = f"{pkg_url_base}{source.url}"
        LOG.debug("Composed full URL %s from Pkg base URL", url)
        return url
    return source.url


def _reset_file(path: Path):
    """Remove path if present and leave an empty owner-only file in its place."""
    path.unlink(missing_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.close(fd)


# ---------------------------
# Precheck
# ---------------------------
def precheck_parts(pkg: Pkg):
    provides = pkg.meta.provides
    for name, part in pkg.parts.items():
        if part.id not in provides:
            raise PrecheckError(
                f"Error in Pkg file: meta.provides is expected to contain metadata about each part "
                f"and it is missing info about part {name} (id: {part.id})")
        LOG.info("Precheck of %s (Pkg part id: %s) passed, will fetch it", provides[part.id], part.id)


# ---------------------------
# Fetch
# ---------------------------
def _stream_to_file(response: requests.Response, path: Path, expected_bytes: int, progress: bool) -> int:
    written = 0
    with open(path, "wb") as f, tqdm(total=expected_bytes, unit="B", unit_scale=True,
                                     desc=path.name, disable=not progress, leave=False) as pbar:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            f.write(chunk)
            written += len(chunk)
            pbar.update(len(chunk))
            if written > expected_bytes:
                # already wrong; no point reading the rest
                break
    return written


def fetch_part(client: HttpClient, credentials: Optional[Credentials], pkg_url_base: str,
               part_path: str, expected_bytes: int, sources: List[PartSource],
               progress: bool = False):
    path = Path(part_path)

    if path.exists():
        try:
            size: Optional[int] = path.stat().st_size
        except OSError as e:
            LOG.error("Error getting status for file %s although it exists, deleting it: %s", path, e)
            size = None
        if size == expected_bytes:
            LOG.info("Part file %s exists on disk and has the expected size, skipping download", path)
            return
        if size is not None:
            LOG.warning("Part file %s exists but is incomplete (%d bytes, expected %d), deleting it",
                        path, size, expected_bytes)
    try:
        _reset_file(path)
    except OSError as e:
        raise PartFetchError(f"Unable to prepare part file {path}", cause=e)

    # (status, url) of the most recent failed source; status 0 = no HTTP response
    last_failure: Optional[Tuple[int, str]] = None

    for source in sources:
        url = resolve_source_url(pkg_url_base, source)
        req = authenticated_request(url, credentials)
        try:
            response = client.send(req)
        except requests.RequestException as e:
            LOG.error("Failed to download part %s from %s: %s", path.name, url, e)
            last_failure = (0, url)
            continue

        with response:
            if response.status_code != 200:
                LOG.error("Failed to download part %s from %s: HTTP %d", path.name, url, response.status_code)
                last_failure = (response.status_code, url)
                continue
            try:
                written = _stream_to_file(response, path, expected_bytes, progress)
            except requests.RequestException as e:
                LOG.error("Transfer of part %s from %s broke off: %s", path.name, url, e)
                written = -1
            except OSError as e:
                raise PartFetchError(f"Unable to write part file {path}", url=url, cause=e)

        if written == expected_bytes:
            LOG.info("Successfully wrote %s", path)
            return

        LOG.error("Error in download of part %s from %s (got %d bytes, expected %d)",
                  path.name, url, written, expected_bytes)
        last_failure = (200, url)
        try:
            _reset_file(path)
        except OSError as e:
            raise PartFetchError(f"Unable to reset part file {path}", url=url, cause=e)

    if last_failure is None:
        raise PartNoSourcesError(f"Part {path.name} has no sources to fetch from")

    status, url = last_failure
    if status in (401, 403):
        raise PartAuthError(
            f"Authentication or authorization error fetching part {path.name} from {url} (HTTP {status})",
            url=url, status=status)
    raise PartFetchError(
        f"Part {path.name} could not be fetched from any of its {len(sources)} source(s); "
        f"last tried {url} (HTTP {status})", url=url, status=status)


# ---------------------------
# Verify
# ---------------------------
def verify_part(verifier: TrustVerifier, part_path: str, expected_hash: str, signatures: List[str]):
    path = Path(part_path)
    LOG.debug("Verifying part %s with %d signature(s)", path, len(signatures))
    try:
        digest = sha256_of_file(path)
    except OSError as e:
        raise PartIntegrityError(f"Unable to read part {path} for hashing", path=str(path), cause=e)

    actual = digest.hex()
    if actual != expected_hash:
        try:
            path.unlink()
        except OSError as e:
            LOG.error("Failed to remove part %s after failed hash check: %s", path, e)
        raise PartIntegrityError(
            f"Mismatch between expected hash {expected_hash} and actual hash {actual} for part {path.name}",
            path=str(path), expected_hash=expected_hash, actual_hash=actual)

    if not verifier.verify_any(digest, signatures):
        raise PartIntegrityError(f"Part {path.name} failed cryptographic verification",
                                 path=str(path), expected_hash=expected_hash, actual_hash=actual)


__all__ = ["precheck_parts", "fetch_part", "verify_part", "part_timeout",
           "resolve_source_url", "sha256_of_file"]
