#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_auth.py — credential matching for authenticated GETs

The credential table maps URL prefixes to {"username", "password"}.
Prefixes are scanned longest first, so the most specific prefix that
carries a usable username/password pair wins.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple

import requests
from requests.auth import HTTPBasicAuth

from hznfetch_logger import get_logger

LOG = get_logger("auth")

Credentials = Dict[str, Dict[str, str]]


def match_credential(url: str, credentials: Optional[Credentials]) -> Optional[Tuple[str, str, str]]:
    """Return (prefix, username, password) for url, or None."""
    if not credentials:
        return None
    for prefix in sorted(credentials, key=lambda p: (-len(p), p)):
        if not url.startswith(prefix):
            continue
        entry = credentials[prefix] or {}
        username = entry.get("username") or ""
        password = entry.get("password") or ""
        if username and password:
            return prefix, username, password
    return None


def authenticated_request(url: str, credentials: Optional[Credentials]) -> requests.Request:
    req = requests.Request("GET", url)
    match = match_credential(url, credentials)
    if match is not None:
        _, username, password = match
        LOG.debug("Using username %s in HTTP Basic auth header to %s", username, url)
        req.auth = HTTPBasicAuth(username, password)
    return req


__all__ = ["Credentials", "match_credential", "authenticated_request"]
