#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_errors.py — error kinds raised by the hznfetch pipeline

Every error carries a human message, an optional underlying cause and a
to_dict() for JSON reporting (CLI --json, log events).
"""

from __future__ import annotations
from typing import Any, Dict, Optional


class HznFetchError(Exception):
    """Base class for all fetch/verify failures."""

    kind = "error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.cause is not None:
            d["cause"] = str(self.cause)
        return d


class ConfigurationError(HznFetchError):
    kind = "configuration"


class DirectoryError(HznFetchError):
    kind = "directory"


class TrustKeyError(HznFetchError):
    kind = "trust-key"


# ---------------------------
# Manifest stage
# ---------------------------
class ManifestFetchError(HznFetchError):
    kind = "manifest-fetch"

    def __init__(self, message: str, url: str, status: Optional[int] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.url = url
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(url=self.url, status=self.status)
        return d


class ManifestIntegrityError(HznFetchError):
    kind = "manifest-integrity"


class ManifestParseError(HznFetchError):
    kind = "manifest-parse"


class ManifestPersistError(HznFetchError):
    kind = "manifest-persist"


class PrecheckError(HznFetchError):
    kind = "precheck"


# ---------------------------
# Part stage
# ---------------------------
class PartFetchError(HznFetchError):
    """All sources of a part were tried without a complete download."""

    kind = "part-fetch"

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.url = url
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(url=self.url, status=self.status)
        return d


class PartAuthError(PartFetchError):
    """Last source failure was HTTP 401 or 403."""

    kind = "part-auth"


class PartNoSourcesError(PartFetchError):
    kind = "part-no-sources"


class PartIntegrityError(HznFetchError):
    kind = "part-integrity"

    def __init__(self, message: str, path: str, expected_hash: Optional[str] = None,
                 actual_hash: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.path = path
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(path=self.path, sha256_expected=self.expected_hash, sha256_got=self.actual_hash)
        return d


class AggregateFetchError(HznFetchError):
    """One or more parts failed; `errors` maps part name -> error."""

    kind = "aggregate"

    def __init__(self, errors: Dict[str, BaseException]):
        super().__init__(f"Error fetching {len(errors)} part(s)")
        self.errors = dict(errors)

    def __str__(self) -> str:
        lines = [self.message + ":"]
        for name in sorted(self.errors):
            lines.append(f"  {name}: {self.errors[name]}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        parts: Dict[str, Any] = {}
        for name, err in self.errors.items():
            if isinstance(err, HznFetchError):
                parts[name] = err.to_dict()
            else:
                parts[name] = {"kind": type(err).__name__, "message": str(err)}
        d["parts"] = parts
        return d


__all__ = [
    "HznFetchError", "ConfigurationError", "DirectoryError", "TrustKeyError",
    "ManifestFetchError", "ManifestIntegrityError", "ManifestParseError",
    "ManifestPersistError", "PrecheckError", "PartFetchError", "PartAuthError",
    "PartNoSourcesError", "PartIntegrityError", "AggregateFetchError",
]
