#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_pkg.py — Pkg manifest model

A Pkg is the signed top-level descriptor of a multi-part bundle. As served:

    {
      "id": "pkg-id",
      "meta": {"provides": {"images": {"<part id>": {...}}}},
      "parts": {
        "<part name>": {
          "id": "<part id>",
          "bytes": 1234,
          "sha256sum": "<hex>",
          "signatures": ["<base64>", ...],
          "sources": [{"url": "https://..."}, {"url": "/relative/to/pkg"}]
        }
      }
    }

meta.provides may also be a flat mapping without the "images" level; the
wrapper is only recognised when "images" is its sole key, so a flat mapping
may still describe a part id called "images".
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List

from hznfetch_errors import ManifestParseError


@dataclass(frozen=True)
class PartSource:
    url: str


@dataclass(frozen=True)
class Part:
    id: str
    bytes: int
    sha256sum: str
    signatures: List[str] = field(default_factory=list)
    sources: List[PartSource] = field(default_factory=list)


@dataclass(frozen=True)
class PkgMeta:
    provides: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Pkg:
    id: str
    meta: PkgMeta
    parts: Dict[str, Part]


def _require(d: Dict[str, Any], key: str, typ, where: str):
    if key not in d:
        raise ManifestParseError(f"{where}: missing field '{key}'")
    v = d[key]
    # bool is an int subclass; a size of `true` is a malformed manifest
    if not isinstance(v, typ) or (typ is int and isinstance(v, bool)):
        raise ManifestParseError(f"{where}: field '{key}' has wrong type {type(v).__name__}")
    return v


def _part_from_dict(name: str, d: Any) -> Part:
    where = f"part {name!r}"
    if not isinstance(d, dict):
        raise ManifestParseError(f"{where}: expected an object")
    size = _require(d, "bytes", int, where)
    if size < 0:
        raise ManifestParseError(f"{where}: negative size {size}")
    sources = []
    for s in d.get("sources") or []:
        if not isinstance(s, dict) or not isinstance(s.get("url"), str):
            raise ManifestParseError(f"{where}: source entries need a string 'url'")
        sources.append(PartSource(url=s["url"]))
    signatures = d.get("signatures") or []
    if not isinstance(signatures, list) or not all(isinstance(s, str) for s in signatures):
        raise ManifestParseError(f"{where}: 'signatures' must be a list of strings")
    return Part(
        id=_require(d, "id", str, where),
        bytes=size,
        sha256sum=_require(d, "sha256sum", str, where),
        signatures=list(signatures),
        sources=sources,
    )


def pkg_from_dict(d: Any) -> Pkg:
    if not isinstance(d, dict):
        raise ManifestParseError("Pkg: expected a JSON object")
    pkg_id = _require(d, "id", str, "Pkg")
    if not pkg_id or "/" in pkg_id or pkg_id in (".", ".."):
        raise ManifestParseError(f"Pkg: unusable id {pkg_id!r}")

    meta = d.get("meta") or {}
    if not isinstance(meta, dict):
        raise ManifestParseError("Pkg: 'meta' must be an object")
    provides = meta.get("provides") or {}
    if not isinstance(provides, dict):
        raise ManifestParseError("Pkg: 'meta.provides' must be an object")
    if set(provides) == {"images"} and isinstance(provides["images"], dict):
        provides = provides["images"]

    raw_parts = _require(d, "parts", dict, "Pkg")
    parts: Dict[str, Part] = {}
    for name, raw in raw_parts.items():
        # part names become file names under the package dir
        if not name or "/" in name or name in (".", ".."):
            raise ManifestParseError(f"Pkg: unusable part name {name!r}")
        parts[name] = _part_from_dict(name, raw)

    return Pkg(id=pkg_id, meta=PkgMeta(provides=dict(provides)), parts=parts)


__all__ = ["Pkg", "PkgMeta", "Part", "PartSource", "pkg_from_dict"]
