#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
hznfetch_trust.py — detached signature verification against a trust key set

The trust key set is the primary key plus every *.pem public key found in
the trusted keys directory. A signature is base64 text; it is checked as
RSA-PSS (MGF1/SHA-256) over an already computed SHA-256 digest.
"""

from __future__ import annotations
import base64
import binascii
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from hznfetch_errors import TrustKeyError
from hznfetch_logger import get_logger

LOG = get_logger("trust")

VerifyFn = Callable[[Any, str, bytes], bool]


def load_public_key(path: Path):
    data = Path(path).read_bytes()
    key = serialization.load_pem_public_key(data)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError(f"{path}: not an RSA public key")
    return key


def verify_signature(public_key, signature_b64: str, digest: bytes) -> bool:
    """True if signature_b64 is a valid RSA-PSS signature of digest under public_key."""
    try:
        sig = base64.b64decode(signature_b64.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        LOG.debug("signature is not valid base64, skipping")
        return False
    try:
        public_key.verify(
            sig,
            digest,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
            Prehashed(hashes.SHA256()),
        )
        return True
    except InvalidSignature:
        return False


class TrustVerifier:
    """
    Holds the loaded trust key set for one fetch call.

    primary_key: path to a PEM public key; when given it must load.
    keys_dir: directory scanned for *.pem; missing dir -> no extra keys,
              unreadable files are logged and skipped.
    verify_fn: signature check, verify_fn(key, signature_b64, digest) -> bool
    """

    def __init__(self, primary_key: Optional[str] = None, keys_dir: Optional[str] = None,
                 verify_fn: VerifyFn = verify_signature):
        self.verify_fn = verify_fn
        self.keys: List[Tuple[str, Any]] = []
        if primary_key:
            try:
                self.keys.append((str(primary_key), load_public_key(Path(primary_key))))
            except (OSError, ValueError, UnsupportedAlgorithm) as e:
                raise TrustKeyError(f"failed to load primary signing key {primary_key}", e)
        if keys_dir:
            kd = Path(keys_dir)
            if kd.is_dir():
                for p in sorted(kd.glob("*.pem")):
                    try:
                        self.keys.append((str(p), load_public_key(p)))
                    except (OSError, ValueError, UnsupportedAlgorithm) as e:
                        LOG.warning("Skipping unusable trust key %s: %s", p, e)
            else:
                LOG.debug("trusted keys dir %s does not exist", kd)
        LOG.debug("Loaded %d trust key(s)", len(self.keys))

    def verify_any(self, digest: bytes, signatures: Iterable[str]) -> bool:
        """
        True on the first signature that verifies under any trust key.
        Expensive (one asymmetric check per signature per key); call once per digest.
        """
        for sig in signatures:
            for name, key in self.keys:
                if self.verify_fn(key, sig, digest):
                    LOG.debug("signature verified with key %s", name)
                    return True
        return False


__all__ = ["TrustVerifier", "verify_signature", "load_public_key", "VerifyFn"]
