from __future__ import annotations

import base64
import hashlib
import io
import json
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

BASE = "https://pkgs.example.com/repo"
MANIFEST_URL = f"{BASE}/pkg-1.json"


def make_response(url: str, status: int, body: bytes = b"") -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r.url = url
    r.raw = io.BytesIO(body)
    return r


class FakeClient:
    def __init__(self, server: "FakeServer", timeout: Optional[float]):
        self.server = server
        self.timeout = timeout
        self.closed = False

    def send(self, request: requests.Request) -> requests.Response:
        prepared = request.prepare()
        return self.server.handle(prepared)

    def close(self):
        self.closed = True


Route = Union[bytes, tuple, Exception, Callable[[], Any]]


class FakeServer:
    """
    In-memory HTTP endpoint. routes maps URL -> body (200), (status, body),
    an exception to raise, or a zero-arg callable returning one of those.
    Unknown URLs answer 404.
    """

    def __init__(self):
        self.routes: Dict[str, Route] = {}
        self.requests: List[requests.PreparedRequest] = []
        self.timeouts: List[Optional[float]] = []
        self._lock = threading.Lock()

    def factory(self, timeout_override: Optional[float] = None) -> FakeClient:
        with self._lock:
            self.timeouts.append(timeout_override)
        return FakeClient(self, timeout_override)

    def handle(self, prepared: requests.PreparedRequest) -> requests.Response:
        with self._lock:
            self.requests.append(prepared)
        route = self.routes.get(prepared.url)
        if callable(route):
            route = route()
        if route is None:
            return make_response(prepared.url, 404, b"not found")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            status, body = route
            return make_response(prepared.url, status, body)
        return make_response(prepared.url, 200, route)

    def urls(self) -> List[str]:
        return [r.url for r in self.requests]


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


class Signer:
    def __init__(self, key: rsa.RSAPrivateKey):
        self.key = key

    def sign_digest(self, digest: bytes) -> str:
        sig = self.key.sign(
            digest,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
            Prehashed(hashes.SHA256()),
        )
        return base64.b64encode(sig).decode("ascii")

    def sign(self, content: bytes) -> str:
        return self.sign_digest(hashlib.sha256(content).digest())

    def public_pem(self) -> bytes:
        return self.key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


@pytest.fixture(scope="session")
def signer() -> Signer:
    return Signer(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def other_signer() -> Signer:
    return Signer(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture
def primary_key(tmp_path: Path, signer: Signer) -> str:
    p = tmp_path / "keys" / "primary.pem"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(signer.public_pem())
    return str(p)


@pytest.fixture
def keys_dir(tmp_path: Path) -> str:
    d = tmp_path / "trust.d"
    d.mkdir()
    return str(d)


@pytest.fixture
def dest(tmp_path: Path) -> str:
    return str(tmp_path / "dest")


def part_entry(signer: Signer, content: bytes, part_id: str, sources: List[str]) -> Dict[str, Any]:
    return {
        "id": part_id,
        "bytes": len(content),
        "sha256sum": hashlib.sha256(content).hexdigest(),
        "signatures": [signer.sign(content)],
        "sources": [{"url": u} for u in sources],
    }


def manifest_bytes(pkg_id: str, parts: Dict[str, Dict[str, Any]], provides: Optional[Dict[str, Any]] = None) -> bytes:
    if provides is None:
        provides = {p["id"]: {"repotag": f"example/{p['id']}:1.0"} for p in parts.values()}
    return json.dumps({"id": pkg_id, "meta": {"provides": {"images": provides}}, "parts": parts}).encode("utf-8")
