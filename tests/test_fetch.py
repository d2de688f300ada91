import hashlib
import os
from pathlib import Path

import pytest

from conftest import BASE, MANIFEST_URL, manifest_bytes, part_entry
from hznfetch_config import FetchConfig
from hznfetch_errors import (AggregateFetchError, ConfigurationError, ManifestFetchError,
                             PartAuthError, PartFetchError, PartIntegrityError, PrecheckError)
from hznfetch_fetch import pkg_fetch, pkg_fetch_with_config, pkg_url_base

A = b"a" * 500 * 1000
B = b"b" * 2 * 1000 * 1000


def _serve(server, signer, parts, provides=None):
    body = manifest_bytes("pkg-1", parts, provides)
    server.routes[MANIFEST_URL] = body
    return signer.sign(body)


def _two_part_pkg(server, signer):
    parts = {
        "a.tar": part_entry(signer, A, "img-a", ["/parts/a.tar"]),
        "b.tar": part_entry(signer, B, "img-b", ["https://mirror1/b.tar", "https://mirror2/b.tar"]),
    }
    server.routes[f"{BASE}/parts/a.tar"] = A
    server.routes["https://mirror1/b.tar"] = (500, b"")
    server.routes["https://mirror2/b.tar"] = B
    return _serve(server, signer, parts)


def test_pkg_url_base():
    assert pkg_url_base("https://h/x/y/pkg.json") == "https://h/x/y"


def test_two_parts_with_fallback(server, signer, primary_key, dest):
    sig = _two_part_pkg(server, signer)

    paths = pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})

    pkg_dir = Path(dest) / "pkg-1"
    assert sorted(paths) == sorted([os.path.abspath(pkg_dir / "a.tar"), os.path.abspath(pkg_dir / "b.tar")])
    assert all(os.path.isabs(p) for p in paths)
    assert (pkg_dir / "a.tar").read_bytes() == A
    assert (pkg_dir / "b.tar").read_bytes() == B
    assert (Path(dest) / "pkg-1.json").exists()


def test_per_part_timeouts_come_from_the_factory(server, signer, primary_key, dest):
    sig = _two_part_pkg(server, signer)
    pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})
    # manifest client has no override; small part 120s; 2 MB part scaled by size
    assert sorted(server.timeouts, key=lambda t: (t is not None, t)) == [
        None, 120, (len(B) * 8) // 1024 // 100]


def test_empty_signature_rejected_without_network(server, primary_key, dest):
    with pytest.raises(ConfigurationError):
        pkg_fetch(server.factory, MANIFEST_URL, "", dest, primary_key, None, {})
    assert server.requests == []
    assert server.timeouts == []


def test_manifest_404_writes_nothing(server, primary_key, dest):
    with pytest.raises(ManifestFetchError):
        pkg_fetch(server.factory, MANIFEST_URL, "c2ln", dest, primary_key, None, {})
    assert os.listdir(dest) == []


def test_precheck_failure_fetches_no_parts(server, signer, primary_key, dest):
    parts = {"a.tar": part_entry(signer, A, "img-a", ["/parts/a.tar"])}
    sig = _serve(server, signer, parts, provides={"something-else": {}})
    with pytest.raises(PrecheckError):
        pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})
    assert server.urls() == [MANIFEST_URL]


def test_all_part_failures_are_reported_together(server, signer, primary_key, dest):
    parts = {
        "ok": part_entry(signer, A, "img-ok", ["/ok"]),
        "forbidden": part_entry(signer, A, "img-f", ["/f1", "/f2"]),
        "broken": part_entry(signer, A, "img-b", ["/b1"]),
    }
    server.routes[f"{BASE}/ok"] = A
    server.routes[f"{BASE}/f1"] = (403, b"")
    server.routes[f"{BASE}/f2"] = (401, b"")
    server.routes[f"{BASE}/b1"] = (500, b"")
    sig = _serve(server, signer, parts)

    with pytest.raises(AggregateFetchError) as exc:
        pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})

    errors = exc.value.errors
    assert set(errors) == {"forbidden", "broken"}
    assert isinstance(errors["forbidden"], PartAuthError)
    assert type(errors["broken"]) is PartFetchError
    report = exc.value.to_dict()
    assert report["parts"]["forbidden"]["kind"] == "part-auth"
    # the good part still ran to completion and verified
    assert (Path(dest) / "pkg-1" / "ok").read_bytes() == A


def test_corrupted_existing_part_is_skipped_then_deleted_then_refetched(server, signer, primary_key, dest):
    parts = {"a.tar": part_entry(signer, A, "img-a", ["/parts/a.tar"])}
    server.routes[f"{BASE}/parts/a.tar"] = A
    sig = _serve(server, signer, parts)
    part_path = Path(dest) / "pkg-1" / "a.tar"
    part_path.parent.mkdir(parents=True)
    part_path.write_bytes(b"z" * len(A))

    with pytest.raises(AggregateFetchError) as exc:
        pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})
    assert isinstance(exc.value.errors["a.tar"], PartIntegrityError)
    assert f"{BASE}/parts/a.tar" not in server.urls()
    assert not part_path.exists()

    paths = pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})
    assert paths == [os.path.abspath(part_path)]
    assert hashlib.sha256(part_path.read_bytes()).hexdigest() == hashlib.sha256(A).hexdigest()


def test_hash_mismatch_then_corrected_server_succeeds(server, signer, primary_key, dest):
    parts = {"a.tar": part_entry(signer, A, "img-a", ["/parts/a.tar"])}
    server.routes[f"{BASE}/parts/a.tar"] = b"q" * len(A)
    sig = _serve(server, signer, parts)
    part_path = Path(dest) / "pkg-1" / "a.tar"

    with pytest.raises(AggregateFetchError):
        pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {})
    assert not part_path.exists()

    server.routes[f"{BASE}/parts/a.tar"] = A
    assert pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {}) == [os.path.abspath(part_path)]
    assert part_path.read_bytes() == A


def test_keys_dir_key_can_sign_parts(server, signer, other_signer, primary_key, keys_dir, dest):
    (Path(keys_dir) / "vendor.pem").write_bytes(other_signer.public_pem())
    parts = {"a.tar": part_entry(other_signer, A, "img-a", ["/parts/a.tar"])}
    server.routes[f"{BASE}/parts/a.tar"] = A
    sig = _serve(server, signer, parts)
    assert len(pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, keys_dir, {})) == 1


def test_pkg_without_parts_returns_empty_list(server, signer, primary_key, dest):
    sig = _serve(server, signer, {})
    assert pkg_fetch(server.factory, MANIFEST_URL, sig, dest, primary_key, None, {}) == []
    assert (Path(dest) / "pkg-1").is_dir()


def test_with_config_record(server, signer, primary_key, dest):
    sig = _two_part_pkg(server, signer)
    cfg = FetchConfig(manifest_url=MANIFEST_URL, manifest_signature=sig, destination_dir=dest,
                      primary_key=primary_key)
    assert len(pkg_fetch_with_config(cfg, client_factory=server.factory)) == 2
