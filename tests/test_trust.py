import hashlib
from pathlib import Path

import pytest

from hznfetch_errors import TrustKeyError
from hznfetch_trust import TrustVerifier, verify_signature

DIGEST = hashlib.sha256(b"some content").digest()


def test_primary_key_verifies(signer, primary_key):
    v = TrustVerifier(primary_key, None)
    assert v.verify_any(DIGEST, [signer.sign_digest(DIGEST)])


def test_any_signature_is_enough_in_any_order(signer, other_signer, primary_key):
    v = TrustVerifier(primary_key, None)
    good = signer.sign_digest(DIGEST)
    bad = other_signer.sign_digest(DIGEST)
    assert v.verify_any(DIGEST, [bad, good])
    assert v.verify_any(DIGEST, [good, bad])
    assert not v.verify_any(DIGEST, [bad])


def test_keys_dir_keys_are_trusted(other_signer, primary_key, keys_dir):
    (Path(keys_dir) / "extra.pem").write_bytes(other_signer.public_pem())
    v = TrustVerifier(primary_key, keys_dir)
    assert len(v.keys) == 2
    assert v.verify_any(DIGEST, [other_signer.sign_digest(DIGEST)])


def test_unusable_files_in_keys_dir_are_skipped(signer, keys_dir):
    (Path(keys_dir) / "junk.pem").write_text("not a key")
    (Path(keys_dir) / "notes.txt").write_text("ignored")
    (Path(keys_dir) / "good.pem").write_bytes(signer.public_pem())
    v = TrustVerifier(None, keys_dir)
    assert [Path(name).name for name, _ in v.keys] == ["good.pem"]


def test_missing_keys_dir_contributes_nothing(tmp_path, signer):
    v = TrustVerifier(None, str(tmp_path / "nope"))
    assert v.keys == []
    assert not v.verify_any(DIGEST, [signer.sign_digest(DIGEST)])


def test_unloadable_primary_key_raises(tmp_path):
    with pytest.raises(TrustKeyError):
        TrustVerifier(str(tmp_path / "missing.pem"), None)


def test_signature_over_other_digest_or_garbage_fails(signer):
    key = signer.key.public_key()
    other = hashlib.sha256(b"other content").digest()
    assert verify_signature(key, signer.sign_digest(DIGEST), DIGEST)
    assert not verify_signature(key, signer.sign_digest(other), DIGEST)
    assert not verify_signature(key, "%%% not base64 %%%", DIGEST)


def test_custom_verify_fn_is_used(primary_key):
    calls = []

    def fake(key, sig, digest):
        calls.append(sig)
        return sig == "ok"

    v = TrustVerifier(primary_key, None, verify_fn=fake)
    assert v.verify_any(DIGEST, ["nope", "ok", "never-checked"])
    assert calls == ["nope", "ok"]
