import hashlib

import pytest

from verichain.core.crypto.hasher import (
    commitment_to_bytes32,
    hash_artifact,
    is_commitment,
)

# ═══════════════════════════════════════════════════════════════════════════════
# COMMITMENT FORM
# ═══════════════════════════════════════════════════════════════════════════════

def test_known_artifact_commitment():
    assert hash_artifact(b"proof-bytes") == (
        "0x0005c2611f054c05b5dea8487ea5da314102f43296837073e3ac8b99aa1cfe8b"
    )

def test_empty_artifact_is_digest_of_zero_bytes():
    assert hash_artifact(b"") == (
        "0xe3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )

def test_commitment_shape():
    c = hash_artifact(bytes(range(256)))
    assert c.startswith("0x")
    assert len(c) == 66
    assert is_commitment(c)

def test_determinism():
    blobs = [b"", b"\x00", b"proof-bytes", bytes(range(256)) * 64]
    for blob in blobs:
        assert hash_artifact(blob) == hash_artifact(bytes(blob))

# ═══════════════════════════════════════════════════════════════════════════════
# RAW BYTES, NO RE-ENCODING
# ═══════════════════════════════════════════════════════════════════════════════

def test_operates_on_raw_bytes():
    # Not valid UTF-8; must be hashed as-is.
    blob = b"\xff\xfe\x00proof\x80"
    assert hash_artifact(blob) == "0x" + hashlib.sha256(blob).hexdigest()

def test_bytearray_and_memoryview_match_bytes():
    blob = b"artifact"
    assert hash_artifact(bytearray(blob)) == hash_artifact(blob)
    assert hash_artifact(memoryview(blob)) == hash_artifact(blob)

def test_text_is_rejected():
    with pytest.raises(TypeError):
        hash_artifact("proof-bytes")

@pytest.mark.parametrize("bad", [5, 0, None, [1, 2, 3]])
def test_non_buffer_inputs_are_rejected(bad):
    # bytes(5) would silently become five zero bytes
    with pytest.raises(TypeError):
        hash_artifact(bad)

def test_single_byte_change_changes_commitment():
    assert hash_artifact(b"proof-bytes") != hash_artifact(b"proof-bytez")

# ═══════════════════════════════════════════════════════════════════════════════
# BYTES32 CONVERSION
# ═══════════════════════════════════════════════════════════════════════════════

def test_commitment_to_bytes32():
    c = hash_artifact(b"proof-bytes")
    raw = commitment_to_bytes32(c)
    assert len(raw) == 32
    assert raw == hashlib.sha256(b"proof-bytes").digest()

@pytest.mark.parametrize("bad", ["", "0x", "0x1234", "e3b0" * 16, "0x" + "G" * 64])
def test_commitment_to_bytes32_rejects_malformed(bad):
    with pytest.raises(ValueError):
        commitment_to_bytes32(bad)
