"""
Commitment Hasher — canonical digest of a proof artifact.

The commitment is the on-chain identifier of a proof:

    commitment = "0x" ‖ hex(SHA-256(artifact_bytes))

It is computed over the raw artifact bytes exactly as the prover wrote
them. No decoding, normalization or re-encoding happens here, so the
same file always yields the same 32-byte value that fits a Solidity
``bytes32`` argument.
"""

from __future__ import annotations

import hashlib
import re

COMMITMENT_PREFIX = "0x"
DIGEST_BYTES = 32
BYTES_LIKE = (bytes, bytearray, memoryview)

_COMMITMENT_RE = re.compile(r"^0x[0-9a-f]{64}$")


def hash_artifact(data: bytes) -> str:
    """
    Compute the commitment string for a proof artifact.

    Args:
        data: Raw artifact bytes. Empty input is valid and yields the
              digest of zero bytes.

    Returns:
        "0x" followed by 64 lowercase hex digits.

    Raises:
        TypeError: If ``data`` is not a bytes-like buffer. Text would need an
                   encoding choice, and ``bytes(n)`` on an int would hash n
                   zero bytes; both are refused.
    """
    if not isinstance(data, BYTES_LIKE):
        raise TypeError(f"hash_artifact expects bytes, not {type(data).__name__}")
    return COMMITMENT_PREFIX + hashlib.sha256(data).hexdigest()


def is_commitment(value: str) -> bool:
    """True when ``value`` has the exact commitment form."""
    return bool(_COMMITMENT_RE.match(value or ""))


def commitment_to_bytes32(commitment: str) -> bytes:
    """Decode a commitment string into the 32 raw bytes passed to the contract."""
    if not is_commitment(commitment):
        raise ValueError(f"Not a commitment: {commitment!r}")
    return bytes.fromhex(commitment[len(COMMITMENT_PREFIX):])
