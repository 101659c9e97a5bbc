"""
Commitment primitives.

Public API:
    - hash_artifact:          raw proof bytes → "0x"-prefixed SHA-256 commitment.
    - commitment_to_bytes32:  commitment string → contract bytes32 argument.
"""

from verichain.core.crypto.hasher import (
    hash_artifact,
    is_commitment,
    commitment_to_bytes32,
)

__all__ = [
    "hash_artifact",
    "is_commitment",
    "commitment_to_bytes32",
]
