"""
VERIFIED-CHAIN — Proof Relay Service.

Turns a proof request into a confirmed, verifiable on-chain record:
external ezkl prover → SHA-256 commitment → create_proof transaction →
verify_proof read-back.
"""

__version__ = "0.1.0"
