"""
Chain-side collaborators.

Exports:
    - ChainClient:     node connectivity, gas, nonces, signing, reads
    - ContractHandle:  bound proof contract (ABI + address)
    - load_contract:   startup-time ABI load and bind
    - load_account:    relayer signer from a private key
"""

from verichain.infrastructure.blockchain.registry import (
    ContractHandle,
    REQUIRED_METHODS,
    bind_contract,
    load_contract,
    parse_abi,
)
from verichain.infrastructure.blockchain.signer import LocalKeySigner, Signer, load_account
from verichain.infrastructure.blockchain.web3_service import ChainClient, Transaction, TxReceipt

__all__ = [
    "ChainClient",
    "ContractHandle",
    "LocalKeySigner",
    "REQUIRED_METHODS",
    "Signer",
    "Transaction",
    "TxReceipt",
    "bind_contract",
    "load_account",
    "load_contract",
    "parse_abi",
]
