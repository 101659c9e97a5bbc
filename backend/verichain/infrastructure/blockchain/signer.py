"""
Relayer signing capability.

The Chain Client depends on the ``Signer`` protocol only: an address and
a way to turn an unsigned transaction dict into raw signed bytes. The
concrete key material is injected once at startup through
``load_account`` and stays inside ``LocalKeySigner``; it is never logged
or returned. A hardware-backed or remote signer can replace it without
touching the orchestrator.
"""

import logging
from typing import Any, Dict, Protocol, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from verichain.core.errors import InvalidKeyError

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    """Anything that can sign transactions for one account."""

    @property
    def address(self) -> str: ...

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes: ...


class LocalKeySigner:
    """Signs with an in-memory private key (eth_account LocalAccount)."""

    __slots__ = ("_account",)

    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"LocalKeySigner(address={self.address})"


def load_account(private_key: str) -> LocalKeySigner:
    """
    Build the relayer signer from a hex private key.

    Raises:
        InvalidKeyError: Empty key or one eth_account rejects. The key
                         itself is never included in the error.
    """
    if not private_key or not private_key.strip():
        raise InvalidKeyError("Relayer private key is not configured")
    try:
        account = Account.from_key(private_key.strip())
    except Exception as e:  # ValueError / binascii.Error / eth_keys ValidationError
        raise InvalidKeyError("Relayer private key is malformed", detail=type(e).__name__)
    logger.info(f"[CHAIN] Relayer account loaded: {account.address}")
    return LocalKeySigner(account)
