"""
Chain Client — sole owner of node connectivity and signing.

Wraps a synchronous ``web3.Web3`` instance. Every RPC call is pushed to a
worker thread with ``asyncio.to_thread`` so a slow node never blocks the
event loop serving other requests.

Transaction flow:
    1. estimate_and_build_tx — gas price and gas estimate fetched
       concurrently, limit = estimate × multiplier.
    2. submit — per-account lock: pick nonce, sign, broadcast. The lock is
       released before waiting for the receipt so concurrent submissions
       from the same relayer get sequential nonces without serializing
       the (slow) confirmation wait.
    3. wait_for_receipt — bounded poll; reverted receipts are failures.

Read-only calls go through ``call`` and never touch signing material.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional, Sequence

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from verichain.core.errors import (
    CallError,
    EstimationError,
    ReceiptTimeoutError,
    SubmissionError,
)
from verichain.infrastructure.blockchain.registry import ContractHandle, bind_contract
from verichain.infrastructure.blockchain.signer import LocalKeySigner, Signer, load_account

logger = logging.getLogger(__name__)

# Errors a node round-trip can surface: web3 RPC/contract errors, HTTP
# transport errors, and the ValueError older nodes use for JSON-RPC errors.
NODE_ERRORS = (Web3Exception, RequestException, ValueError, OSError)


@dataclass(frozen=True)
class Transaction:
    """Unsigned transaction. ``nonce`` is assigned at submission time."""
    sender: str
    to: str
    data: str
    gas: int
    gas_price: int
    chain_id: int
    value: int = 0
    nonce: Optional[int] = None

    def with_nonce(self, nonce: int) -> "Transaction":
        return replace(self, nonce=nonce)

    def as_dict(self) -> Dict[str, Any]:
        """Legacy (gasPrice) transaction fields in the shape eth_account signs."""
        if self.nonce is None:
            raise ValueError("Transaction has no nonce yet")
        return {
            "to": self.to,
            "data": self.data,
            "value": self.value,
            "gas": self.gas,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "chainId": self.chain_id,
        }


@dataclass(frozen=True)
class TxReceipt:
    """The parts of a transaction receipt the pipeline consumes."""
    tx_hash: str
    block_number: int
    status: int
    nonce: int
    gas_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ChainClient:
    def __init__(
        self,
        w3: Any,
        *,
        chain_id: Optional[int] = None,
        gas_multiplier: float = 1.2,
        receipt_timeout: float = 120.0,
        poll_latency: float = 1.0,
    ):
        self.w3 = w3
        self._chain_id = chain_id
        self._gas_multiplier = gas_multiplier
        self._receipt_timeout = receipt_timeout
        self._poll_latency = poll_latency
        self._nonce_locks: Dict[str, asyncio.Lock] = {}
        self._last_nonce: Dict[str, int] = {}

    @classmethod
    def connect(cls, provider_url: str, **kwargs: Any) -> "ChainClient":
        """Open an HTTP provider connection (POA-compatible, e.g. testnets)."""
        w3 = Web3(Web3.HTTPProvider(provider_url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(w3, **kwargs)

    # ── Accounts and contracts ─────────────────────────────────────────────────

    @staticmethod
    def load_account(private_key: str) -> LocalKeySigner:
        return load_account(private_key)

    def bind_contract(self, abi: Sequence[dict], address: str) -> ContractHandle:
        return bind_contract(self.w3, abi, address)

    def is_connected(self) -> bool:
        try:
            return bool(self.w3.is_connected())
        except NODE_ERRORS:
            return False

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await asyncio.to_thread(lambda: self.w3.eth.chain_id))
        return self._chain_id

    async def health(self) -> Dict[str, Any]:
        connected = await asyncio.to_thread(self.is_connected)
        snapshot: Dict[str, Any] = {"connected": connected, "chain_id": self._chain_id}
        if connected and self._chain_id is None:
            try:
                snapshot["chain_id"] = await self.chain_id()
            except NODE_ERRORS as e:
                logger.warning(f"[CHAIN] chain_id unavailable: {e}")
        return snapshot

    # ── Transactions ──────────────────────────────────────────────────────────

    async def estimate_and_build_tx(
        self,
        handle: ContractHandle,
        method: str,
        args: Sequence[Any],
        sender: str,
    ) -> Transaction:
        """
        Prepare an unsigned call to ``method(*args)`` from ``sender``.

        Raises:
            EstimationError: Unknown method, the call would revert, or the
                             node could not price it.
        """
        try:
            fn = handle.function(method, *args)
        except (AttributeError, TypeError, ValueError) as e:
            raise EstimationError(f"Cannot encode {method}", detail=str(e))

        def _gas_price() -> int:
            return int(self.w3.eth.gas_price)

        def _estimate() -> int:
            return int(fn.estimate_gas({"from": sender}))

        try:
            gas_price, estimate = await asyncio.gather(
                asyncio.to_thread(_gas_price),
                asyncio.to_thread(_estimate),
            )
            chain_id = await self.chain_id()
            gas_limit = int(estimate * self._gas_multiplier)
            built = await asyncio.to_thread(
                fn.build_transaction,
                {"from": sender, "gas": gas_limit, "gasPrice": gas_price, "chainId": chain_id},
            )
        except NODE_ERRORS as e:
            raise EstimationError(f"Node rejected {method} estimation", detail=str(e))

        data = built["data"]
        if isinstance(data, (bytes, bytearray)):
            data = Web3.to_hex(data)
        logger.debug(f"[CHAIN] {method} estimated gas={estimate} limit={gas_limit} price={gas_price}")
        return Transaction(
            sender=sender,
            to=built.get("to", handle.address),
            data=data,
            gas=gas_limit,
            gas_price=gas_price,
            chain_id=chain_id,
            value=int(built.get("value", 0)),
        )

    async def submit(self, tx: Transaction, signer: Signer) -> TxReceipt:
        """
        Sign, broadcast and wait for the receipt.

        Raises:
            SubmissionError: Signer or node rejected the transaction, or it reverted.
            ReceiptTimeoutError: No receipt within the configured wait.
        """
        address = signer.address
        if tx.sender != address:
            raise SubmissionError("Transaction sender does not match signer", detail=f"{tx.sender} != {address}")

        lock = self._nonce_locks.setdefault(address, asyncio.Lock())
        async with lock:
            nonce = await self._next_nonce(address)
            try:
                raw = signer.sign_transaction(tx.with_nonce(nonce).as_dict())
            except Exception as e:
                raise SubmissionError("Signer rejected the transaction", detail=f"{type(e).__name__}: {e}")
            try:
                sent = await asyncio.to_thread(self.w3.eth.send_raw_transaction, raw)
            except NODE_ERRORS as e:
                # Resync from the node next time; our view of the nonce may be stale.
                self._last_nonce.pop(address, None)
                raise SubmissionError("Node rejected the transaction", detail=str(e))
            self._last_nonce[address] = nonce

        tx_hash = Web3.to_hex(sent)
        logger.info(f"[CHAIN] TX sent: {tx_hash} nonce={nonce}")
        try:
            return await self.wait_for_receipt(tx_hash, nonce=nonce)
        except ReceiptTimeoutError:
            # The tx may have been dropped from the mempool; resync from the
            # node so its nonce is reused instead of skipped.
            self._last_nonce.pop(address, None)
            raise

    async def wait_for_receipt(self, tx_hash: str, *, nonce: int = -1) -> TxReceipt:
        try:
            receipt = await asyncio.to_thread(
                self.w3.eth.wait_for_transaction_receipt,
                tx_hash,
                timeout=self._receipt_timeout,
                poll_latency=self._poll_latency,
            )
        except TimeExhausted as e:
            raise ReceiptTimeoutError(
                f"No receipt for {tx_hash} after {self._receipt_timeout:.0f}s", detail=str(e)
            )
        except NODE_ERRORS as e:
            raise SubmissionError(f"Receipt lookup failed for {tx_hash}", detail=str(e))

        result = TxReceipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            nonce=nonce,
            gas_used=int(receipt.get("gasUsed", 0)),
        )
        if result.status != 1:
            raise SubmissionError("Transaction reverted on-chain", detail=tx_hash)
        logger.info(f"[CHAIN] TX {tx_hash} confirmed in block {result.block_number}")
        return result

    async def _next_nonce(self, address: str) -> int:
        # Caller holds the account lock.
        try:
            pending = int(await asyncio.to_thread(self.w3.eth.get_transaction_count, address, "pending"))
        except NODE_ERRORS as e:
            raise SubmissionError("Could not fetch nonce", detail=str(e))
        last = self._last_nonce.get(address)
        return pending if last is None else max(pending, last + 1)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def call(
        self,
        handle: ContractHandle,
        method: str,
        args: Sequence[Any] = (),
        *,
        block_identifier: Any = "latest",
    ) -> Any:
        """
        Read-only contract call. No gas, no signing.

        Raises:
            CallError: Unknown method, revert, or node unreachable.
        """
        try:
            fn = handle.function(method, *args)
            return await asyncio.to_thread(fn.call, block_identifier=block_identifier)
        except (AttributeError, TypeError) as e:
            raise CallError(f"Cannot call {method}", detail=str(e))
        except NODE_ERRORS as e:
            raise CallError(f"{method} call failed", detail=str(e))

    async def read_counter(self, handle: ContractHandle, *, block_identifier: Any = "latest") -> int:
        return int(await self.call(handle, "counter", block_identifier=block_identifier))
