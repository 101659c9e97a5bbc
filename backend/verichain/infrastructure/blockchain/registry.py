"""
Contract Registry — loads the proof contract interface and binds it.

Startup-only. The ABI comes from a JSON file that is either a bare ABI
list or a Hardhat/Truffle artifact with an ``"abi"`` key. The result is
a ``ContractHandle``: immutable, shared by every request without locking.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Sequence, Tuple, Union

from eth_utils import is_address, to_checksum_address

from verichain.core.errors import AbiParseError, LoadError

logger = logging.getLogger(__name__)

# Methods the pipeline relies on. ``counter`` is a public state variable,
# exposed by the compiler as a zero-argument view function.
REQUIRED_METHODS: Tuple[str, ...] = ("create_proof", "verify_proof", "counter")


@dataclass(frozen=True)
class ContractHandle:
    """Bound ABI + deployed address. Never reassigned after load."""
    address: str
    abi: Tuple[dict, ...]
    contract: Any

    def function(self, method: str, *args: Any) -> Any:
        """Return the prepared contract function ``method(*args)``."""
        if method not in self.method_names:
            raise AttributeError(f"Contract has no method {method!r}")
        return getattr(self.contract.functions, method)(*args)

    @property
    def method_names(self) -> Tuple[str, ...]:
        return tuple(e["name"] for e in self.abi if e.get("type") == "function")


def parse_abi(document: Union[str, bytes, list, dict]) -> List[dict]:
    """
    Extract and sanity-check an ABI.

    Raises:
        AbiParseError: Not JSON, no ABI list, entries without a type, or
                       one of REQUIRED_METHODS missing.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise AbiParseError("Interface description is not valid JSON", detail=str(e))

    abi = document.get("abi") if isinstance(document, dict) else document
    if not isinstance(abi, list):
        raise AbiParseError("Interface description has no ABI list")

    for entry in abi:
        if not isinstance(entry, dict) or "type" not in entry:
            raise AbiParseError("ABI entry without a type", detail=repr(entry)[:80])

    names = {e.get("name") for e in abi if e["type"] == "function"}
    missing = [m for m in REQUIRED_METHODS if m not in names]
    if missing:
        raise AbiParseError("ABI is missing required methods", detail=", ".join(missing))
    return abi


def bind_contract(w3: Any, abi: Sequence[dict], address: str) -> ContractHandle:
    """
    Bind a parsed ABI to a deployed address on the given Web3 instance.

    Raises:
        LoadError: Address is empty or not a chain address.
        AbiParseError: web3 rejects the ABI.
    """
    if not address or not is_address(address):
        raise LoadError("Contract address is missing or malformed", detail=str(address))
    checksum = to_checksum_address(address)
    try:
        contract = w3.eth.contract(address=checksum, abi=list(abi))
    except (TypeError, ValueError) as e:
        raise AbiParseError("web3 rejected the ABI", detail=str(e))
    return ContractHandle(address=checksum, abi=tuple(abi), contract=contract)


def load_contract(w3: Any, abi_path: Union[str, Path], address: str) -> ContractHandle:
    """
    Read the ABI file and bind it. Fatal on any failure.

    Raises:
        LoadError: File unreadable, or any AbiParseError subclass.
    """
    path = Path(abi_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LoadError(f"Cannot read contract interface at {path}", detail=str(e))

    handle = bind_contract(w3, parse_abi(raw), address)
    logger.info(f"[CHAIN] Contract bound at {handle.address} ({len(handle.method_names)} methods)")
    return handle
