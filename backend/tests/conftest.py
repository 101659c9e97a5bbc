"""
Shared fixtures: an in-memory chain, a scripted prover and a wired
orchestrator.

FakeWeb3 mines every accepted transaction into its own block and keeps
per-block history, so ``counter`` can be read at a receipt's block the
way a real archive node answers it.
"""

import hashlib
import json
import sys
import textwrap
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

from verichain.infrastructure.blockchain.registry import bind_contract
from verichain.infrastructure.blockchain.web3_service import ChainClient
from verichain.infrastructure.prover.ezkl_invoker import ProverInvoker
from verichain.services.submission_orchestrator import SubmissionOrchestrator

CONTRACT_ADDRESS = "0xE59da879e33b71C145b7c526a7B8C5b93195C51D"
RELAYER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HARDHAT_KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
REQUESTER_ADDRESS = "0x18747BE67c5886881075136eb678cEADaf808028"

PROOF_ABI: List[dict] = [
    {
        "inputs": [{"internalType": "bytes32", "name": "commitment", "type": "bytes32"}],
        "name": "create_proof",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "index", "type": "uint256"},
            {"internalType": "bytes32", "name": "commitment", "type": "bytes32"},
        ],
        "name": "verify_proof",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "counter",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY CHAIN
# ═══════════════════════════════════════════════════════════════════════════════

def _encode_call(name: str, args: List[Any]) -> str:
    encoded = [a.hex() if isinstance(a, (bytes, bytearray)) else a for a in args]
    return "0x" + json.dumps({"fn": name, "args": encoded}).encode().hex()


def _decode_call(data: str) -> Dict[str, Any]:
    return json.loads(bytes.fromhex(data[2:]).decode())


class FakeFunction:
    def __init__(self, contract: "FakeProofContract", name: str, args: tuple):
        self._contract = contract
        self._name = name
        self._args = list(args)

    def estimate_gas(self, params: Dict[str, Any]) -> int:
        if self._contract.revert_on_estimate:
            raise ContractLogicError("execution reverted: create_proof disabled")
        return 50_000

    def build_transaction(self, params: Dict[str, Any]) -> Dict[str, Any]:
        tx = {"to": self._contract.address, "value": 0, "data": _encode_call(self._name, self._args)}
        tx.update(params)
        return tx

    def call(self, block_identifier: Any = "latest") -> Any:
        self._contract.calls.append((self._name, tuple(self._args), block_identifier))
        if self._name == "counter":
            return self._contract.counter_at(block_identifier)
        if self._name == "verify_proof":
            index, commitment = self._args
            return self._contract.verify(index, bytes(commitment))
        raise ContractLogicError(f"{self._name} is not a view")


class _Functions:
    def __init__(self, contract: "FakeProofContract"):
        self._contract = contract

    def __getattr__(self, name: str):
        if name not in ("create_proof", "verify_proof", "counter"):
            raise AttributeError(name)
        return lambda *args: FakeFunction(self._contract, name, args)


class FakeProofContract:
    """Append-only commitment list; ``counter`` is its length."""

    def __init__(self, preload: Optional[List[bytes]] = None):
        self.address = CONTRACT_ADDRESS
        # (block_number, commitment) pairs; preloaded entries sit in block 0.
        self.entries: List[tuple] = [(0, c) for c in (preload or [])]
        self.revert_on_estimate = False
        self.calls: List[tuple] = []
        self.functions = _Functions(self)

    def counter_at(self, block_identifier: Any) -> int:
        if block_identifier == "latest":
            return len(self.entries)
        return sum(1 for block, _ in self.entries if block <= int(block_identifier))

    def verify(self, index: int, commitment: bytes) -> bool:
        return 0 <= index < len(self.entries) and self.entries[index][1] == commitment

    def apply(self, call: Dict[str, Any], block: int) -> None:
        if call["fn"] == "create_proof":
            self.entries.append((block, bytes.fromhex(call["args"][0])))


class FakeEth:
    def __init__(self, contract: FakeProofContract, chain_id: int = 1337):
        self._contract = contract
        self._lock = threading.Lock()
        self.chain_id = chain_id
        self.gas_price = 1_000_000_000
        self.block_number = 0
        self.sent: List[Dict[str, Any]] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.stale_pending = False
        self.hang_receipts = False
        self.revert_receipts = False

    def contract(self, address: str, abi: List[dict]) -> FakeProofContract:
        self._contract.address = address
        return self._contract

    def get_transaction_count(self, address: str, block_identifier: str = "latest") -> int:
        if self.stale_pending:
            return 0
        with self._lock:
            return sum(1 for tx in self.sent if tx["from"] == address)

    def send_raw_transaction(self, raw: bytes) -> bytes:
        tx = json.loads(raw.decode())
        with self._lock:
            used = {t["nonce"] for t in self.sent if t["from"] == tx["from"]}
            if tx["nonce"] in used:
                raise ValueError(f"nonce too low: {tx['nonce']}")
            self.block_number += 1
            tx_hash = hashlib.sha256(raw).digest()
            self.sent.append(tx)
            self._contract.apply(_decode_call(tx["data"]), self.block_number)
            self.receipts["0x" + tx_hash.hex()] = {
                "blockNumber": self.block_number,
                "status": 0 if self.revert_receipts else 1,
                "gasUsed": 42_000,
            }
        return tx_hash

    def wait_for_transaction_receipt(self, tx_hash: str, timeout: float = 120, poll_latency: float = 0.1):
        if self.hang_receipts:
            raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")
        return self.receipts[tx_hash]


class FakeWeb3:
    def __init__(self, contract: Optional[FakeProofContract] = None):
        self.contract = contract or FakeProofContract()
        self.eth = FakeEth(self.contract)

    def is_connected(self) -> bool:
        return True


class FakeSigner:
    """Serializes instead of signing so FakeEth can read the fields back."""

    def __init__(self, address: str = RELAYER_ADDRESS):
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        return json.dumps({"from": self._address, **tx}, sort_keys=True).encode()


class BrokenSigner(FakeSigner):
    """Signer whose backend fails, e.g. a wallet that refuses the payload."""

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        raise TypeError("signer rejected tx")


class SpyChainClient(ChainClient):
    """Counts submissions so tests can assert nothing reached the chain."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.submit_calls = 0

    async def submit(self, tx, signer):
        self.submit_calls += 1
        return await super().submit(tx, signer)


# ═══════════════════════════════════════════════════════════════════════════════
# SCRIPTED PROVER
# ═══════════════════════════════════════════════════════════════════════════════
# Reads the request payload from the -D input file and behaves accordingly:
#   "fail-setup" → setup exits 1 with "setup failed"
#   "no-proof"   → both stages exit 0, no proof written
#   "sleep"      → blocks until killed
#   anything else → proof file holds exactly the payload bytes

FAKE_PROVER = textwrap.dedent(
    """
    import json, os, sys, time

    argv = sys.argv[1:]

    def opt(flag):
        return argv[argv.index(flag) + 1] if flag in argv else None

    stage = "setup" if "setup" in argv else "prove"
    doc = json.load(open(opt("-D")))
    payload = doc["payload"]
    workdir = os.path.dirname(opt("-D"))
    with open(os.path.join(workdir, "prover.pid"), "w") as fh:
        fh.write(str(os.getpid()))

    if payload == "sleep":
        time.sleep(60)
    if stage == "setup":
        if payload == "fail-setup":
            sys.stderr.write("loading circuit\\nsetup failed\\n")
            sys.exit(1)
        for flag in ("--vk-path", "--pk-path", "--params-path"):
            open(opt(flag), "wb").write(b"key:" + flag.encode())
        print("setup complete")
    else:
        if payload != "no-proof":
            open(opt("--proof-path"), "wb").write(payload.encode("utf-8"))
        print("proof complete")
    """
)


@pytest.fixture
def fake_prover_script(tmp_path: Path) -> Path:
    script = tmp_path / "fake_ezkl.py"
    script.write_text(FAKE_PROVER, encoding="utf-8")
    return script


@pytest.fixture
def prover(fake_prover_script: Path, tmp_path: Path) -> ProverInvoker:
    return ProverInvoker(
        [sys.executable, str(fake_prover_script)],
        timeout=30.0,
        work_root=tmp_path / "work",
    )


@pytest.fixture
def fake_w3() -> FakeWeb3:
    return FakeWeb3()


@pytest.fixture
def chain(fake_w3: FakeWeb3) -> SpyChainClient:
    return SpyChainClient(fake_w3, receipt_timeout=5.0, poll_latency=0.01)


@pytest.fixture
def handle(fake_w3: FakeWeb3):
    return bind_contract(fake_w3, PROOF_ABI, CONTRACT_ADDRESS)


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def orchestrator(prover, chain, handle, signer, tmp_path: Path) -> SubmissionOrchestrator:
    return SubmissionOrchestrator(
        prover,
        chain,
        handle,
        signer,
        model_path=tmp_path / "network.onnx",
    )
