"""
Submission Orchestrator — request → proof → commitment → tx → verification.

State machine (one instance per ProofRequest, no shared mutable state):

    Idle → Proving → Hashing → Submitting → Verifying → Done
      └──────────┴─────────┴───────────┴───────────┴──→ Failed

Collaborators:
    ProverInvoker  — Proving   (request-scoped workspace)
    hash_artifact  — Hashing   (pure)
    ChainClient    — Submitting (counter read, create_proof tx, counter
                     read at the receipt block) and Verifying
                     (verify_proof(index, commitment), read-only)

A collaborator error ends the run in Failed, tagged with the stage that
was active. Nothing after a failed stage runs: a failed proof never
reaches the chain. Done means the round trip completed; the boolean
returned by verify_proof is reported, not interpreted.

Only idempotent stages (Proving, Verifying) are retried, and only when
``stage_retries`` > 0. Submitting is never retried: a second attempt
could record the same commitment twice.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from verichain.core.crypto.hasher import commitment_to_bytes32, hash_artifact
from verichain.core.errors import PipelineError, SubmissionError
from verichain.infrastructure.blockchain.registry import ContractHandle
from verichain.infrastructure.blockchain.signer import Signer
from verichain.infrastructure.blockchain.web3_service import ChainClient
from verichain.infrastructure.prover.ezkl_invoker import ProofArtifact, ProverInvoker
from verichain.schemas.proof import ProofRequest, SubmissionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineStage(str, Enum):
    IDLE = "Idle"
    PROVING = "Proving"
    HASHING = "Hashing"
    SUBMITTING = "Submitting"
    VERIFYING = "Verifying"
    DONE = "Done"
    FAILED = "Failed"


_NEXT_STAGE: Dict[PipelineStage, PipelineStage] = {
    PipelineStage.IDLE: PipelineStage.PROVING,
    PipelineStage.PROVING: PipelineStage.HASHING,
    PipelineStage.HASHING: PipelineStage.SUBMITTING,
    PipelineStage.SUBMITTING: PipelineStage.VERIFYING,
    PipelineStage.VERIFYING: PipelineStage.DONE,
}

TERMINAL_STAGES = (PipelineStage.DONE, PipelineStage.FAILED)

RETRYABLE_STAGES = (PipelineStage.PROVING, PipelineStage.VERIFYING)


@dataclass
class PipelineRun:
    """Mutable progress of one request. Owned by a single ``run()`` call."""
    request_id: str
    stage: PipelineStage = PipelineStage.IDLE
    history: List[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    timings: Dict[str, float] = field(default_factory=dict)
    _entered_at: float = field(default_factory=time.monotonic, repr=False)

    def advance(self, to: PipelineStage) -> None:
        if to == PipelineStage.FAILED:
            if self.stage in TERMINAL_STAGES:
                raise RuntimeError(f"Cannot fail a run already in {self.stage.value}")
        elif _NEXT_STAGE.get(self.stage) != to:
            raise RuntimeError(f"Illegal transition {self.stage.value} → {to.value}")
        now = time.monotonic()
        self.timings[self.stage.value] = round(now - self._entered_at, 4)
        self._entered_at = now
        self.stage = to
        self.history.append(to)


@dataclass(frozen=True)
class PipelineOutcome:
    """Result variant of one run: either Done with a record, or Failed with a cause."""
    request_id: str
    stage: PipelineStage
    history: Tuple[PipelineStage, ...]
    commitment: Optional[str] = None
    submission: Optional[SubmissionRecord] = None
    verified: Optional[bool] = None
    failed_stage: Optional[PipelineStage] = None
    error: Optional[PipelineError] = None
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.stage == PipelineStage.DONE

    @property
    def failure(self) -> Optional[Tuple[str, str]]:
        """("Proving", "setup failed")-style pair, or None on success."""
        if self.ok or self.failed_stage is None or self.error is None:
            return None
        return self.failed_stage.value, self.error.summary()


class SubmissionOrchestrator:
    def __init__(
        self,
        prover: ProverInvoker,
        chain: ChainClient,
        contract: ContractHandle,
        signer: Signer,
        *,
        model_path: Union[str, Path],
        stage_retries: int = 0,
        counter_index_offset: int = 1,
    ):
        self._prover = prover
        self._chain = chain
        self._contract = contract
        self._signer = signer
        self._model_path = Path(model_path)
        self._stage_retries = max(0, stage_retries)
        self._index_offset = counter_index_offset

    @property
    def relayer_address(self) -> str:
        return self._signer.address

    @property
    def contract(self) -> ContractHandle:
        return self._contract

    @property
    def chain(self) -> ChainClient:
        return self._chain

    async def run(self, request: ProofRequest) -> PipelineOutcome:
        """
        Drive one request to Done or Failed. Collaborator errors are
        captured in the outcome, never raised.
        """
        run = PipelineRun(request_id=request.request_id)
        commitment: Optional[str] = None
        record: Optional[SubmissionRecord] = None
        try:
            run.advance(PipelineStage.PROVING)
            artifact = await self._with_retries(run.stage, lambda: self._prove(request))

            run.advance(PipelineStage.HASHING)
            commitment = hash_artifact(artifact.data)
            logger.info(f"[PIPELINE] {request.request_id[:12]} commitment {commitment}")

            run.advance(PipelineStage.SUBMITTING)
            record = await self._submit(commitment)

            run.advance(PipelineStage.VERIFYING)
            verified = await self._with_retries(run.stage, lambda: self._verify(record))

            run.advance(PipelineStage.DONE)
        except PipelineError as e:
            failed_at = run.stage
            e.stage = failed_at.value
            run.advance(PipelineStage.FAILED)
            logger.warning(
                f"[PIPELINE] {request.request_id[:12]} failed in {failed_at.value}: "
                f"{type(e).__name__}: {e.summary()}"
            )
            return PipelineOutcome(
                request_id=request.request_id,
                stage=run.stage,
                history=tuple(run.history),
                commitment=commitment,
                submission=record,
                failed_stage=failed_at,
                error=e,
                timings=dict(run.timings),
            )

        logger.info(
            f"[PIPELINE] {request.request_id[:12]} done — tx={record.tx_hash} "
            f"index={record.index} verified={verified}"
        )
        return PipelineOutcome(
            request_id=request.request_id,
            stage=run.stage,
            history=tuple(run.history),
            commitment=commitment,
            submission=record,
            verified=bool(verified),
            timings=dict(run.timings),
        )

    # ── Stages ────────────────────────────────────────────────────────────────

    async def _prove(self, request: ProofRequest) -> ProofArtifact:
        async with self._prover.workspace(request.request_id) as ws:
            input_path = ws.write_input(request.prover_input())
            return await self._prover.generate_proof(input_path, self._model_path, ws)

    async def _submit(self, commitment: str) -> SubmissionRecord:
        counter_before = await self._chain.read_counter(self._contract)
        tx = await self._chain.estimate_and_build_tx(
            self._contract,
            "create_proof",
            [commitment_to_bytes32(commitment)],
            self._signer.address,
        )
        receipt = await self._chain.submit(tx, self._signer)

        # Read at the receipt's block so later appends by other requests
        # do not shift the index.
        counter_after = await self._chain.read_counter(
            self._contract, block_identifier=receipt.block_number
        )
        if counter_after <= counter_before:
            raise SubmissionError(
                "Contract counter did not advance after create_proof",
                detail=f"before={counter_before} after={counter_after} tx={receipt.tx_hash}",
            )
        return SubmissionRecord(
            commitment=commitment,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            nonce=receipt.nonce,
            counter_before=counter_before,
            counter_after=counter_after,
            index=counter_after - self._index_offset,
        )

    async def _verify(self, record: SubmissionRecord) -> bool:
        result = await self._chain.call(
            self._contract,
            "verify_proof",
            [record.index, commitment_to_bytes32(record.commitment)],
        )
        return bool(result)

    async def _with_retries(self, stage: PipelineStage, attempt: Callable[[], Awaitable[T]]) -> T:
        attempts = 1 + (self._stage_retries if stage in RETRYABLE_STAGES else 0)
        for n in range(1, attempts + 1):
            try:
                return await attempt()
            except PipelineError as e:
                if n == attempts:
                    raise
                logger.info(
                    f"[PIPELINE] {stage.value} attempt {n}/{attempts} failed "
                    f"({type(e).__name__}), retrying"
                )
        raise RuntimeError("unreachable")
