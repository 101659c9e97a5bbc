"""
VERIFIED-CHAIN — API Entry Point.

Relays proof requests to the chain:

    GET /verified-chain?hello=<payload>&helloSetter=<address>&signature=<hex>
        1. ProofRequest validation (address format, relayed signature)
        2. SubmissionOrchestrator: Proving → Hashing → Submitting → Verifying
        3. 200 with the on-chain record, or the failed stage with a mapped
           status code (400 / 502 / 504)

All chain and prover collaborators are built once in the lifespan and
held on ``app.state``. Startup errors (unreadable ABI, bad key, missing
address) abort boot.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware

from verichain import __version__
from verichain.core.config import Settings, settings as default_settings
from verichain.core.errors import PipelineError
from verichain.infrastructure.blockchain import ChainClient, load_account, load_contract
from verichain.infrastructure.prover import ProverInvoker
from verichain.schemas.proof import PipelineErrorDetail, ProofRequest, VerifiedChainResponse
from verichain.services.submission_orchestrator import PipelineOutcome, SubmissionOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(cfg: Settings) -> SubmissionOrchestrator:
    """
    Wire every collaborator from settings.

    Raises:
        LoadError / AbiParseError: contract interface unusable.
        InvalidKeyError: relayer key missing or malformed.
    """
    signer = load_account(cfg.RELAYER_PRIVATE_KEY)
    chain = ChainClient.connect(
        cfg.WEB3_PROVIDER_URL,
        chain_id=cfg.CHAIN_ID,
        gas_multiplier=cfg.GAS_LIMIT_MULTIPLIER,
        receipt_timeout=cfg.RECEIPT_TIMEOUT_SECONDS,
        poll_latency=cfg.RECEIPT_POLL_SECONDS,
    )
    contract = load_contract(chain.w3, cfg.CONTRACT_ABI_PATH, cfg.PROOF_CONTRACT_ADDRESS)
    prover = ProverInvoker(
        [cfg.PROVER_BINARY],
        logrows=cfg.PROVER_LOGROWS,
        bits=cfg.PROVER_BITS,
        timeout=cfg.PROVER_TIMEOUT_SECONDS,
        work_root=cfg.PROVER_WORK_DIR or None,
        keep_artifacts=cfg.PROVER_KEEP_ARTIFACTS,
    )
    return SubmissionOrchestrator(
        prover,
        chain,
        contract,
        signer,
        model_path=cfg.PROVER_MODEL_PATH,
        stage_retries=cfg.STAGE_RETRIES,
        counter_index_offset=cfg.COUNTER_INDEX_OFFSET,
    )


def create_app(
    cfg: Optional[Settings] = None,
    orchestrator: Optional[SubmissionOrchestrator] = None,
    chain: Optional[ChainClient] = None,
) -> FastAPI:
    """Application factory. Tests inject a prebuilt orchestrator and chain client."""
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.boot_time = time.time()
        if orchestrator is None:
            app.state.orchestrator = build_orchestrator(cfg)
            app.state.chain = app.state.orchestrator.chain
        else:
            app.state.orchestrator = orchestrator
            app.state.chain = chain
        logger.info(
            f"[MAIN] {cfg.PROJECT_NAME} ready — relayer={app.state.orchestrator.relayer_address} "
            f"contract={app.state.orchestrator.contract.address}"
        )
        yield

    app = FastAPI(
        title=cfg.PROJECT_NAME,
        description="Relays zero-knowledge proof commitments to an on-chain registry",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    async def health_check(request: Request) -> dict:
        """
        Liveness plus a shallow node snapshot. Never exposes key material.
        """
        node = {"connected": False, "chain_id": None}
        chain_client: Optional[ChainClient] = getattr(request.app.state, "chain", None)
        if chain_client is not None:
            node = await chain_client.health()
        orch: SubmissionOrchestrator = request.app.state.orchestrator
        return {
            "status": "operational" if node["connected"] else "degraded",
            "version": __version__,
            "uptime_seconds": round(time.time() - request.app.state.boot_time, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "node": node,
            "relayer": orch.relayer_address,
            "contract": orch.contract.address,
        }

    @app.get("/verified-chain", response_model=VerifiedChainResponse, tags=["Proofs"])
    async def verified_chain(
        request: Request,
        hello: str = Query(..., description="Payload passed to the prover"),
        helloSetter: str = Query(..., description="Requester chain address"),
        signature: Optional[str] = Query(default=None, description="Requester signature over hello"),
    ) -> VerifiedChainResponse:
        """
        Run one full pipeline and return the confirmed on-chain record.

        Raises:
            400: Malformed address or signature not matching the requester.
            502: Prover failure or node rejection.
            504: Prover or receipt wait timed out.
        """
        try:
            proof_request = ProofRequest.from_query(hello, helloSetter, signature)
        except PipelineError as e:
            raise _to_http(e, request_id=None)

        orch: SubmissionOrchestrator = request.app.state.orchestrator
        outcome = await orch.run(proof_request)
        if not outcome.ok:
            raise _to_http(outcome.error, request_id=outcome.request_id)

        return _to_response(proof_request, outcome)

    return app


def _to_response(proof_request: ProofRequest, outcome: PipelineOutcome) -> VerifiedChainResponse:
    record = outcome.submission
    return VerifiedChainResponse(
        message=proof_request.success_message(),
        request_id=outcome.request_id,
        commitment=outcome.commitment,
        tx_hash=record.tx_hash,
        index=record.index,
        verified=bool(outcome.verified),
    )


def _to_http(error: PipelineError, request_id: Optional[str]) -> HTTPException:
    detail = PipelineErrorDetail(
        request_id=request_id,
        stage=error.stage or "Idle",
        error=type(error).__name__,
        reason=error.reason,
        message=error.summary(),
    )
    code = error.http_status if error.http_status >= 400 else status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=detail.model_dump())


logging.basicConfig(
    level=default_settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("verichain.main:app", host="0.0.0.0", port=default_settings.PORT)
