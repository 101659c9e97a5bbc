"""
Prover Invoker — runs the external ezkl CLI and retrieves the proof.

Two fixed stages per invocation:
    1. setup  — generate proving/verification keys and SRS parameters
    2. prove  — produce the proof file

Both run inside a request-scoped working directory, so concurrent
requests never share or overwrite each other's keys or proofs. The
whole invocation has one wall-clock budget. A stage that overruns it is
killed and reaped before ProverTimeoutError is raised; no child process
outlives its request.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from verichain.core.errors import ArtifactMissingError, ProcessFailedError, ProverTimeoutError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND TEMPLATES
# ═══════════════════════════════════════════════════════════════════════════════
# -K is the circuit size (log2 rows, the security parameter), --bits the
# fixed-point bit-width of the lookup tables.

SETUP_TEMPLATE: Sequence[str] = (
    "-K={logrows}", "--bits={bits}", "setup",
    "-D", "{input}", "-M", "{model}",
    "--params-path", "{params}", "--vk-path", "{vk}", "--pk-path", "{pk}",
)

PROVE_TEMPLATE: Sequence[str] = (
    "-K={logrows}", "--bits={bits}", "prove",
    "-D", "{input}", "-M", "{model}",
    "--params-path", "{params}", "--pk-path", "{pk}", "--proof-path", "{proof}",
)

STAGES = (("setup", SETUP_TEMPLATE), ("prove", PROVE_TEMPLATE))

_SAFE_ID = re.compile(r"[^A-Za-z0-9_-]")


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProverWorkspace:
    """Private directory of one request. Every output path lives under ``root``."""
    request_id: str
    root: Path

    @property
    def input_path(self) -> Path:
        return self.root / "input.json"

    @property
    def params_path(self) -> Path:
        return self.root / "kzg.params"

    @property
    def vk_path(self) -> Path:
        return self.root / "vk.key"

    @property
    def pk_path(self) -> Path:
        return self.root / "pk.key"

    @property
    def proof_path(self) -> Path:
        return self.root / "proof.pf"

    def write_input(self, document: Dict[str, Any]) -> Path:
        try:
            self.input_path.write_text(json.dumps(document, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise ProcessFailedError("Could not write prover input", returncode=-1, stderr=str(e))
        return self.input_path


@dataclass(frozen=True)
class ProofArtifact:
    """Raw proof bytes exactly as the prover wrote them."""
    request_id: str
    data: bytes
    source_path: str
    verification_key: Optional[bytes] = None

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StageResult:
    stage: str
    returncode: int
    stdout: str
    stderr: str
    duration_s: float


# ═══════════════════════════════════════════════════════════════════════════════
# INVOKER
# ═══════════════════════════════════════════════════════════════════════════════

class ProverInvoker:
    """
    Usage:
        invoker = ProverInvoker(["ezkl"], timeout=600)
        async with invoker.workspace(request_id) as ws:
            input_path = ws.write_input({...})
            artifact = await invoker.generate_proof(input_path, "network.onnx", ws)
    """

    def __init__(
        self,
        command: Sequence[str] = ("ezkl",),
        *,
        logrows: int = 17,
        bits: int = 16,
        timeout: float = 600.0,
        work_root: Optional[PathLike] = None,
        keep_artifacts: bool = False,
    ) -> None:
        if not command:
            raise ValueError("Prover command must not be empty")
        self._command = list(command)
        self._logrows = logrows
        self._bits = bits
        self._timeout = timeout
        self._work_root = Path(work_root) if work_root else None
        self._keep = keep_artifacts

    @property
    def timeout(self) -> float:
        return self._timeout

    @asynccontextmanager
    async def workspace(self, request_id: str) -> AsyncIterator[ProverWorkspace]:
        """Create a unique directory for one request; removed on exit unless kept."""
        prefix = f"proof-{_SAFE_ID.sub('', request_id)[:32]}-"
        try:
            if self._work_root is not None:
                self._work_root.mkdir(parents=True, exist_ok=True)
            root = Path(tempfile.mkdtemp(prefix=prefix, dir=self._work_root))
        except OSError as e:
            raise ProcessFailedError("Could not create prover workspace", returncode=-1, stderr=str(e))
        try:
            yield ProverWorkspace(request_id=request_id, root=root)
        finally:
            if self._keep:
                logger.info(f"[PROVER] Keeping workspace {root}")
            else:
                shutil.rmtree(root, ignore_errors=True)

    def build_args(
        self,
        template: Sequence[str],
        input_path: PathLike,
        model_path: PathLike,
        ws: ProverWorkspace,
    ) -> List[str]:
        values = {
            "logrows": self._logrows,
            "bits": self._bits,
            "input": str(input_path),
            "model": str(model_path),
            "params": str(ws.params_path),
            "vk": str(ws.vk_path),
            "pk": str(ws.pk_path),
            "proof": str(ws.proof_path),
        }
        return self._command + [part.format(**values) for part in template]

    async def generate_proof(
        self,
        input_path: PathLike,
        model_path: PathLike,
        ws: ProverWorkspace,
    ) -> ProofArtifact:
        """
        Run setup then prove, and read the proof file.

        Raises:
            ProcessFailedError: A stage exited non-zero, could not start, or
                                its workspace files could not be written.
            ProverTimeoutError: The invocation exceeded its budget; the
                                running stage was killed.
            ArtifactMissingError: Both stages succeeded but no proof file
                                  exists at the declared path.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        for stage, template in STAGES:
            args = self.build_args(template, input_path, model_path, ws)
            result = await self._run_stage(stage, args, cwd=ws.root, deadline=deadline)
            logger.info(
                f"[PROVER] {ws.request_id[:12]} {stage} ok in {result.duration_s:.2f}s"
            )

        proof_path = ws.proof_path
        if not proof_path.is_file():
            raise ArtifactMissingError(
                "Prover exited cleanly but wrote no proof", detail=str(proof_path.name)
            )
        try:
            data = proof_path.read_bytes()
            vk = ws.vk_path.read_bytes() if ws.vk_path.is_file() else None
        except OSError as e:
            raise ArtifactMissingError("Proof file could not be read", detail=str(e))
        logger.info(f"[PROVER] {ws.request_id[:12]} proof retrieved ({len(data)} bytes)")
        return ProofArtifact(
            request_id=ws.request_id,
            data=data,
            source_path=str(proof_path),
            verification_key=vk,
        )

    async def _run_stage(self, stage: str, args: List[str], *, cwd: Path, deadline: float) -> StageResult:
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ProverTimeoutError(f"Prover budget of {self._timeout:.0f}s exhausted before {stage}")

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except OSError as e:
            raise ProcessFailedError(f"Prover {stage} could not start", returncode=127, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=remaining)
        except asyncio.TimeoutError:
            raise ProverTimeoutError(
                f"Prover {stage} exceeded {self._timeout:.0f}s budget and was killed"
            )
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if out:
            logger.debug(f"[PROVER] {stage} stdout:\n{out[-2000:]}")
        if err:
            logger.debug(f"[PROVER] {stage} stderr:\n{err[-2000:]}")

        if proc.returncode != 0:
            logger.error(f"[PROVER] {stage} failed with exit code {proc.returncode}")
            raise ProcessFailedError(
                f"Prover {stage} failed", returncode=proc.returncode, stderr=err
            )
        return StageResult(
            stage=stage,
            returncode=proc.returncode,
            stdout=out,
            stderr=err,
            duration_s=time.monotonic() - started,
        )
