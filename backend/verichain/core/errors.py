"""
Error taxonomy for the proof relay pipeline.

Two families:
    - Startup errors (LoadError, AbiParseError, InvalidKeyError) abort
      process initialization. They are never mapped to an HTTP response.
    - Request errors (everything else) terminate one pipeline run in the
      Failed state and are surfaced to the caller as a structured payload
      naming the failed stage.

Every error carries a short machine-readable ``reason`` and an
``http_status`` used by the API layer. ``summary()`` yields the
human-readable cause; raw process stderr and node error text are
truncated, never returned verbatim.
"""

from typing import Optional

SUMMARY_MAX_CHARS = 160


def summarize(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Collapse whitespace and keep the last meaningful line, truncated."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return ""
    tail = lines[-1]
    if len(tail) > limit:
        tail = tail[: limit - 3] + "..."
    return tail


class PipelineError(Exception):
    """Base class for every error raised by a pipeline collaborator."""

    reason: str = "PIPELINE_ERROR"
    http_status: int = 500

    def __init__(self, message: str, *, detail: str = "", stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.stage = stage

    def summary(self) -> str:
        extra = summarize(self.detail)
        return f"{self.message}: {extra}" if extra else self.message


# ── Startup (fatal) ────────────────────────────────────────────────────────────

class LoadError(PipelineError):
    """Contract interface source is unreadable or cannot be bound."""
    reason = "LOAD_ERROR"


class AbiParseError(LoadError):
    """Interface description is not a valid ABI."""
    reason = "ABI_PARSE_ERROR"


class InvalidKeyError(PipelineError):
    """Relayer private key is missing or malformed."""
    reason = "INVALID_KEY"


# ── Request validation ────────────────────────────────────────────────────────

class InvalidRequestError(PipelineError):
    """Requester address or relayed signature is invalid."""
    reason = "INVALID_REQUEST"
    http_status = 400


# ── Prover ────────────────────────────────────────────────────────────────────

class ProcessFailedError(PipelineError):
    """External prover exited with a non-zero code."""
    reason = "PROCESS_FAILED"
    http_status = 502

    def __init__(self, message: str, *, returncode: int, stderr: str = "", stage: Optional[str] = None):
        super().__init__(message, detail=stderr, stage=stage)
        self.returncode = returncode
        self.stderr = stderr

    def summary(self) -> str:
        # Callers see the last stderr line only ("setup failed"), not the full dump.
        return summarize(self.stderr) or f"{self.message} (exit code {self.returncode})"


class ArtifactMissingError(PipelineError):
    """Prover exited cleanly but the declared proof file is absent."""
    reason = "ARTIFACT_MISSING"
    http_status = 502


class ProverTimeoutError(PipelineError, TimeoutError):
    """Prover exceeded its wall-clock budget and was killed."""
    reason = "PROVER_TIMEOUT"
    http_status = 504


# ── Chain ─────────────────────────────────────────────────────────────────────

class EstimationError(PipelineError):
    """Node rejected gas estimation (the call would revert)."""
    reason = "ESTIMATION_FAILED"
    http_status = 502


class SubmissionError(PipelineError):
    """Node rejected the signed transaction or it reverted on-chain."""
    reason = "SUBMISSION_FAILED"
    http_status = 502


class ReceiptTimeoutError(PipelineError, TimeoutError):
    """No receipt arrived within the bounded wait."""
    reason = "RECEIPT_TIMEOUT"
    http_status = 504


class CallError(PipelineError):
    """Read-only contract call reverted or the node was unreachable."""
    reason = "CALL_FAILED"
    http_status = 502
