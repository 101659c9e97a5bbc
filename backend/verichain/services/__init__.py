from verichain.services.submission_orchestrator import (
    PipelineOutcome,
    PipelineRun,
    PipelineStage,
    SubmissionOrchestrator,
)

__all__ = ["PipelineOutcome", "PipelineRun", "PipelineStage", "SubmissionOrchestrator"]
