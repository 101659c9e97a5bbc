from verichain.infrastructure.prover.ezkl_invoker import (
    ProofArtifact,
    ProverInvoker,
    ProverWorkspace,
)

__all__ = ["ProofArtifact", "ProverInvoker", "ProverWorkspace"]
