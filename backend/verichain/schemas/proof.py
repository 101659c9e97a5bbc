"""
Pydantic schemas for proof requests, on-chain submission records and
the HTTP response payloads.

- ProofRequest: one logical unit of work. Immutable once validated.
  The requester address is normalized to its EIP-55 checksum form.
  An optional relayed signature must recover to the requester.
- SubmissionRecord: correlates a commitment with the transaction that
  recorded it and the index it was appended at.
"""

from typing import Any, Dict, Optional
from uuid import uuid4

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from verichain.core.errors import InvalidRequestError


class ProofRequest(BaseModel):
    """
    Inbound request for a proof relay.

    Mirrors the query of ``GET /verified-chain``:
        hello       → payload
        helloSetter → requester
        signature   → signature (optional, 0x-hex, 65 bytes)
    """
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    requester: str = Field(..., description="Requester chain address")
    payload: str = Field(..., min_length=1, max_length=4096, description="Opaque payload passed to the prover")
    signature: Optional[str] = Field(default=None, description="EIP-191 signature of the payload by the requester")

    @field_validator("requester")
    @classmethod
    def normalize_requester(cls, v: str) -> str:
        if not is_address(v):
            raise ValueError(f"Not a chain address: {v!r}")
        return to_checksum_address(v)

    @field_validator("signature")
    @classmethod
    def check_signature_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        body = v[2:] if v.startswith("0x") else v
        try:
            raw = bytes.fromhex(body)
        except ValueError:
            raise ValueError("Signature is not hex")
        if len(raw) != 65:
            raise ValueError(f"Signature must be 65 bytes, got {len(raw)}")
        return "0x" + body.lower()

    @classmethod
    def from_query(cls, hello: str, hello_setter: str, signature: Optional[str] = None) -> "ProofRequest":
        """Build and fully validate a request, raising InvalidRequestError on any problem."""
        try:
            request = cls(requester=hello_setter, payload=hello, signature=signature)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "request"
            raise InvalidRequestError(f"Invalid {field}", detail=first.get("msg", ""), stage="Idle")
        request.verify_signature()
        return request

    def verify_signature(self) -> None:
        """
        Check that the relayed signature was produced by the requester.

        No-op when no signature was supplied.
        """
        if self.signature is None:
            return
        try:
            signer = Account.recover_message(encode_defunct(text=self.payload), signature=self.signature)
        except Exception as e:  # eth_keys raises several unrelated types for bad signatures
            raise InvalidRequestError("Signature could not be recovered", detail=str(e), stage="Idle")
        if signer != self.requester:
            raise InvalidRequestError(
                "Signature does not match requester",
                detail=f"recovered {signer}",
                stage="Idle",
            )

    def prover_input(self) -> Dict[str, Any]:
        """Document written into the request-scoped prover directory."""
        return {
            "request_id": self.request_id,
            "requester": self.requester,
            "payload": self.payload,
        }

    def success_message(self) -> str:
        return f"{self.requester} set hello to {self.payload}"


class SubmissionRecord(BaseModel):
    """Links a commitment to the transaction and index that recorded it."""
    model_config = ConfigDict(frozen=True)

    commitment: str
    tx_hash: str
    block_number: int
    nonce: int
    counter_before: int
    counter_after: int
    index: int = Field(..., ge=0, description="Position to query with verify_proof")


class VerifiedChainResponse(BaseModel):
    """Success payload of GET /verified-chain."""
    message: str
    request_id: str
    commitment: str
    tx_hash: str
    index: int
    verified: bool


class PipelineErrorDetail(BaseModel):
    """Failure payload: which stage failed and a summarized cause."""
    request_id: Optional[str] = None
    stage: str
    error: str
    reason: str
    message: str
