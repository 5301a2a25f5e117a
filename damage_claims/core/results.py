"""
Operation Results and Errors

Lifecycle operations report rejections as typed results rather than
raising. The exceptions defined here are raised by the persistence layer
and translated into results by the services.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .models import Claim, Evidence


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class ClaimError(BaseModel):
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ClaimResult(BaseModel):
    """Outcome of a lifecycle operation."""
    ok: bool
    claim: Optional[Claim] = None
    error: Optional[ClaimError] = None

    @classmethod
    def success(cls, claim: Optional[Claim] = None) -> "ClaimResult":
        return cls(ok=True, claim=claim)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "ClaimResult":
        return cls(ok=False, error=ClaimError(kind=kind, message=message, details=details))


class EvidenceResult(BaseModel):
    """Outcome of an evidence operation."""
    ok: bool
    evidence: Optional[Evidence] = None
    error: Optional[ClaimError] = None

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "EvidenceResult":
        return cls(ok=False, error=ClaimError(kind=kind, message=message, details=details))


class ChargeResult(BaseModel):
    """Outcome of a capture attempt."""
    success: bool
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class RefundBreakdown(BaseModel):
    charged_amount_cents: int
    manager_net_received_cents: int
    already_refunded_cents: int
    max_refundable_cents: int
    original_fee_cents: int


class RefundResult(BaseModel):
    """Outcome of a refund request."""
    success: bool
    refund_id: Optional[str] = None
    refund_amount_cents: Optional[int] = None
    remaining_balance_cents: Optional[int] = None
    is_full_refund: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class StoreError(Exception):
    """Base class for persistence-layer failures."""


class ClaimNotFound(StoreError):
    def __init__(self, claim_id: str):
        super().__init__(f"Claim {claim_id} not found")
        self.claim_id = claim_id


class StatusConflict(StoreError):
    """The claim's status was not the expected one at write time."""

    def __init__(self, claim_id: str, expected: Any, actual: Any):
        super().__init__(
            f"Claim {claim_id} is in status {getattr(actual, 'value', actual)}, "
            f"expected {getattr(expected, 'value', expected)}"
        )
        self.claim_id = claim_id
        self.expected = expected
        self.actual = actual


class OwnershipMismatch(StoreError):
    """The acting user does not own the claim."""

    def __init__(self, claim_id: str, field: str):
        super().__init__(f"Not authorized for claim {claim_id} ({field} mismatch)")
        self.claim_id = claim_id
        self.field = field
