# Core module - statuses, models and results
from .states import (
    ActorRole,
    AdminVerdict,
    BookingType,
    ChefAction,
    ClaimStatus,
    EvidenceKind,
    PaymentMethodSource,
    ResolutionType,
)
from .models import (
    AdminDecision,
    BookingRef,
    ChefResponse,
    Claim,
    ClaimCreate,
    ClaimData,
    DraftUpdate,
    Evidence,
    EvidenceCreate,
    HistoryEntry,
    RefundRequest,
)
from .results import (
    ChargeResult,
    ClaimError,
    ClaimResult,
    ErrorKind,
    EvidenceResult,
    RefundBreakdown,
    RefundResult,
)

__all__ = [
    "ActorRole",
    "AdminVerdict",
    "BookingType",
    "ChefAction",
    "ClaimStatus",
    "EvidenceKind",
    "PaymentMethodSource",
    "ResolutionType",
    "AdminDecision",
    "BookingRef",
    "ChefResponse",
    "Claim",
    "ClaimCreate",
    "ClaimData",
    "DraftUpdate",
    "Evidence",
    "EvidenceCreate",
    "HistoryEntry",
    "RefundRequest",
    "ChargeResult",
    "ClaimError",
    "ClaimResult",
    "ErrorKind",
    "EvidenceResult",
    "RefundBreakdown",
    "RefundResult",
]
