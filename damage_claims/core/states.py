"""
Claim State Definitions

Defines the statuses a damage claim moves through, plus the small
vocabularies (booking types, evidence kinds, actor roles, resolution
types) that travel with it.
"""
from enum import Enum


class ClaimStatus(str, Enum):
    """
    Enum representing the possible statuses of a damage claim.

    Standard Flow: DRAFT -> SUBMITTED -> APPROVED -> CHARGE_PENDING -> CHARGE_SUCCEEDED
    With Dispute: SUBMITTED -> UNDER_REVIEW -> APPROVED | PARTIALLY_APPROVED | REJECTED

    CHEF_ACCEPTED and CHEF_DISPUTED are never stored on a claim. They only
    appear as the intermediate status recorded on a history entry.
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    CHEF_ACCEPTED = "chef_accepted"
    CHEF_DISPUTED = "chef_disputed"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    CHARGE_PENDING = "charge_pending"
    CHARGE_SUCCEEDED = "charge_succeeded"
    CHARGE_FAILED = "charge_failed"
    RESOLVED = "resolved"
    EXPIRED = "expired"


# Statuses that mean money is owed and not yet collected
UNPAID_STATUSES = frozenset({
    ClaimStatus.APPROVED,
    ClaimStatus.PARTIALLY_APPROVED,
    ClaimStatus.CHARGE_PENDING,
    ClaimStatus.CHARGE_FAILED,
})

# Statuses from which evidence may still be attached
EVIDENCE_OPEN_STATUSES = frozenset({
    ClaimStatus.DRAFT,
    ClaimStatus.SUBMITTED,
    ClaimStatus.UNDER_REVIEW,
})


class BookingType(str, Enum):
    KITCHEN = "kitchen"
    STORAGE = "storage"


class EvidenceKind(str, Enum):
    PHOTO_BEFORE = "photo_before"
    PHOTO_AFTER = "photo_after"
    RECEIPT = "receipt"
    INVOICE = "invoice"
    VIDEO = "video"
    DOCUMENT = "document"
    THIRD_PARTY_REPORT = "third_party_report"


class ActorRole(str, Enum):
    MANAGER = "manager"
    CHEF = "chef"
    ADMIN = "admin"
    SYSTEM = "system"
    GATEWAY = "gateway"


class ResolutionType(str, Enum):
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    REJECTED = "rejected"


class ChefAction(str, Enum):
    ACCEPT = "accept"
    DISPUTE = "dispute"


class AdminVerdict(str, Enum):
    APPROVE = "approve"
    PARTIALLY_APPROVE = "partially_approve"
    REJECT = "reject"


class PaymentMethodSource(str, Enum):
    """Where a claim's payment instrument was found."""
    CLAIM_SNAPSHOT = "claim_snapshot"
    KITCHEN_BOOKING = "kitchen_booking"
    STORAGE_BOOKING = "storage_booking"
    STORAGE_BOOKING_FALLBACK = "storage_booking_fallback"
