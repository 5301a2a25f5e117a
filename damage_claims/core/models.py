"""
Damage Claim Pydantic Models

Defines the claim aggregate, its evidence and audit history, and the
request bodies accepted by the lifecycle operations.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

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


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class DamagedItem(BaseModel):
    """A piece of equipment named in a claim."""
    equipment_listing_id: int = Field(..., description="Listing id of the damaged equipment")
    equipment_type: str = Field(..., min_length=1)
    equipment_booking_id: Optional[int] = None
    brand: Optional[str] = None
    description: Optional[str] = None


class HistoryEntry(BaseModel):
    """Immutable audit record written with every status change."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    claim_id: str
    previous_status: Optional[ClaimStatus] = Field(
        default=None,
        description="Status before the transition (None when the claim was created)"
    )
    new_status: ClaimStatus
    action: str = Field(..., description="Action tag, e.g. chef_response or deadline_expired")
    actor_role: ActorRole
    actor_id: Optional[int] = None
    note: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Evidence(BaseModel):
    """An attachment supporting a claim."""
    id: str = Field(default_factory=new_id)
    claim_id: str
    kind: EvidenceKind
    file_url: str = Field(..., min_length=1)
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    description: Optional[str] = None
    uploaded_by: int
    amount_cents: Optional[int] = Field(default=None, ge=0)
    vendor_name: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)


class Claim(BaseModel):
    """
    Damage Claim Model

    The aggregate root. Status only changes through the lifecycle
    service, which writes a HistoryEntry for every change.
    """
    id: str = Field(default_factory=new_id, description="Unique claim identifier")
    booking_type: BookingType
    kitchen_booking_id: Optional[int] = None
    storage_booking_id: Optional[int] = None
    chef_id: int
    manager_id: int
    location_id: int

    title: str = Field(..., min_length=1)
    description: str = ""
    damage_date: Optional[date] = None
    damaged_items: List[DamagedItem] = Field(default_factory=list)

    claimed_amount_cents: int = Field(..., gt=0, description="Amount requested by the manager")
    approved_amount_cents: Optional[int] = Field(default=None, ge=0)
    final_amount_cents: Optional[int] = Field(default=None, ge=0)
    refunded_amount_cents: int = Field(default=0, ge=0)

    status: ClaimStatus = ClaimStatus.DRAFT
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    chef_response_deadline: datetime
    submitted_at: Optional[datetime] = None

    chef_response: Optional[str] = None
    chef_responded_at: Optional[datetime] = None

    admin_reviewer_id: Optional[int] = None
    admin_reviewed_at: Optional[datetime] = None
    admin_decision_reason: Optional[str] = None
    admin_notes: Optional[str] = None

    charge_attempted_at: Optional[datetime] = None
    charge_succeeded_at: Optional[datetime] = None
    charge_failed_at: Optional[datetime] = None
    charge_failure_reason: Optional[str] = None

    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    resolution_type: Optional[ResolutionType] = None
    resolution_notes: Optional[str] = None

    # Payment linkage
    customer_ref: Optional[str] = Field(default=None, description="Gateway customer snapshotted at submission")
    payment_method_ref: Optional[str] = Field(default=None, description="Payment method snapshotted at submission")
    payment_method_source: Optional[PaymentMethodSource] = None
    payment_intent_ref: Optional[str] = None
    charge_ref: Optional[str] = None
    ledger_transaction_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_amounts(self) -> "Claim":
        if self.approved_amount_cents is not None and self.approved_amount_cents > self.claimed_amount_cents:
            raise ValueError("approved amount cannot exceed claimed amount")
        if self.final_amount_cents is not None:
            ceiling = self.approved_amount_cents if self.approved_amount_cents is not None else self.claimed_amount_cents
            if self.final_amount_cents > ceiling:
                raise ValueError("final amount cannot exceed approved amount")
        if (self.kitchen_booking_id is None) == (self.storage_booking_id is None):
            raise ValueError("exactly one of kitchen_booking_id or storage_booking_id must be set")
        return self

    @property
    def booking_id(self) -> int:
        if self.booking_type == BookingType.STORAGE:
            return self.storage_booking_id
        return self.kitchen_booking_id


class BookingRef(BaseModel):
    """Reference to the booking a claim is filed against."""
    booking_type: BookingType
    booking_id: int = Field(..., gt=0)


class ClaimCreate(BaseModel):
    """Request model for filing a new claim."""
    booking_type: BookingType
    kitchen_booking_id: Optional[int] = None
    storage_booking_id: Optional[int] = None
    manager_id: int
    title: str = Field(..., min_length=1, description="Short title of the claim")
    description: str = Field(default="", description="What was damaged and how")
    damage_date: Optional[date] = None
    claimed_amount_cents: int = Field(..., description="Amount requested, in cents")
    damaged_items: List[DamagedItem] = Field(default_factory=list)
    submit_immediately: bool = Field(
        default=False,
        description="Skip draft and create the claim as submitted"
    )

    @model_validator(mode="after")
    def _booking_matches_type(self) -> "ClaimCreate":
        if self.booking_type == BookingType.KITCHEN and self.kitchen_booking_id is None:
            raise ValueError("kitchen_booking_id is required for kitchen claims")
        if self.booking_type == BookingType.STORAGE and self.storage_booking_id is None:
            raise ValueError("storage_booking_id is required for storage claims")
        return self

    @property
    def booking_ref(self) -> BookingRef:
        if self.booking_type == BookingType.STORAGE:
            return BookingRef(booking_type=self.booking_type, booking_id=self.storage_booking_id)
        return BookingRef(booking_type=self.booking_type, booking_id=self.kitchen_booking_id)


class ClaimData(BaseModel):
    """Claim details supplied by other workflows through file_claim."""
    title: str = Field(..., min_length=1)
    description: str = ""
    damage_date: Optional[date] = None
    claimed_amount_cents: int
    damaged_items: List[DamagedItem] = Field(default_factory=list)


class DraftUpdate(BaseModel):
    """Editable fields of a draft claim."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    damage_date: Optional[date] = None
    claimed_amount_cents: Optional[int] = None


class ChefResponse(BaseModel):
    action: ChefAction
    response: str = Field(default="", description="Chef's explanation")


class AdminDecision(BaseModel):
    decision: AdminVerdict
    approved_amount_cents: Optional[int] = None
    decision_reason: str = Field(..., min_length=1)
    notes: Optional[str] = None


class EvidenceCreate(BaseModel):
    kind: EvidenceKind
    file_url: str = Field(..., min_length=1)
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    description: Optional[str] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    vendor_name: Optional[str] = None


class RefundRequest(BaseModel):
    amount_cents: Optional[int] = Field(
        default=None,
        description="Amount to refund; the full remaining balance when omitted"
    )
    reason: str = Field(..., min_length=1)
    refunded_by: int
