# tests/conftest.py
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from damage_claims.config.settings import (
    ClaimLimits,
    GatewaySettings,
    SchedulerSettings,
    Settings,
)
from damage_claims.core.models import ClaimCreate, EvidenceCreate
from damage_claims.core.states import BookingType, ClaimStatus, EvidenceKind
from damage_claims.engine import build_engine
from damage_claims.gateway.base import (
    ChargeRequest,
    GatewayCharge,
    GatewayError,
    GatewayRefund,
    PaymentGateway,
)
from damage_claims.integrations.notifications import Notifier
from damage_claims.persistence.bookings import BookingRecord, InMemoryBookingDirectory

CHEF_ID = 10
MANAGER_ID = 20
ADMIN_ID = 99
LOCATION_ID = 5
KITCHEN_BOOKING_ID = 100
STORAGE_BOOKING_ID = 200


class FakeGateway(PaymentGateway):
    """In-memory gateway honouring idempotency keys."""

    def __init__(self):
        self.charges: Dict[str, GatewayCharge] = {}
        self.requests: List[ChargeRequest] = []
        self.refunds: List[dict] = []
        self.charge_status = "succeeded"
        self.error: Optional[str] = None
        self.refund_error: Optional[str] = None
        self.processing_fee: Optional[int] = 146

    def create_charge(self, request: ChargeRequest) -> GatewayCharge:
        self.requests.append(request)
        if self.error:
            raise GatewayError(self.error, code="card_declined")
        existing = self.charges.get(request.idempotency_key)
        if existing is not None:
            return existing
        n = len(self.charges) + 1
        charge = GatewayCharge(
            id=f"pi_{n}",
            status=self.charge_status,
            amount_cents=request.amount_cents,
            charge_id=f"ch_{n}",
        )
        self.charges[request.idempotency_key] = charge
        return charge

    def lookup_charge(self, idempotency_key: str) -> Optional[GatewayCharge]:
        return self.charges.get(idempotency_key)

    def create_refund(self, payment_intent_id, amount_cents, reason, metadata) -> GatewayRefund:
        if self.refund_error:
            raise GatewayError(self.refund_error)
        self.refunds.append({
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "reason": reason,
            "metadata": metadata,
        })
        return GatewayRefund(id=f"re_{len(self.refunds)}", amount_cents=amount_cents, status="succeeded")

    def fetch_processing_fee(self, payment_intent_id: str) -> Optional[int]:
        return self.processing_fee

    @property
    def distinct_charges(self) -> int:
        return len(self.charges)


class RecordingNotifier(Notifier):

    def __init__(self):
        self.sent: List[tuple] = []
        self.fail = False

    def notify(self, event_kind, recipient_id, payload) -> None:
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.sent.append((event_kind, recipient_id, payload))

    def kinds(self) -> List[str]:
        return [kind.value for kind, _, _ in self.sent]


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def bookings():
    directory = InMemoryBookingDirectory()
    directory.add_booking(BookingRecord(
        id=KITCHEN_BOOKING_ID,
        booking_type=BookingType.KITCHEN,
        chef_id=CHEF_ID,
        location_id=LOCATION_ID,
        manager_id=MANAGER_ID,
        customer_ref="cus_chef",
        payment_method_ref="pm_kitchen",
    ))
    directory.add_booking(BookingRecord(
        id=STORAGE_BOOKING_ID,
        booking_type=BookingType.STORAGE,
        chef_id=CHEF_ID,
        location_id=LOCATION_ID,
        manager_id=MANAGER_ID,
        customer_ref="cus_chef",
        payment_method_ref="pm_storage",
        kitchen_booking_id=KITCHEN_BOOKING_ID,
    ))
    directory.set_destination_account(MANAGER_ID, "acct_manager")
    return directory


@pytest.fixture
def settings():
    return Settings(
        limits=ClaimLimits(),
        gateway=GatewaySettings(base_url="", api_key="sk_test", currency="cad"),
        scheduler=SchedulerSettings(capture_in_background=False, capture_workers=2),
    )


@pytest.fixture
def engine(settings, bookings, gateway, notifier, clock):
    return build_engine(settings, bookings=bookings, gateway=gateway, notifier=notifier, clock=clock)


def claim_input(amount_cents: int = 5000, booking_type: BookingType = BookingType.KITCHEN, **overrides) -> ClaimCreate:
    data = {
        "booking_type": booking_type,
        "manager_id": MANAGER_ID,
        "title": "Cracked mixer bowl",
        "description": "Bowl dropped during service",
        "claimed_amount_cents": amount_cents,
    }
    if booking_type == BookingType.KITCHEN:
        data["kitchen_booking_id"] = KITCHEN_BOOKING_ID
    else:
        data["storage_booking_id"] = STORAGE_BOOKING_ID
    data.update(overrides)
    return ClaimCreate(**data)


def evidence(kind: EvidenceKind = EvidenceKind.PHOTO_AFTER) -> EvidenceCreate:
    return EvidenceCreate(kind=kind, file_url=f"https://files.example/{kind.value}.jpg")


async def draft_with_evidence(engine, count: int = 2, **overrides):
    result = await engine.lifecycle.create(claim_input(**overrides))
    assert result.ok, result.error
    for kind in [EvidenceKind.PHOTO_BEFORE, EvidenceKind.PHOTO_AFTER, EvidenceKind.RECEIPT][:count]:
        added = await engine.evidence.add_evidence(result.claim.id, MANAGER_ID, evidence(kind))
        assert added.ok, added.error
    return result.claim


async def submitted_claim(engine, **overrides):
    draft = await draft_with_evidence(engine, **overrides)
    result = await engine.lifecycle.submit(draft.id, MANAGER_ID)
    assert result.ok, result.error
    assert result.claim.status == ClaimStatus.SUBMITTED
    return result.claim
