# tests/test_capture.py
from datetime import timedelta

import pytest

from conftest import ADMIN_ID, CHEF_ID, KITCHEN_BOOKING_ID, MANAGER_ID, STORAGE_BOOKING_ID, submitted_claim
from damage_claims.core.models import ChefResponse, HistoryEntry
from damage_claims.core.results import ErrorKind
from damage_claims.core.states import ActorRole, BookingType, ChefAction, ClaimStatus, PaymentMethodSource, ResolutionType
from damage_claims.gateway.base import GatewayCharge
from damage_claims.persistence.bookings import BookingRecord
from damage_claims.services.capture import NO_PAYMENT_METHOD, idempotency_key
from damage_claims.services.fees import break_even_fee


async def accepted(engine, **overrides):
    claim = await submitted_claim(engine, **overrides)
    await engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT))
    return await engine.lifecycle.get_claim(claim.id)


def test_break_even_fee():
    assert break_even_fee(4000, 0.029, 30) == 146
    assert break_even_fee(5000, 0.029, 30) == 175
    assert break_even_fee(0, 0.029, 30) == 0
    # 1500 * 0.029 = 43.5, rounds half up
    assert break_even_fee(1500, 0.029, 0) == 44


def test_idempotency_key_uses_utc_day(clock):
    assert idempotency_key("abc", clock.now) == "damage_claim_abc_2024-03-01"


@pytest.mark.asyncio
async def test_successful_capture(engine, gateway, clock):
    claim = await accepted(engine, amount_cents=4000)

    assert claim.status == ClaimStatus.CHARGE_SUCCEEDED
    assert claim.resolution_type == ResolutionType.PAID
    assert claim.payment_intent_ref == "pi_1"
    assert claim.charge_ref == "ch_1"

    request = gateway.requests[0]
    assert request.amount_cents == 4000
    assert request.application_fee_cents == 146
    assert request.destination_account == "acct_manager"
    assert request.customer_ref == "cus_chef"
    assert request.payment_method_ref == "pm_kitchen"
    assert request.idempotency_key == f"damage_claim_{claim.id}_2024-03-01"

    history = await engine.lifecycle.get_history(claim.id)
    assert [h.action for h in history[-2:]] == ["charge_initiated", "charge_succeeded"]


@pytest.mark.asyncio
async def test_capture_records_ledger_and_syncs_fee(engine, gateway):
    claim = await accepted(engine, amount_cents=4000)
    await engine.monitor.drain()

    tx = await engine.ledger.find_by_claim(claim.id)
    assert tx.amount_cents == 4000
    assert tx.service_fee_cents == 146
    assert tx.manager_revenue_cents == 3854
    assert tx.gateway_processing_fee_cents == 146
    assert claim.ledger_transaction_id == tx.id


@pytest.mark.asyncio
async def test_no_fee_without_destination_account(engine, bookings, gateway):
    bookings._accounts.clear()
    claim = await accepted(engine, amount_cents=4000)

    assert gateway.requests[0].application_fee_cents is None
    tx = await engine.ledger.find_by_claim(claim.id)
    assert tx.manager_revenue_cents == 4000


@pytest.mark.asyncio
async def test_gateway_error_leaves_claim_charge_failed(engine, gateway, notifier):
    gateway.error = "Your card was declined."
    claim = await accepted(engine)

    assert claim.status == ClaimStatus.CHARGE_FAILED
    assert claim.charge_failure_reason == "Your card was declined."
    # Adjudication is kept
    assert claim.approved_amount_cents == claim.claimed_amount_cents
    history = await engine.lifecycle.get_history(claim.id)
    assert history[-1].action == "charge_failed"
    assert history[-1].note == "Your card was declined."
    assert "damage_claim_charge_failed" in notifier.kinds()


@pytest.mark.asyncio
async def test_non_succeeded_status_is_a_failure(engine, gateway):
    gateway.charge_status = "requires_action"
    claim = await accepted(engine)
    assert claim.status == ClaimStatus.CHARGE_FAILED
    assert claim.charge_failure_reason == "Payment status: requires_action"


@pytest.mark.asyncio
async def test_missing_payment_method_fails_without_charging(engine, bookings, gateway):
    for booking_id, booking_type in ((KITCHEN_BOOKING_ID, BookingType.KITCHEN), (STORAGE_BOOKING_ID, BookingType.STORAGE)):
        bookings.add_booking(BookingRecord(
            id=booking_id, booking_type=booking_type, chef_id=CHEF_ID, location_id=5, manager_id=MANAGER_ID,
        ))

    claim = await accepted(engine)

    assert claim.status == ClaimStatus.CHARGE_FAILED
    assert claim.charge_failure_reason == NO_PAYMENT_METHOD
    assert gateway.requests == []
    history = await engine.lifecycle.get_history(claim.id)
    assert (history[-1].previous_status, history[-1].new_status) == (ClaimStatus.APPROVED, ClaimStatus.CHARGE_FAILED)


@pytest.mark.asyncio
async def test_falls_back_to_linked_storage_booking(engine, bookings, gateway):
    bookings.add_booking(BookingRecord(
        id=KITCHEN_BOOKING_ID, booking_type=BookingType.KITCHEN, chef_id=CHEF_ID, location_id=5, manager_id=MANAGER_ID,
    ))

    claim = await accepted(engine)

    assert claim.status == ClaimStatus.CHARGE_SUCCEEDED
    assert claim.payment_method_source == PaymentMethodSource.STORAGE_BOOKING_FALLBACK
    assert gateway.requests[0].payment_method_ref == "pm_storage"


@pytest.mark.asyncio
async def test_snapshot_wins_over_later_booking_change(engine, bookings, gateway):
    claim = await submitted_claim(engine)
    bookings.add_booking(BookingRecord(
        id=KITCHEN_BOOKING_ID, booking_type=BookingType.KITCHEN, chef_id=CHEF_ID, location_id=5,
        manager_id=MANAGER_ID, customer_ref="cus_chef", payment_method_ref="pm_new_card",
    ))

    await engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT))

    assert gateway.requests[0].payment_method_ref == "pm_kitchen"
    stored = await engine.lifecycle.get_claim(claim.id)
    assert stored.payment_method_source == PaymentMethodSource.KITCHEN_BOOKING


@pytest.mark.asyncio
async def test_same_day_retry_is_deduplicated_by_gateway(engine, gateway):
    gateway.charge_status = "processing"
    claim = await accepted(engine)
    assert claim.status == ClaimStatus.CHARGE_FAILED

    gateway.charge_status = "succeeded"
    result = await engine.capture.recharge(claim.id, ADMIN_ID)

    # The gateway returned the original charge for the repeated key
    assert gateway.distinct_charges == 1
    assert gateway.requests[0].idempotency_key == gateway.requests[1].idempotency_key
    assert not result.success


@pytest.mark.asyncio
async def test_next_day_recharge_creates_new_charge(engine, gateway, clock):
    gateway.error = "Your card was declined."
    claim = await accepted(engine)

    gateway.error = None
    clock.advance(days=1)
    result = await engine.capture.recharge(claim.id, ADMIN_ID)

    assert result.success
    assert gateway.requests[1].idempotency_key.endswith("2024-03-02")
    stored = await engine.lifecycle.get_claim(claim.id)
    assert stored.status == ClaimStatus.CHARGE_SUCCEEDED


@pytest.mark.asyncio
async def test_recharge_requires_failed_status(engine):
    claim = await accepted(engine)
    result = await engine.capture.recharge(claim.id, ADMIN_ID)
    assert result.error_kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_capture_only_from_approved(engine):
    claim = await submitted_claim(engine)
    result = await engine.capture.capture(claim.id)
    assert result.error_kind == ErrorKind.CONFLICT

    missing = await engine.capture.capture("missing")
    assert missing.error_kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_reconcile_requires_pending_charge(engine):
    claim = await accepted(engine)
    result = await engine.capture.reconcile(claim.id)
    assert result.error_kind == ErrorKind.CONFLICT


async def put_in_flight(engine, claim, at):
    """Move a failed claim back to charge_pending as if the process died mid-charge."""
    await engine.store.transition(
        claim.id,
        ClaimStatus.CHARGE_FAILED,
        {"charge_attempted_at": at},
        HistoryEntry(
            claim_id=claim.id,
            previous_status=ClaimStatus.CHARGE_FAILED,
            new_status=ClaimStatus.CHARGE_PENDING,
            action="charge_initiated",
            actor_role=ActorRole.SYSTEM,
        ),
    )


@pytest.mark.asyncio
async def test_reconcile_uses_gateway_record(engine, gateway, clock):
    gateway.error = "timeout"
    claim = await accepted(engine)
    await put_in_flight(engine, claim, clock.now)
    gateway.charges[idempotency_key(claim.id, clock.now)] = GatewayCharge(
        id="pi_late", status="succeeded", amount_cents=claim.final_amount_cents, charge_id="ch_late"
    )

    clock.advance(minutes=30)
    results = await engine.sweeper.reconcile_pending(older_than=timedelta(minutes=15))

    assert results[claim.id].success
    stored = await engine.lifecycle.get_claim(claim.id)
    assert stored.status == ClaimStatus.CHARGE_SUCCEEDED
    assert stored.payment_intent_ref == "pi_late"


@pytest.mark.asyncio
async def test_reconcile_without_gateway_record_fails_claim(engine, gateway, clock):
    gateway.error = "timeout"
    claim = await accepted(engine)
    await put_in_flight(engine, claim, clock.now)

    result = await engine.capture.reconcile(claim.id)

    assert not result.success
    stored = await engine.lifecycle.get_claim(claim.id)
    assert stored.status == ClaimStatus.CHARGE_FAILED
    assert "not found" in stored.charge_failure_reason
