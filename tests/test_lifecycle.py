# tests/test_lifecycle.py
import asyncio
from datetime import timedelta

import pytest

from conftest import (
    ADMIN_ID,
    CHEF_ID,
    KITCHEN_BOOKING_ID,
    LOCATION_ID,
    MANAGER_ID,
    STORAGE_BOOKING_ID,
    claim_input,
    draft_with_evidence,
    submitted_claim,
)
from damage_claims.core.models import AdminDecision, BookingRef, ChefResponse, ClaimData, DraftUpdate
from damage_claims.core.results import ErrorKind
from damage_claims.core.states import (
    AdminVerdict,
    BookingType,
    ChefAction,
    ClaimStatus,
    PaymentMethodSource,
    ResolutionType,
)
from damage_claims.persistence.bookings import BookingRecord


@pytest.mark.asyncio
async def test_create_starts_in_draft(engine, clock):
    result = await engine.lifecycle.create(claim_input())

    assert result.ok
    claim = result.claim
    assert claim.status == ClaimStatus.DRAFT
    assert claim.chef_id == CHEF_ID
    assert claim.location_id == LOCATION_ID
    assert claim.kitchen_booking_id == KITCHEN_BOOKING_ID
    assert claim.chef_response_deadline == clock.now + timedelta(hours=72)

    history = await engine.lifecycle.get_history(claim.id)
    assert [(h.previous_status, h.new_status, h.action) for h in history] == [
        (None, ClaimStatus.DRAFT, "created")
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [999, 500001])
async def test_create_rejects_amount_outside_limits(engine, amount):
    result = await engine.lifecycle.create(claim_input(amount))
    assert not result.ok
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_create_accepts_limit_boundaries(engine):
    assert (await engine.lifecycle.create(claim_input(1000))).ok
    assert (await engine.lifecycle.create(claim_input(500000))).ok


@pytest.mark.asyncio
async def test_create_enforces_claims_per_booking(engine):
    for _ in range(3):
        assert (await engine.lifecycle.create(claim_input())).ok
    result = await engine.lifecycle.create(claim_input())
    assert not result.ok
    assert "Maximum 3 claims" in result.error.message


@pytest.mark.asyncio
async def test_create_rejects_cancelled_booking(engine, bookings):
    bookings.add_booking(BookingRecord(
        id=300, booking_type=BookingType.KITCHEN, status="cancelled",
        chef_id=CHEF_ID, location_id=LOCATION_ID, manager_id=MANAGER_ID,
    ))
    result = await engine.lifecycle.create(claim_input(kitchen_booking_id=300))
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_create_unknown_booking_is_not_found(engine):
    result = await engine.lifecycle.create(claim_input(kitchen_booking_id=404))
    assert result.error.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_create_for_another_managers_booking_is_rejected(engine):
    result = await engine.lifecycle.create(claim_input(manager_id=MANAGER_ID + 1))
    assert result.error.kind == ErrorKind.AUTHORIZATION


@pytest.mark.asyncio
async def test_submit_immediately_snapshots_payment_method(engine, notifier):
    result = await engine.lifecycle.create(claim_input(submit_immediately=True))

    claim = result.claim
    assert claim.status == ClaimStatus.SUBMITTED
    assert claim.submitted_at is not None
    assert claim.payment_method_ref == "pm_kitchen"
    assert claim.payment_method_source == PaymentMethodSource.KITCHEN_BOOKING
    history = await engine.lifecycle.get_history(claim.id)
    assert len(history) == 1
    assert history[0].new_status == ClaimStatus.SUBMITTED
    assert notifier.kinds() == ["damage_claim_filed"]


@pytest.mark.asyncio
async def test_file_claim_creates_submitted_storage_claim(engine):
    result = await engine.lifecycle.file_claim(
        BookingRef(booking_type=BookingType.STORAGE, booking_id=STORAGE_BOOKING_ID),
        MANAGER_ID,
        ClaimData(title="Damaged shelving", claimed_amount_cents=2500),
    )
    assert result.ok
    assert result.claim.status == ClaimStatus.SUBMITTED
    assert result.claim.storage_booking_id == STORAGE_BOOKING_ID
    assert result.claim.payment_method_source == PaymentMethodSource.STORAGE_BOOKING


@pytest.mark.asyncio
async def test_update_draft(engine):
    claim = (await engine.lifecycle.create(claim_input())).claim

    result = await engine.lifecycle.update_draft(
        claim.id, MANAGER_ID, DraftUpdate(title="Broken oven door", claimed_amount_cents=7500)
    )
    assert result.ok
    assert result.claim.title == "Broken oven door"
    assert result.claim.claimed_amount_cents == 7500
    # Edits are not transitions
    assert len(await engine.lifecycle.get_history(claim.id)) == 1


@pytest.mark.asyncio
async def test_update_draft_checks_owner_and_limits(engine):
    claim = (await engine.lifecycle.create(claim_input())).claim

    wrong_owner = await engine.lifecycle.update_draft(claim.id, 12345, DraftUpdate(title="x"))
    assert wrong_owner.error.kind == ErrorKind.AUTHORIZATION

    too_small = await engine.lifecycle.update_draft(claim.id, MANAGER_ID, DraftUpdate(claimed_amount_cents=5))
    assert too_small.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_update_after_submit_conflicts(engine):
    claim = await submitted_claim(engine)
    result = await engine.lifecycle.update_draft(claim.id, MANAGER_ID, DraftUpdate(title="late edit"))
    assert result.error.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_delete_draft_removes_claim_and_evidence(engine):
    claim = await draft_with_evidence(engine)

    result = await engine.lifecycle.delete_draft(claim.id, MANAGER_ID)

    assert result.ok
    assert await engine.lifecycle.get_claim(claim.id) is None
    assert await engine.evidence.list_evidence(claim.id) == []


@pytest.mark.asyncio
async def test_delete_submitted_claim_conflicts(engine):
    claim = await submitted_claim(engine)
    result = await engine.lifecycle.delete_draft(claim.id, MANAGER_ID)
    assert result.error.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_submit_by_other_manager_is_rejected(engine):
    claim = await draft_with_evidence(engine)
    result = await engine.lifecycle.submit(claim.id, MANAGER_ID + 1)
    assert result.error.kind == ErrorKind.AUTHORIZATION


@pytest.mark.asyncio
async def test_submit_resets_stale_deadline(engine, clock):
    claim = await draft_with_evidence(engine)
    clock.advance(hours=100)

    result = await engine.lifecycle.submit(claim.id, MANAGER_ID)

    assert result.claim.chef_response_deadline == clock.now + timedelta(hours=72)


@pytest.mark.asyncio
async def test_chef_accept_approves_and_charges(engine, gateway, notifier):
    claim = await submitted_claim(engine)

    result = await engine.lifecycle.chef_respond(
        claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT, response="Sorry about that")
    )

    assert result.ok
    assert result.claim.status == ClaimStatus.APPROVED
    assert result.claim.approved_amount_cents == claim.claimed_amount_cents
    assert result.claim.final_amount_cents == claim.claimed_amount_cents

    history = await engine.lifecycle.get_history(claim.id)
    accept = history[2]
    assert (accept.previous_status, accept.new_status) == (ClaimStatus.SUBMITTED, ClaimStatus.APPROVED)
    assert accept.metadata["intermediate_status"] == "chef_accepted"
    assert all(h.new_status != ClaimStatus.CHEF_ACCEPTED for h in history)

    # Capture ran inline in the test configuration
    stored = await engine.lifecycle.get_claim(claim.id)
    assert stored.status == ClaimStatus.CHARGE_SUCCEEDED
    assert gateway.distinct_charges == 1
    assert "damage_claim_response_received" in notifier.kinds()


@pytest.mark.asyncio
async def test_chef_dispute_goes_to_review(engine):
    claim = await submitted_claim(engine)

    result = await engine.lifecycle.chef_respond(
        claim.id, CHEF_ID, ChefResponse(action=ChefAction.DISPUTE, response="The bowl was already cracked")
    )

    assert result.claim.status == ClaimStatus.UNDER_REVIEW
    history = await engine.lifecycle.get_history(claim.id)
    assert len(history) == 3
    assert history[-1].metadata["intermediate_status"] == "chef_disputed"
    assert [c.id for c in await engine.lifecycle.list_disputed_claims()] == [claim.id]


@pytest.mark.asyncio
async def test_dispute_requires_reason(engine):
    claim = await submitted_claim(engine)
    result = await engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.DISPUTE))
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_chef_respond_by_other_chef_is_rejected(engine):
    claim = await submitted_claim(engine)
    result = await engine.lifecycle.chef_respond(claim.id, CHEF_ID + 1, ChefResponse(action=ChefAction.ACCEPT))
    assert result.error.kind == ErrorKind.AUTHORIZATION


@pytest.mark.asyncio
async def test_concurrent_chef_responses_only_one_wins(engine):
    claim = await submitted_claim(engine)

    results = await asyncio.gather(
        engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT)),
        engine.lifecycle.chef_respond(
            claim.id, CHEF_ID, ChefResponse(action=ChefAction.DISPUTE, response="Not me")
        ),
    )

    assert sum(1 for r in results if r.ok) == 1
    losers = [r for r in results if not r.ok]
    assert len(losers) == 1
    assert losers[0].error.kind == ErrorKind.CONFLICT
    history = await engine.lifecycle.get_history(claim.id)
    assert sum(1 for h in history if h.action == "chef_response") == 1


@pytest.mark.asyncio
async def test_accept_after_expiry_conflicts(engine, clock):
    claim = await submitted_claim(engine)
    clock.advance(hours=73)
    await engine.sweeper.run_once()

    result = await engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT))
    assert result.error.kind == ErrorKind.CONFLICT


async def disputed_claim(engine, amount=5000):
    claim = await submitted_claim(engine, amount_cents=amount)
    result = await engine.lifecycle.chef_respond(
        claim.id, CHEF_ID, ChefResponse(action=ChefAction.DISPUTE, response="Disagree")
    )
    return result.claim


@pytest.mark.asyncio
async def test_admin_partial_approval(engine, gateway):
    claim = await disputed_claim(engine)

    result = await engine.lifecycle.admin_decide(claim.id, ADMIN_ID, AdminDecision(
        decision=AdminVerdict.PARTIALLY_APPROVE,
        approved_amount_cents=3000,
        decision_reason="Pre-existing wear",
    ))

    assert result.claim.status == ClaimStatus.PARTIALLY_APPROVED
    assert result.claim.approved_amount_cents == 3000
    assert result.claim.final_amount_cents == 3000
    assert result.claim.admin_reviewer_id == ADMIN_ID
    assert gateway.requests[-1].amount_cents == 3000


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [None, 0, 5000, 6000])
async def test_partial_approval_amount_must_be_below_claimed(engine, amount):
    claim = await disputed_claim(engine)
    result = await engine.lifecycle.admin_decide(claim.id, ADMIN_ID, AdminDecision(
        decision=AdminVerdict.PARTIALLY_APPROVE,
        approved_amount_cents=amount,
        decision_reason="reason",
    ))
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_admin_reject_is_terminal(engine, gateway):
    claim = await disputed_claim(engine)

    result = await engine.lifecycle.admin_decide(claim.id, ADMIN_ID, AdminDecision(
        decision=AdminVerdict.REJECT, decision_reason="No evidence of damage"
    ))

    assert result.claim.status == ClaimStatus.REJECTED
    assert result.claim.approved_amount_cents == 0
    assert result.claim.final_amount_cents == 0
    assert result.claim.resolution_type == ResolutionType.REJECTED
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_admin_decide_requires_review_status(engine):
    claim = await submitted_claim(engine)
    result = await engine.lifecycle.admin_decide(claim.id, ADMIN_ID, AdminDecision(
        decision=AdminVerdict.APPROVE, decision_reason="ok"
    ))
    assert result.error.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_history_is_a_valid_walk(engine):
    claim = await disputed_claim(engine)
    await engine.lifecycle.admin_decide(claim.id, ADMIN_ID, AdminDecision(
        decision=AdminVerdict.APPROVE, decision_reason="Damage confirmed"
    ))

    history = await engine.lifecycle.get_history(claim.id)
    assert engine.state_machine.validate_history(history) == []
    assert history[-1].new_status == ClaimStatus.CHARGE_SUCCEEDED


@pytest.mark.asyncio
async def test_unpaid_claims_block_chef(engine, gateway):
    gateway.error = "Your card was declined."
    claim = await submitted_claim(engine)
    await engine.lifecycle.chef_respond(claim.id, CHEF_ID, ChefResponse(action=ChefAction.ACCEPT))

    assert await engine.lifecycle.has_unpaid_claims(CHEF_ID)
    unpaid = await engine.lifecycle.unpaid_claims(CHEF_ID)
    assert [c.status for c in unpaid] == [ClaimStatus.CHARGE_FAILED]
    assert not await engine.lifecycle.has_unpaid_claims(CHEF_ID + 1)


@pytest.mark.asyncio
async def test_listings(engine):
    draft = (await engine.lifecycle.create(claim_input())).claim
    submitted = await submitted_claim(engine)

    manager_claims = await engine.lifecycle.list_manager_claims(MANAGER_ID)
    assert {c.id for c in manager_claims} == {draft.id, submitted.id}

    chef_claims = await engine.lifecycle.list_chef_claims(CHEF_ID)
    assert [c.id for c in chef_claims] == [submitted.id]


@pytest.mark.asyncio
async def test_notification_failure_does_not_block_transition(engine, notifier):
    notifier.fail = True
    claim = await submitted_claim(engine)
    assert claim.status == ClaimStatus.SUBMITTED
