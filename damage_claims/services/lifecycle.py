"""
Claim Lifecycle Service

The named operations that move a damage claim through its lifecycle:
manager filing, chef response, admin adjudication and the deadline-driven
auto-approval. Each status change is one conditional write carrying one
history entry. Rejections come back as typed ClaimResults.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from damage_claims.config.settings import ClaimLimits
from damage_claims.core.models import (
    AdminDecision,
    BookingRef,
    ChefResponse,
    Claim,
    ClaimCreate,
    ClaimData,
    DraftUpdate,
    HistoryEntry,
    utcnow,
)
from damage_claims.core.results import (
    ClaimNotFound,
    ClaimResult,
    ErrorKind,
    OwnershipMismatch,
    StatusConflict,
    StoreError,
)
from damage_claims.core.states import (
    UNPAID_STATUSES,
    ActorRole,
    AdminVerdict,
    BookingType,
    ChefAction,
    ClaimStatus,
    ResolutionType,
)
from damage_claims.integrations.notifications import NotificationEvent, Notifier, notify_safely
from damage_claims.monitors.transition_monitor import TransitionMonitor
from damage_claims.persistence.bookings import INELIGIBLE_BOOKING_STATUSES, BookingDirectory
from damage_claims.persistence.claim_store import ClaimStore, InsufficientEvidence
from damage_claims.services.payment_methods import resolve_payment_method
from damage_claims.state_machine.machine import ClaimStateMachine

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def store_error_result(error: StoreError) -> ClaimResult:
    """Translate a persistence exception into a typed failure."""
    if isinstance(error, ClaimNotFound):
        return ClaimResult.failure(ErrorKind.NOT_FOUND, str(error), claim_id=error.claim_id)
    if isinstance(error, OwnershipMismatch):
        return ClaimResult.failure(ErrorKind.AUTHORIZATION, "Not authorized for this claim")
    if isinstance(error, InsufficientEvidence):
        return ClaimResult.failure(
            ErrorKind.VALIDATION,
            f"Minimum {error.required} pieces of evidence required",
            found=error.found,
            required=error.required,
        )
    if isinstance(error, StatusConflict):
        actual = getattr(error.actual, "value", error.actual)
        return ClaimResult.failure(ErrorKind.CONFLICT, str(error), status=actual)
    return ClaimResult.failure(ErrorKind.CONFLICT, str(error))


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


class ClaimLifecycleService:
    """
    Owns claim status.

    Every transition is checked against the state machine, then written
    through the store's compare-and-set so that concurrent callers cannot
    both move the same claim.
    """

    def __init__(
        self,
        store: ClaimStore,
        bookings: BookingDirectory,
        limits: ClaimLimits,
        notifier: Notifier,
        monitor: TransitionMonitor,
        state_machine: Optional[ClaimStateMachine] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.bookings = bookings
        self.limits = limits
        self.notifier = notifier
        self.monitor = monitor
        self.state_machine = state_machine or ClaimStateMachine()
        self.clock = clock

    # ------------------------------------------------------------------
    # Manager operations
    # ------------------------------------------------------------------

    async def create(self, data: ClaimCreate) -> ClaimResult:
        """
        File a new claim against a booking.

        The claim starts in DRAFT, or directly in SUBMITTED when
        submit_immediately is set, in which case the payment method is
        snapshotted in the same write.
        """
        amount_error = self._check_amount(data.claimed_amount_cents)
        if amount_error:
            return amount_error

        ref = data.booking_ref
        booking = await self.bookings.get_booking(ref.booking_type, ref.booking_id)
        if booking is None:
            return ClaimResult.failure(
                ErrorKind.NOT_FOUND,
                f"{ref.booking_type.value.capitalize()} booking not found",
                booking_id=ref.booking_id,
            )
        if booking.status in INELIGIBLE_BOOKING_STATUSES:
            return ClaimResult.failure(
                ErrorKind.VALIDATION,
                f"Cannot file a claim against a {booking.status} booking",
                booking_status=booking.status,
            )
        if booking.manager_id is not None and booking.manager_id != data.manager_id:
            return ClaimResult.failure(ErrorKind.AUTHORIZATION, "Not authorized to file claims for this booking")
        if booking.chef_id is None:
            return ClaimResult.failure(ErrorKind.VALIDATION, "Chef not found for this booking")
        if booking.location_id is None:
            return ClaimResult.failure(ErrorKind.VALIDATION, "Location not found for this booking")

        existing = await self.store.count_claims_for_booking(ref.booking_type, ref.booking_id)
        if existing >= self.limits.max_claims_per_booking:
            return ClaimResult.failure(
                ErrorKind.VALIDATION,
                f"Maximum {self.limits.max_claims_per_booking} claims per booking reached",
                existing_claims=existing,
            )

        now = self.clock()
        claim = Claim(
            booking_type=data.booking_type,
            kitchen_booking_id=data.kitchen_booking_id if data.booking_type == BookingType.KITCHEN else None,
            storage_booking_id=data.storage_booking_id if data.booking_type == BookingType.STORAGE else None,
            chef_id=booking.chef_id,
            manager_id=data.manager_id,
            location_id=booking.location_id,
            title=data.title,
            description=data.description,
            damage_date=data.damage_date,
            damaged_items=data.damaged_items,
            claimed_amount_cents=data.claimed_amount_cents,
            created_at=now,
            chef_response_deadline=now + self._response_window(),
        )

        if data.submit_immediately:
            claim.status = ClaimStatus.SUBMITTED
            claim.submitted_at = now
            claim = claim.model_copy(update=await self._payment_snapshot(claim))
            action, note = "submitted", "Claim filed and submitted to chef"
        else:
            action, note = "created", "Claim created as draft"

        entry = HistoryEntry(
            claim_id=claim.id,
            previous_status=None,
            new_status=claim.status,
            action=action,
            actor_role=ActorRole.MANAGER,
            actor_id=data.manager_id,
            note=note,
            metadata={"claimed_amount_cents": claim.claimed_amount_cents},
            created_at=now,
        )
        claim = await self.store.insert_claim(claim, entry)
        logger.info(
            f"Created claim {claim.id} ({claim.status.value}) on {claim.booking_type.value} "
            f"booking {claim.booking_id} for {_dollars(claim.claimed_amount_cents)}"
        )

        if claim.status == ClaimStatus.SUBMITTED:
            await self._notify_filed(claim)
        return ClaimResult.success(claim)

    async def file_claim(self, booking_ref: BookingRef, manager_id: int, claim_data: ClaimData) -> ClaimResult:
        """
        Create and submit a claim in one step.

        Used by sibling workflows, such as storage checkout, that have
        already gathered the manager's damage report.
        """
        try:
            data = ClaimCreate(
                booking_type=booking_ref.booking_type,
                kitchen_booking_id=booking_ref.booking_id if booking_ref.booking_type == BookingType.KITCHEN else None,
                storage_booking_id=booking_ref.booking_id if booking_ref.booking_type == BookingType.STORAGE else None,
                manager_id=manager_id,
                submit_immediately=True,
                **claim_data.model_dump(),
            )
        except ValueError as e:
            return ClaimResult.failure(ErrorKind.VALIDATION, str(e))
        return await self.create(data)

    async def update_draft(self, claim_id: str, manager_id: int, changes: DraftUpdate) -> ClaimResult:
        """Edit a draft. Not a status change, so no history entry is written."""
        updates = changes.model_dump(exclude_none=True)
        if not updates:
            return ClaimResult.failure(ErrorKind.VALIDATION, "No changes supplied")
        if "claimed_amount_cents" in updates:
            amount_error = self._check_amount(updates["claimed_amount_cents"])
            if amount_error:
                return amount_error

        try:
            claim = await self.store.update_draft(claim_id, ("manager_id", manager_id), updates)
        except StatusConflict as e:
            return ClaimResult.failure(ErrorKind.CONFLICT, "Can only update draft claims", status=e.actual.value)
        except StoreError as e:
            return store_error_result(e)

        logger.info(f"Updated draft claim {claim_id}: {sorted(updates)}")
        return ClaimResult.success(claim)

    async def delete_draft(self, claim_id: str, manager_id: int) -> ClaimResult:
        try:
            await self.store.delete_draft(claim_id, ("manager_id", manager_id))
        except StatusConflict as e:
            return ClaimResult.failure(ErrorKind.CONFLICT, "Can only delete draft claims", status=e.actual.value)
        except StoreError as e:
            return store_error_result(e)

        logger.info(f"Deleted draft claim {claim_id}")
        return ClaimResult.success()

    async def submit(self, claim_id: str, manager_id: int) -> ClaimResult:
        """
        Submit a draft to the chef.

        Requires the minimum evidence count. The payment method is
        snapshotted now so later booking changes cannot alter what is
        charged.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ClaimResult.failure(ErrorKind.NOT_FOUND, f"Claim {claim_id} not found")
        if claim.manager_id != manager_id:
            return ClaimResult.failure(ErrorKind.AUTHORIZATION, "Not authorized for this claim")
        if not self.state_machine.can_transition(claim.status, ClaimStatus.SUBMITTED):
            return ClaimResult.failure(ErrorKind.CONFLICT, "Can only submit draft claims", status=claim.status.value)

        now = self.clock()
        changes: Dict[str, Any] = {"submitted_at": now}
        changes.update(await self._payment_snapshot(claim))
        # A draft kept for a while still gets the full response window
        fresh_deadline = now + self._response_window()
        if claim.chef_response_deadline < fresh_deadline:
            changes["chef_response_deadline"] = fresh_deadline

        entry = HistoryEntry(
            claim_id=claim_id,
            previous_status=ClaimStatus.DRAFT,
            new_status=ClaimStatus.SUBMITTED,
            action="submitted",
            actor_role=ActorRole.MANAGER,
            actor_id=manager_id,
            note="Claim submitted to chef for response",
            metadata={"payment_method_source": getattr(changes.get("payment_method_source"), "value", None)},
            created_at=now,
        )
        try:
            claim = await self.store.transition(
                claim_id,
                ClaimStatus.DRAFT,
                changes,
                entry,
                owner=("manager_id", manager_id),
                min_evidence=self.limits.min_evidence_count,
            )
        except StoreError as e:
            return store_error_result(e)

        logger.info(f"Claim {claim_id} submitted by manager {manager_id}")
        await self._notify_filed(claim)
        return ClaimResult.success(claim)

    # ------------------------------------------------------------------
    # Chef and admin operations
    # ------------------------------------------------------------------

    async def chef_respond(self, claim_id: str, chef_id: int, response: ChefResponse) -> ClaimResult:
        """
        Accept or dispute a submitted claim.

        Accepting approves the full claimed amount; disputing sends the
        claim to admin review. Either way it is one write with one history
        entry, and the chef's choice is kept in the entry's metadata.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ClaimResult.failure(ErrorKind.NOT_FOUND, f"Claim {claim_id} not found")
        if claim.chef_id != chef_id:
            return ClaimResult.failure(ErrorKind.AUTHORIZATION, "Not authorized for this claim")
        if claim.status != ClaimStatus.SUBMITTED:
            return ClaimResult.failure(
                ErrorKind.CONFLICT, "Can only respond to submitted claims", status=claim.status.value
            )

        now = self.clock()
        changes: Dict[str, Any] = {"chef_response": response.response, "chef_responded_at": now}

        if response.action == ChefAction.ACCEPT:
            target = ClaimStatus.APPROVED
            intermediate = ClaimStatus.CHEF_ACCEPTED
            changes["approved_amount_cents"] = claim.claimed_amount_cents
            changes["final_amount_cents"] = claim.claimed_amount_cents
            note = response.response or "Chef accepted the claim"
        else:
            if not response.response.strip():
                return ClaimResult.failure(ErrorKind.VALIDATION, "A reason is required to dispute a claim")
            target = ClaimStatus.UNDER_REVIEW
            intermediate = ClaimStatus.CHEF_DISPUTED
            note = response.response

        self.state_machine.require(claim.status, target)
        entry = HistoryEntry(
            claim_id=claim_id,
            previous_status=ClaimStatus.SUBMITTED,
            new_status=target,
            action="chef_response",
            actor_role=ActorRole.CHEF,
            actor_id=chef_id,
            note=note,
            metadata={"response_action": response.action.value, "intermediate_status": intermediate.value},
            created_at=now,
        )
        try:
            claim = await self.store.transition(
                claim_id, ClaimStatus.SUBMITTED, changes, entry, owner=("chef_id", chef_id)
            )
        except StoreError as e:
            return store_error_result(e)

        logger.info(f"Chef {chef_id} responded {response.action.value} to claim {claim_id}; now {target.value}")

        if target == ClaimStatus.APPROVED:
            await self._notify(NotificationEvent.CLAIM_RESPONSE_RECEIVED, claim.manager_id, claim, action="accept")
            await self.monitor.on_status_entered(claim, target)
        else:
            await self._notify(NotificationEvent.CLAIM_DISPUTED, claim.manager_id, claim, response=response.response)
            # Admin queue; recipient resolved by the dispatcher
            await self._notify(NotificationEvent.CLAIM_DISPUTED, None, claim, response=response.response)
        return ClaimResult.success(claim)

    async def admin_decide(self, claim_id: str, admin_id: int, decision: AdminDecision) -> ClaimResult:
        """
        Adjudicate a disputed claim.

        approve grants the claimed amount, partially_approve a smaller
        positive amount, and reject closes the claim with nothing owed.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ClaimResult.failure(ErrorKind.NOT_FOUND, f"Claim {claim_id} not found")
        if claim.status != ClaimStatus.UNDER_REVIEW:
            return ClaimResult.failure(
                ErrorKind.CONFLICT, "Can only review claims under review", status=claim.status.value
            )

        now = self.clock()
        changes: Dict[str, Any] = {
            "admin_reviewer_id": admin_id,
            "admin_reviewed_at": now,
            "admin_decision_reason": decision.decision_reason,
            "admin_notes": decision.notes,
        }

        if decision.decision == AdminVerdict.APPROVE:
            target = ClaimStatus.APPROVED
            approved = claim.claimed_amount_cents
        elif decision.decision == AdminVerdict.PARTIALLY_APPROVE:
            approved = decision.approved_amount_cents
            if approved is None:
                return ClaimResult.failure(ErrorKind.VALIDATION, "Approved amount required for partial approval")
            if approved <= 0 or approved >= claim.claimed_amount_cents:
                return ClaimResult.failure(
                    ErrorKind.VALIDATION,
                    "Partial approval must be more than zero and less than the claimed amount",
                    claimed_amount_cents=claim.claimed_amount_cents,
                )
            target = ClaimStatus.PARTIALLY_APPROVED
        else:
            target = ClaimStatus.REJECTED
            approved = 0
            changes.update({
                "resolved_at": now,
                "resolved_by": admin_id,
                "resolution_type": ResolutionType.REJECTED,
                "resolution_notes": decision.decision_reason,
            })

        changes["approved_amount_cents"] = approved
        changes["final_amount_cents"] = approved
        self.state_machine.require(claim.status, target)

        entry = HistoryEntry(
            claim_id=claim_id,
            previous_status=ClaimStatus.UNDER_REVIEW,
            new_status=target,
            action="admin_decision",
            actor_role=ActorRole.ADMIN,
            actor_id=admin_id,
            note=decision.decision_reason,
            metadata={"decision": decision.decision.value, "approved_amount_cents": approved},
            created_at=now,
        )
        try:
            claim = await self.store.transition(claim_id, ClaimStatus.UNDER_REVIEW, changes, entry)
        except StoreError as e:
            return store_error_result(e)

        logger.info(
            f"Admin {admin_id} decided claim {claim_id}: {decision.decision.value} "
            f"({_dollars(approved)} of {_dollars(claim.claimed_amount_cents)})"
        )
        for recipient in (claim.chef_id, claim.manager_id):
            await self._notify(
                NotificationEvent.CLAIM_DECISION,
                recipient,
                claim,
                decision=decision.decision.value,
                reason=decision.decision_reason,
            )
        if target in self.state_machine.APPROVAL_STATUSES:
            await self.monitor.on_status_entered(claim, target)
        return ClaimResult.success(claim)

    async def expire_response_deadline(self, claim_id: str, *, dispatch: bool = True) -> ClaimResult:
        """
        Auto-approve a submitted claim whose chef response deadline passed.

        The same compound approval as a chef accept, attributed to the
        system. With dispatch=False the approval handlers are left to the
        caller, which lets the sweeper bound capture concurrency itself.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ClaimResult.failure(ErrorKind.NOT_FOUND, f"Claim {claim_id} not found")
        if claim.status != ClaimStatus.SUBMITTED:
            return ClaimResult.failure(ErrorKind.CONFLICT, "Claim is no longer awaiting a response", status=claim.status.value)

        now = self.clock()
        if claim.chef_response_deadline >= now:
            return ClaimResult.failure(ErrorKind.VALIDATION, "Chef response deadline has not passed")

        changes = {
            "approved_amount_cents": claim.claimed_amount_cents,
            "final_amount_cents": claim.claimed_amount_cents,
        }
        entry = HistoryEntry(
            claim_id=claim_id,
            previous_status=ClaimStatus.SUBMITTED,
            new_status=ClaimStatus.APPROVED,
            action="deadline_expired",
            actor_role=ActorRole.SYSTEM,
            note="deadline expired",
            metadata={"deadline": claim.chef_response_deadline.isoformat()},
            created_at=now,
        )
        try:
            claim = await self.store.transition(claim_id, ClaimStatus.SUBMITTED, changes, entry)
        except StoreError as e:
            return store_error_result(e)

        logger.info(f"Claim {claim_id} auto-approved after chef response deadline passed")
        for recipient in (claim.chef_id, claim.manager_id):
            await self._notify(NotificationEvent.CLAIM_AUTO_APPROVED, recipient, claim)
        if dispatch:
            await self.monitor.on_status_entered(claim, ClaimStatus.APPROVED)
        return ClaimResult.success(claim)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        return await self.store.get_claim(claim_id)

    async def get_history(self, claim_id: str) -> List[HistoryEntry]:
        """Audit trail for a claim, oldest first."""
        return await self.store.list_history(claim_id)

    async def list_manager_claims(self, manager_id: int, include_closed: bool = True) -> List[Claim]:
        claims = await self.store.find_claims(manager_id=manager_id)
        if not include_closed:
            claims = [c for c in claims if not self.state_machine.is_terminal(c.status)]
        return claims

    async def list_chef_claims(self, chef_id: int) -> List[Claim]:
        """Claims the chef can see: everything except drafts."""
        claims = await self.store.find_claims(chef_id=chef_id)
        return [c for c in claims if c.status != ClaimStatus.DRAFT]

    async def list_disputed_claims(self) -> List[Claim]:
        """Admin review queue."""
        return await self.store.find_claims(statuses=[ClaimStatus.UNDER_REVIEW])

    async def unpaid_claims(self, chef_id: int) -> List[Claim]:
        """Approved claims the chef still owes money on."""
        return await self.store.find_claims(statuses=UNPAID_STATUSES, chef_id=chef_id)

    async def has_unpaid_claims(self, chef_id: int) -> bool:
        return bool(await self.unpaid_claims(chef_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_amount(self, amount_cents: int) -> Optional[ClaimResult]:
        if amount_cents < self.limits.min_amount_cents:
            return ClaimResult.failure(
                ErrorKind.VALIDATION,
                f"Claim amount must be at least {_dollars(self.limits.min_amount_cents)}",
                min_amount_cents=self.limits.min_amount_cents,
            )
        if amount_cents > self.limits.max_amount_cents:
            return ClaimResult.failure(
                ErrorKind.VALIDATION,
                f"Claim amount cannot exceed {_dollars(self.limits.max_amount_cents)}",
                max_amount_cents=self.limits.max_amount_cents,
            )
        return None

    def _response_window(self) -> timedelta:
        return timedelta(hours=self.limits.chef_response_deadline_hours)

    async def _payment_snapshot(self, claim: Claim) -> Dict[str, Any]:
        resolved = await resolve_payment_method(claim, self.bookings)
        if resolved is None:
            logger.warning(f"Claim {claim.id} submitted without a saved payment method")
            return {}
        return {
            "customer_ref": resolved.customer_ref,
            "payment_method_ref": resolved.payment_method_ref,
            "payment_method_source": resolved.source,
        }

    async def _notify_filed(self, claim: Claim) -> None:
        await self._notify(
            NotificationEvent.CLAIM_FILED,
            claim.chef_id,
            claim,
            response_deadline=claim.chef_response_deadline.isoformat(),
        )

    async def _notify(
        self, event: NotificationEvent, recipient_id: Optional[int], claim: Claim, **extra: Any
    ) -> None:
        payload = {
            "claim_id": claim.id,
            "title": claim.title,
            "status": claim.status.value,
            "booking_type": claim.booking_type.value,
            "claimed_amount_cents": claim.claimed_amount_cents,
            "final_amount_cents": claim.final_amount_cents,
            **extra,
        }
        await notify_safely(self.notifier, event, recipient_id, payload)
