"""
Payment Capture Engine

Charges the chef's saved payment method for an approved claim. The charge
is off-session and idempotent per claim per UTC day, so a retried capture
on the same day can never charge twice.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from damage_claims.config.settings import GatewaySettings
from damage_claims.core.models import Claim, HistoryEntry, utcnow
from damage_claims.core.results import ChargeResult, ErrorKind, StoreError
from damage_claims.core.states import ActorRole, ClaimStatus, ResolutionType
from damage_claims.gateway.base import ChargeRequest, GatewayCharge, GatewayError, PaymentGateway
from damage_claims.integrations.ledger import Ledger, LedgerTransaction
from damage_claims.integrations.notifications import NotificationEvent, Notifier, notify_safely
from damage_claims.monitors.transition_monitor import TransitionMonitor
from damage_claims.persistence.bookings import BookingDirectory
from damage_claims.persistence.claim_store import ClaimStore
from damage_claims.services.fees import application_fee
from damage_claims.services.lifecycle import Clock
from damage_claims.services.payment_methods import resolve_payment_method
from damage_claims.state_machine.machine import ClaimStateMachine

logger = logging.getLogger(__name__)

NO_PAYMENT_METHOD = "No saved payment method available"


def idempotency_key(claim_id: str, at: datetime) -> str:
    """Gateway idempotency key: one charge per claim per UTC calendar day."""
    day = at.astimezone(timezone.utc).date().isoformat()
    return f"damage_claim_{claim_id}_{day}"


class PaymentCaptureEngine:
    """
    Captures approved claims.

    Gateway failures are never raised to the caller: they leave the claim
    in CHARGE_FAILED with the reason recorded, from where it can be
    re-charged.
    """

    def __init__(
        self,
        store: ClaimStore,
        bookings: BookingDirectory,
        gateway: PaymentGateway,
        ledger: Ledger,
        notifier: Notifier,
        gateway_settings: GatewaySettings,
        monitor: TransitionMonitor,
        state_machine: Optional[ClaimStateMachine] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.bookings = bookings
        self.gateway = gateway
        self.ledger = ledger
        self.notifier = notifier
        self.settings = gateway_settings
        self.monitor = monitor
        self.state_machine = state_machine or ClaimStateMachine()
        self.clock = clock

    async def on_claim_approved(self, claim: Claim) -> None:
        """Status handler registered for APPROVED and PARTIALLY_APPROVED."""
        await self.capture(claim.id)

    async def capture(self, claim_id: str) -> ChargeResult:
        """Charge an approved or partially approved claim."""
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ChargeResult(success=False, error=f"Claim {claim_id} not found", error_kind=ErrorKind.NOT_FOUND)
        if claim.status not in self.state_machine.CHARGEABLE_STATUSES:
            return ChargeResult(
                success=False,
                error=f"Cannot charge a claim in {claim.status.value} status",
                error_kind=ErrorKind.CONFLICT,
            )
        return await self._charge(claim, ActorRole.SYSTEM, None)

    async def recharge(self, claim_id: str, admin_id: int) -> ChargeResult:
        """Retry a failed charge. Runs the full capture algorithm again."""
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ChargeResult(success=False, error=f"Claim {claim_id} not found", error_kind=ErrorKind.NOT_FOUND)
        if claim.status not in self.state_machine.RECHARGEABLE_STATUSES:
            return ChargeResult(
                success=False,
                error="Only claims whose charge failed can be re-charged",
                error_kind=ErrorKind.CONFLICT,
            )
        logger.info(f"Admin {admin_id} re-charging claim {claim_id}")
        return await self._charge(claim, ActorRole.ADMIN, admin_id)

    async def reconcile(self, claim_id: str) -> ChargeResult:
        """
        Settle a claim stuck in CHARGE_PENDING from the gateway's record.

        The gateway is asked for the charge created under the claim's
        idempotency key; its answer decides success or failure. A gateway
        error leaves the claim pending for the next attempt.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return ChargeResult(success=False, error=f"Claim {claim_id} not found", error_kind=ErrorKind.NOT_FOUND)
        if claim.status != ClaimStatus.CHARGE_PENDING:
            return ChargeResult(
                success=False,
                error=f"Claim is {claim.status.value}, not charge_pending",
                error_kind=ErrorKind.CONFLICT,
            )

        key = idempotency_key(claim.id, claim.charge_attempted_at or self.clock())
        try:
            charge = await asyncio.to_thread(self.gateway.lookup_charge, key)
        except GatewayError as e:
            logger.warning(f"Could not reconcile claim {claim_id}: {e}")
            return ChargeResult(success=False, error=str(e))

        if charge is None:
            return await self._fail(claim, "Charge was not found at the payment gateway during reconciliation")
        if not charge.succeeded:
            return await self._fail(claim, f"Payment status: {charge.status}")

        amount = self._amount(claim)
        destination = await self.bookings.get_destination_account(claim.manager_id)
        fee = application_fee(amount, destination, self.settings)
        return await self._succeed(claim, charge, amount, fee, reconciled=True)

    async def _charge(self, claim: Claim, actor_role: ActorRole, actor_id: Optional[int]) -> ChargeResult:
        amount = self._amount(claim)
        if amount <= 0:
            return ChargeResult(success=False, error="No amount to charge", error_kind=ErrorKind.VALIDATION)

        resolved = await resolve_payment_method(claim, self.bookings)
        if resolved is None:
            return await self._fail(claim, NO_PAYMENT_METHOD)

        destination = await self.bookings.get_destination_account(claim.manager_id)
        fee = application_fee(amount, destination, self.settings)
        now = self.clock()
        key = idempotency_key(claim.id, now)

        entry = HistoryEntry(
            claim_id=claim.id,
            previous_status=claim.status,
            new_status=ClaimStatus.CHARGE_PENDING,
            action="charge_initiated",
            actor_role=actor_role,
            actor_id=actor_id,
            note=f"Charging {amount} cents",
            metadata={
                "amount_cents": amount,
                "application_fee_cents": fee,
                "idempotency_key": key,
                "payment_method_source": resolved.source.value,
            },
            created_at=now,
        )
        try:
            claim = await self.store.transition(
                claim.id,
                claim.status,
                {
                    "charge_attempted_at": now,
                    "customer_ref": resolved.customer_ref,
                    "payment_method_ref": resolved.payment_method_ref,
                    "payment_method_source": resolved.source,
                },
                entry,
            )
        except StoreError as e:
            logger.warning(f"Capture of claim {claim.id} skipped: {e}")
            return ChargeResult(success=False, error=str(e), error_kind=ErrorKind.CONFLICT)

        request = ChargeRequest(
            amount_cents=amount,
            currency=self.settings.currency,
            customer_ref=resolved.customer_ref,
            payment_method_ref=resolved.payment_method_ref,
            destination_account=destination,
            application_fee_cents=fee or None,
            idempotency_key=key,
            metadata={
                "type": "damage_claim",
                "damage_claim_id": claim.id,
                "booking_type": claim.booking_type.value,
                "booking_id": str(claim.booking_id),
                "chef_id": str(claim.chef_id),
                "manager_id": str(claim.manager_id),
            },
        )
        logger.info(
            f"Charging claim {claim.id}: {amount} cents, fee {fee}, "
            f"destination {'set' if destination else 'none'}, key {key}"
        )
        try:
            charge = await asyncio.to_thread(self.gateway.create_charge, request)
        except GatewayError as e:
            return await self._fail(claim, str(e))

        if not charge.succeeded:
            return await self._fail(claim, f"Payment status: {charge.status}")
        return await self._succeed(claim, charge, amount, fee)

    async def _succeed(
        self, claim: Claim, charge: GatewayCharge, amount: int, fee: int, reconciled: bool = False
    ) -> ChargeResult:
        now = self.clock()
        entry = HistoryEntry(
            claim_id=claim.id,
            previous_status=ClaimStatus.CHARGE_PENDING,
            new_status=ClaimStatus.CHARGE_SUCCEEDED,
            action="charge_succeeded",
            actor_role=ActorRole.GATEWAY,
            note=f"Charged {amount} cents" + (" (reconciled)" if reconciled else ""),
            metadata={
                "payment_intent_id": charge.id,
                "charge_id": charge.charge_id,
                "amount_cents": amount,
                "application_fee_cents": fee,
            },
            created_at=now,
        )
        try:
            claim = await self.store.transition(
                claim.id,
                ClaimStatus.CHARGE_PENDING,
                {
                    "payment_intent_ref": charge.id,
                    "charge_ref": charge.charge_id,
                    "charge_succeeded_at": now,
                    "charge_failure_reason": None,
                    "resolved_at": now,
                    "resolution_type": ResolutionType.PAID,
                },
                entry,
            )
        except StoreError as e:
            # Money moved but the write lost a race; reconcile() can settle it
            logger.error(f"Charge {charge.id} succeeded but claim {claim.id} could not be updated: {e}")
            return ChargeResult(success=True, payment_intent_id=charge.id, charge_id=charge.charge_id, error=str(e))

        logger.info(f"Claim {claim.id} charged successfully: {charge.id}")
        await self._record_ledger(claim, charge, amount, fee, now)
        await notify_safely(
            self.notifier, NotificationEvent.CLAIM_CHARGED, claim.chef_id, self._payload(claim)
        )
        await notify_safely(
            self.notifier, NotificationEvent.CLAIM_PAYMENT_RECEIVED, claim.manager_id, self._payload(claim, fee=fee)
        )
        return ChargeResult(success=True, payment_intent_id=charge.id, charge_id=charge.charge_id)

    async def _fail(self, claim: Claim, reason: str) -> ChargeResult:
        now = self.clock()
        entry = HistoryEntry(
            claim_id=claim.id,
            previous_status=claim.status,
            new_status=ClaimStatus.CHARGE_FAILED,
            action="charge_failed",
            actor_role=ActorRole.GATEWAY if claim.status == ClaimStatus.CHARGE_PENDING else ActorRole.SYSTEM,
            note=reason,
            metadata={"failure_reason": reason},
            created_at=now,
        )
        try:
            claim = await self.store.transition(
                claim.id,
                claim.status,
                {"charge_failed_at": now, "charge_failure_reason": reason},
                entry,
            )
        except StoreError as e:
            logger.error(f"Could not record charge failure for claim {claim.id}: {e}")
            return ChargeResult(success=False, error=reason)

        logger.warning(f"Charge failed for claim {claim.id}: {reason}")
        await notify_safely(
            self.notifier,
            NotificationEvent.CLAIM_CHARGE_FAILED,
            claim.manager_id,
            self._payload(claim, reason=reason),
        )
        return ChargeResult(success=False, error=reason)

    async def _record_ledger(
        self, claim: Claim, charge: GatewayCharge, amount: int, fee: int, paid_at: datetime
    ) -> None:
        try:
            tx = await self.ledger.record_transaction(LedgerTransaction(
                claim_id=claim.id,
                booking_type=claim.booking_type,
                booking_id=claim.booking_id,
                chef_id=claim.chef_id,
                manager_id=claim.manager_id,
                amount_cents=amount,
                service_fee_cents=fee,
                manager_revenue_cents=amount - fee,
                currency=self.settings.currency,
                payment_intent_ref=charge.id,
                charge_ref=charge.charge_id,
                paid_at=paid_at,
                metadata={"type": "damage_claim", "damage_claim_id": claim.id},
            ))
            await self.store.update_fields(claim.id, {"ledger_transaction_id": tx.id})
        except Exception as e:
            logger.error(f"Failed to record ledger transaction for claim {claim.id}: {e}")
            return

        logger.info(f"Ledger transaction {tx.id} recorded for claim {claim.id}")
        self.monitor.spawn(self._sync_processing_fee(tx.id, charge.id))

    async def _sync_processing_fee(self, transaction_id: str, payment_intent_id: str) -> None:
        """Fetch the gateway's actual processing fee into the ledger record."""
        try:
            fee = await asyncio.to_thread(self.gateway.fetch_processing_fee, payment_intent_id)
            if fee is None:
                logger.info(f"No processing fee reported yet for {payment_intent_id}")
                return
            await self.ledger.update_transaction(
                transaction_id,
                {"gateway_processing_fee_cents": fee, "last_synced_at": self.clock()},
            )
            logger.info(f"Synced processing fee {fee} for ledger transaction {transaction_id}")
        except Exception as e:
            logger.warning(f"Could not sync processing fee for {payment_intent_id}: {e}")

    @staticmethod
    def _amount(claim: Claim) -> int:
        if claim.final_amount_cents is not None:
            return claim.final_amount_cents
        return claim.approved_amount_cents or 0

    @staticmethod
    def _payload(claim: Claim, **extra: Any) -> Dict[str, Any]:
        return {
            "claim_id": claim.id,
            "title": claim.title,
            "status": claim.status.value,
            "final_amount_cents": claim.final_amount_cents,
            **extra,
        }
