"""
Refund Engine

Returns money to the chef after a successful charge. The refund is taken
back from the manager, so it is capped at what the manager actually
received: the charged amount less the platform fee, minus refunds already
made. The processing fee is not returned.
"""
import asyncio
import logging
from typing import Optional

from damage_claims.config.settings import GatewaySettings
from damage_claims.core.models import Claim, HistoryEntry, RefundRequest, utcnow
from damage_claims.core.results import ErrorKind, RefundBreakdown, RefundResult, StoreError
from damage_claims.core.states import ActorRole, ClaimStatus, ResolutionType
from damage_claims.gateway.base import GatewayError, PaymentGateway
from damage_claims.integrations.ledger import Ledger
from damage_claims.integrations.notifications import NotificationEvent, Notifier, notify_safely
from damage_claims.persistence.bookings import BookingDirectory
from damage_claims.persistence.claim_store import ClaimStore
from damage_claims.services.fees import application_fee
from damage_claims.services.lifecycle import Clock

logger = logging.getLogger(__name__)

# Reason code sent to the gateway; the admin's free text goes in metadata
GATEWAY_REFUND_REASON = "requested_by_customer"


class RefundEngine:

    def __init__(
        self,
        store: ClaimStore,
        bookings: BookingDirectory,
        gateway: PaymentGateway,
        ledger: Ledger,
        notifier: Notifier,
        gateway_settings: GatewaySettings,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.bookings = bookings
        self.gateway = gateway
        self.ledger = ledger
        self.notifier = notifier
        self.settings = gateway_settings
        self.clock = clock
        # Serializes refunds so two requests cannot both pass the cap check
        self._lock = asyncio.Lock()

    async def refund_breakdown(self, claim_id: str) -> Optional[RefundBreakdown]:
        """
        Current refund cap for a charged claim, without side effects.

        Returns:
            None if the claim does not exist or was never charged
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None or claim.payment_intent_ref is None:
            return None
        return await self._breakdown(claim)

    async def refund(self, claim_id: str, request: RefundRequest) -> RefundResult:
        """
        Refund part or all of a charged claim.

        Omitting the amount refunds the whole remaining balance. A refund
        that leaves nothing refundable resolves the claim; otherwise the
        claim stays CHARGE_SUCCEEDED and is marked partially refunded.
        """
        async with self._lock:
            return await self._refund(claim_id, request)

    async def _refund(self, claim_id: str, request: RefundRequest) -> RefundResult:
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return RefundResult(success=False, error="Damage claim not found", error_kind=ErrorKind.NOT_FOUND)
        if claim.status != ClaimStatus.CHARGE_SUCCEEDED:
            return RefundResult(
                success=False,
                error=f"Cannot refund a claim in {claim.status.value} status",
                error_kind=ErrorKind.CONFLICT,
            )
        if not claim.payment_intent_ref:
            return RefundResult(
                success=False,
                error="No payment intent found for this claim",
                error_kind=ErrorKind.VALIDATION,
            )

        breakdown = await self._breakdown(claim)
        amount = request.amount_cents if request.amount_cents is not None else breakdown.max_refundable_cents
        if amount <= 0:
            return RefundResult(
                success=False,
                error="Refund amount must be greater than 0",
                error_kind=ErrorKind.VALIDATION,
            )
        if amount > breakdown.max_refundable_cents:
            return RefundResult(
                success=False,
                error=(
                    f"Refund amount ({amount}) exceeds the maximum refundable "
                    f"({breakdown.max_refundable_cents}). The processing fee is not refundable."
                ),
                error_kind=ErrorKind.VALIDATION,
                remaining_balance_cents=breakdown.max_refundable_cents,
            )

        try:
            refund = await asyncio.to_thread(
                self.gateway.create_refund,
                claim.payment_intent_ref,
                amount,
                GATEWAY_REFUND_REASON,
                {
                    "type": "damage_claim_refund",
                    "damage_claim_id": claim.id,
                    "refunded_by": str(request.refunded_by),
                    "reason": request.reason,
                },
            )
        except GatewayError as e:
            logger.error(f"Refund of claim {claim_id} failed at the gateway: {e}")
            return RefundResult(success=False, error=str(e))

        total_refunded = breakdown.already_refunded_cents + amount
        remaining = max(0, breakdown.manager_net_received_cents - total_refunded)
        is_full = total_refunded >= breakdown.charged_amount_cents or remaining == 0
        now = self.clock()

        changes = {
            "refunded_amount_cents": total_refunded,
            "resolution_type": ResolutionType.REFUNDED if is_full else ResolutionType.PARTIALLY_REFUNDED,
            "resolution_notes": request.reason,
        }
        if is_full:
            changes.update({"resolved_at": now, "resolved_by": request.refunded_by})

        entry = HistoryEntry(
            claim_id=claim.id,
            previous_status=ClaimStatus.CHARGE_SUCCEEDED,
            new_status=ClaimStatus.RESOLVED if is_full else ClaimStatus.CHARGE_SUCCEEDED,
            action="refunded" if is_full else "partially_refunded",
            actor_role=ActorRole.ADMIN,
            actor_id=request.refunded_by,
            note=request.reason,
            metadata={
                "refund_id": refund.id,
                "refund_amount_cents": amount,
                "balance_before_cents": breakdown.max_refundable_cents,
                "balance_after_cents": remaining,
                "total_refunded_cents": total_refunded,
            },
            created_at=now,
        )
        try:
            claim = await self.store.transition(claim.id, ClaimStatus.CHARGE_SUCCEEDED, changes, entry)
        except StoreError as e:
            logger.error(f"Refund {refund.id} issued but claim {claim_id} could not be updated: {e}")
            return RefundResult(success=False, refund_id=refund.id, refund_amount_cents=amount, error=str(e))

        logger.info(
            f"Refunded {amount} cents on claim {claim_id} ({refund.id}); "
            f"remaining refundable {remaining}, full={is_full}"
        )
        await self._update_ledger(claim, refund.id, total_refunded, is_full)
        for recipient in (claim.chef_id, claim.manager_id):
            await notify_safely(
                self.notifier,
                NotificationEvent.CLAIM_REFUNDED,
                recipient,
                {
                    "claim_id": claim.id,
                    "title": claim.title,
                    "refund_amount_cents": amount,
                    "is_full_refund": is_full,
                    "reason": request.reason,
                },
            )
        return RefundResult(
            success=True,
            refund_id=refund.id,
            refund_amount_cents=amount,
            remaining_balance_cents=remaining,
            is_full_refund=is_full,
        )

    async def _breakdown(self, claim: Claim) -> RefundBreakdown:
        charged = claim.final_amount_cents or 0
        tx = await self.ledger.find_by_claim(claim.id)
        if tx is not None:
            fee = tx.service_fee_cents
            net = tx.manager_revenue_cents
        else:
            # Ledger write failed at charge time; recompute what the manager got
            destination = await self.bookings.get_destination_account(claim.manager_id)
            fee = application_fee(charged, destination, self.settings)
            net = charged - fee
        already = claim.refunded_amount_cents
        return RefundBreakdown(
            charged_amount_cents=charged,
            manager_net_received_cents=net,
            already_refunded_cents=already,
            max_refundable_cents=max(0, net - already),
            original_fee_cents=fee,
        )

    async def _update_ledger(self, claim: Claim, refund_id: str, total_refunded: int, is_full: bool) -> None:
        try:
            tx = await self.ledger.find_by_claim(claim.id)
            if tx is None:
                logger.warning(f"No ledger transaction to update for refunded claim {claim.id}")
                return
            await self.ledger.update_transaction(tx.id, {
                "status": "refunded" if is_full else "partially_refunded",
                "refund_amount_cents": total_refunded,
                "refund_ids": tx.refund_ids + [refund_id],
                "refunded_at": self.clock(),
            })
        except Exception as e:
            logger.error(f"Failed to update ledger for refund {refund_id} on claim {claim.id}: {e}")
