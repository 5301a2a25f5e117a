"""
Payment Method Resolution

An ordered list of resolvers, each of which may find a saved customer and
payment method for a claim. The first one that answers wins and the source
it came from is recorded on the claim.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from pydantic import BaseModel

from damage_claims.core.models import Claim
from damage_claims.core.states import BookingType, PaymentMethodSource
from damage_claims.persistence.bookings import BookingDirectory

logger = logging.getLogger(__name__)


class ResolvedPaymentMethod(BaseModel):
    customer_ref: str
    payment_method_ref: str
    source: PaymentMethodSource


class PaymentMethodResolver(ABC):

    @abstractmethod
    async def resolve(self, claim: Claim, bookings: BookingDirectory) -> Optional[ResolvedPaymentMethod]:
        """Return a payment method for the claim, or None to defer to the next resolver."""


class ClaimSnapshotResolver(PaymentMethodResolver):
    """
    Uses the pair snapshotted on the claim at submission, keeping the
    source it was originally resolved from.
    """

    async def resolve(self, claim, bookings):
        if claim.customer_ref and claim.payment_method_ref:
            return ResolvedPaymentMethod(
                customer_ref=claim.customer_ref,
                payment_method_ref=claim.payment_method_ref,
                source=claim.payment_method_source or PaymentMethodSource.CLAIM_SNAPSHOT,
            )
        return None


class BookingResolver(PaymentMethodResolver):
    """Uses the pair saved on the claim's own booking at checkout."""

    async def resolve(self, claim, bookings):
        booking = await bookings.get_booking(claim.booking_type, claim.booking_id)
        if booking is None or not booking.has_payment_method:
            return None
        source = (
            PaymentMethodSource.STORAGE_BOOKING
            if claim.booking_type == BookingType.STORAGE
            else PaymentMethodSource.KITCHEN_BOOKING
        )
        return ResolvedPaymentMethod(
            customer_ref=booking.customer_ref,
            payment_method_ref=booking.payment_method_ref,
            source=source,
        )


class LinkedStorageResolver(PaymentMethodResolver):
    """
    Kitchen claims only: falls back to a storage booking made alongside
    the kitchen booking, which often holds the card when the kitchen
    booking was paid another way.
    """

    async def resolve(self, claim, bookings):
        if claim.booking_type != BookingType.KITCHEN:
            return None
        storage = await bookings.find_storage_for_kitchen(claim.kitchen_booking_id)
        if storage is None or not storage.has_payment_method:
            return None
        return ResolvedPaymentMethod(
            customer_ref=storage.customer_ref,
            payment_method_ref=storage.payment_method_ref,
            source=PaymentMethodSource.STORAGE_BOOKING_FALLBACK,
        )


DEFAULT_RESOLVERS: Sequence[PaymentMethodResolver] = (
    ClaimSnapshotResolver(),
    BookingResolver(),
    LinkedStorageResolver(),
)


async def resolve_payment_method(
    claim: Claim,
    bookings: BookingDirectory,
    resolvers: Sequence[PaymentMethodResolver] = DEFAULT_RESOLVERS,
) -> Optional[ResolvedPaymentMethod]:
    """Run the resolvers in order and return the first payment method found."""
    for resolver in resolvers:
        resolved = await resolver.resolve(claim, bookings)
        if resolved is not None:
            logger.info(f"Claim {claim.id}: payment method resolved from {resolved.source.value}")
            return resolved
    logger.warning(f"Claim {claim.id}: no saved payment method found")
    return None
