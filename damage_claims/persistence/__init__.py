from .bookings import (
    INELIGIBLE_BOOKING_STATUSES,
    BookingDirectory,
    BookingRecord,
    InMemoryBookingDirectory,
)
from .claim_store import (
    ClaimStore,
    EvidenceNotFound,
    InMemoryClaimStore,
    InsufficientEvidence,
)

__all__ = [
    "INELIGIBLE_BOOKING_STATUSES",
    "BookingDirectory",
    "BookingRecord",
    "InMemoryBookingDirectory",
    "ClaimStore",
    "EvidenceNotFound",
    "InMemoryClaimStore",
    "InsufficientEvidence",
]
