"""
Booking Directory

Read-only view of the marketplace bookings and manager accounts that the
claim engine needs. Booking management itself lives elsewhere.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

from damage_claims.core.states import BookingType

# Booking statuses that cannot have claims filed against them
INELIGIBLE_BOOKING_STATUSES = frozenset({"cancelled", "rejected", "refunded"})


class BookingRecord(BaseModel):
    """The parts of a kitchen or storage booking the claim engine reads."""
    id: int
    booking_type: BookingType
    status: str = Field(default="confirmed")
    chef_id: Optional[int] = None
    location_id: Optional[int] = None
    manager_id: Optional[int] = Field(default=None, description="Manager of the booked location")
    customer_ref: Optional[str] = Field(default=None, description="Gateway customer saved at checkout")
    payment_method_ref: Optional[str] = Field(default=None, description="Payment method saved at checkout")
    kitchen_booking_id: Optional[int] = Field(
        default=None,
        description="Kitchen booking a storage booking was made alongside"
    )

    @property
    def has_payment_method(self) -> bool:
        return bool(self.customer_ref and self.payment_method_ref)


class BookingDirectory(ABC):
    """Lookups the engine performs against bookings and manager accounts."""

    @abstractmethod
    async def get_booking(self, booking_type: BookingType, booking_id: int) -> Optional[BookingRecord]:
        """Retrieve a booking by type and id."""

    @abstractmethod
    async def find_storage_for_kitchen(self, kitchen_booking_id: int) -> Optional[BookingRecord]:
        """The storage booking linked to a kitchen booking, if any."""

    @abstractmethod
    async def get_destination_account(self, manager_id: int) -> Optional[str]:
        """The manager's connected payout account, if onboarded."""


class InMemoryBookingDirectory(BookingDirectory):
    """In-memory booking directory for development and tests."""

    def __init__(self) -> None:
        self._bookings: Dict[Tuple[BookingType, int], BookingRecord] = {}
        self._accounts: Dict[int, str] = {}

    def add_booking(self, booking: BookingRecord) -> BookingRecord:
        self._bookings[(booking.booking_type, booking.id)] = booking
        return booking

    def set_destination_account(self, manager_id: int, account_id: str) -> None:
        self._accounts[manager_id] = account_id

    async def get_booking(self, booking_type: BookingType, booking_id: int) -> Optional[BookingRecord]:
        booking = self._bookings.get((booking_type, booking_id))
        return booking.model_copy() if booking else None

    async def find_storage_for_kitchen(self, kitchen_booking_id: int) -> Optional[BookingRecord]:
        for (booking_type, _), booking in self._bookings.items():
            if booking_type == BookingType.STORAGE and booking.kitchen_booking_id == kitchen_booking_id:
                return booking.model_copy()
        return None

    async def get_destination_account(self, manager_id: int) -> Optional[str]:
        return self._accounts.get(manager_id)
