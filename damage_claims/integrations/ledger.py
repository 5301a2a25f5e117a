"""
Ledger Service

Accounting record of money moved for a claim. One transaction per claim:
recording twice for the same claim returns the existing transaction.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from damage_claims.core.models import new_id, utcnow
from damage_claims.core.states import BookingType

logger = logging.getLogger(__name__)


class LedgerTransaction(BaseModel):
    id: str = Field(default_factory=new_id)
    claim_id: str
    booking_type: BookingType
    booking_id: int
    chef_id: int
    manager_id: int
    amount_cents: int = Field(..., ge=0)
    service_fee_cents: int = Field(default=0, ge=0, description="Platform fee kept from the charge")
    manager_revenue_cents: int = Field(..., ge=0, description="What the manager actually receives")
    currency: str
    payment_intent_ref: Optional[str] = None
    charge_ref: Optional[str] = None
    status: str = "succeeded"
    refund_amount_cents: int = Field(default=0, ge=0)
    refund_ids: List[str] = Field(default_factory=list)
    gateway_processing_fee_cents: Optional[int] = Field(
        default=None,
        description="Fee reported by the gateway once reconciled"
    )
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Ledger(ABC):

    @abstractmethod
    async def record_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        """Record a transaction, or return the one already recorded for the claim."""

    @abstractmethod
    async def update_transaction(self, transaction_id: str, changes: Dict[str, Any]) -> LedgerTransaction:
        """Apply changes to a recorded transaction."""

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        """Retrieve a transaction by id."""

    @abstractmethod
    async def find_by_claim(self, claim_id: str) -> Optional[LedgerTransaction]:
        """The transaction recorded for a claim, if any."""


class InMemoryLedger(Ledger):

    def __init__(self) -> None:
        self._transactions: Dict[str, LedgerTransaction] = {}
        self._by_claim: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def record_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        async with self._lock:
            existing_id = self._by_claim.get(transaction.claim_id)
            if existing_id is not None:
                logger.info(f"Ledger already has transaction {existing_id} for claim {transaction.claim_id}")
                return self._transactions[existing_id].model_copy(deep=True)
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
            self._by_claim[transaction.claim_id] = transaction.id
        return transaction

    async def update_transaction(self, transaction_id: str, changes: Dict[str, Any]) -> LedgerTransaction:
        async with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None:
                raise KeyError(f"Ledger transaction {transaction_id} not found")
            updated = LedgerTransaction.model_validate({**current.model_dump(), **changes})
            self._transactions[transaction_id] = updated
        return updated.model_copy(deep=True)

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def find_by_claim(self, claim_id: str) -> Optional[LedgerTransaction]:
        tx_id = self._by_claim.get(claim_id)
        return await self.get_transaction(tx_id) if tx_id else None
