"""
Claim Store

Persistence interface for claims, their evidence and their audit history,
with an in-memory implementation used by the application and the tests.

Every status change goes through ``transition``: a conditional update
(WHERE id = X AND status = expected) that inserts the history entry in the
same unit of work. A failed precondition writes nothing.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Collection, Dict, List, Optional, Tuple

from damage_claims.core.models import Claim, Evidence, HistoryEntry, utcnow
from damage_claims.core.results import ClaimNotFound, OwnershipMismatch, StatusConflict, StoreError
from damage_claims.core.states import BookingType, ClaimStatus

logger = logging.getLogger(__name__)

# (field name, expected value) checked against the stored record
OwnerGuard = Tuple[str, int]


class InsufficientEvidence(StoreError):
    def __init__(self, claim_id: str, found: int, required: int):
        super().__init__(f"Minimum {required} pieces of evidence required, claim {claim_id} has {found}")
        self.found = found
        self.required = required


class EvidenceNotFound(StoreError):
    def __init__(self, evidence_id: str):
        super().__init__(f"Evidence {evidence_id} not found")
        self.evidence_id = evidence_id


class ClaimStore(ABC):
    """Interface every claim store implementation follows."""

    @abstractmethod
    async def insert_claim(self, claim: Claim, entry: HistoryEntry) -> Claim:
        """Persist a new claim together with its creation history entry."""

    @abstractmethod
    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        """Retrieve a claim by id."""

    @abstractmethod
    async def find_claims(
        self,
        *,
        statuses: Optional[Collection[ClaimStatus]] = None,
        chef_id: Optional[int] = None,
        manager_id: Optional[int] = None,
        deadline_before: Optional[datetime] = None,
        attempted_before: Optional[datetime] = None,
    ) -> List[Claim]:
        """Claims matching every given predicate, newest first."""

    @abstractmethod
    async def count_claims_for_booking(self, booking_type: BookingType, booking_id: int) -> int:
        """Number of claims ever filed against a booking."""

    @abstractmethod
    async def transition(
        self,
        claim_id: str,
        expected_status: ClaimStatus,
        changes: Dict[str, Any],
        entry: HistoryEntry,
        *,
        owner: Optional[OwnerGuard] = None,
        min_evidence: int = 0,
    ) -> Claim:
        """
        Conditionally move a claim to entry.new_status and append entry.

        Raises:
            ClaimNotFound: No claim with that id
            OwnershipMismatch: The owner guard does not hold
            StatusConflict: The stored status is not expected_status
            InsufficientEvidence: Fewer than min_evidence attachments
        """

    @abstractmethod
    async def update_draft(
        self, claim_id: str, owner: OwnerGuard, changes: Dict[str, Any]
    ) -> Claim:
        """Edit a claim that is still in draft."""

    @abstractmethod
    async def delete_draft(self, claim_id: str, owner: OwnerGuard) -> None:
        """Delete a draft claim and its evidence."""

    @abstractmethod
    async def update_fields(self, claim_id: str, changes: Dict[str, Any]) -> Claim:
        """Update non-status fields (links and references)."""

    @abstractmethod
    async def add_evidence(
        self, evidence: Evidence, allowed_statuses: Collection[ClaimStatus]
    ) -> Evidence:
        """Attach evidence if the claim is in one of allowed_statuses."""

    @abstractmethod
    async def remove_evidence(self, evidence_id: str, owner: OwnerGuard) -> Evidence:
        """Remove evidence from a draft claim."""

    @abstractmethod
    async def list_evidence(self, claim_id: str) -> List[Evidence]:
        """Evidence for a claim in upload order."""

    @abstractmethod
    async def list_history(self, claim_id: str) -> List[HistoryEntry]:
        """History for a claim, oldest first."""


class InMemoryClaimStore(ClaimStore):
    """
    In-memory claim store.

    A single asyncio lock makes each conditional update and its history
    insert atomic. Records are copied on the way in and out so callers
    never hold a live reference to stored state.
    """

    def __init__(self) -> None:
        self._claims: Dict[str, Claim] = {}
        self._evidence: Dict[str, Evidence] = {}
        self._history: Dict[str, List[HistoryEntry]] = {}
        self._lock = asyncio.Lock()

    async def insert_claim(self, claim: Claim, entry: HistoryEntry) -> Claim:
        if entry.claim_id != claim.id or entry.new_status != claim.status:
            raise ValueError("history entry does not describe the inserted claim")
        async with self._lock:
            if claim.id in self._claims:
                raise ValueError(f"Claim {claim.id} already exists")
            self._claims[claim.id] = claim.model_copy(deep=True)
            self._history[claim.id] = [entry]
        logger.debug(f"Inserted claim {claim.id} in status {claim.status.value}")
        return claim.model_copy(deep=True)

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        claim = self._claims.get(claim_id)
        return claim.model_copy(deep=True) if claim else None

    async def find_claims(
        self,
        *,
        statuses: Optional[Collection[ClaimStatus]] = None,
        chef_id: Optional[int] = None,
        manager_id: Optional[int] = None,
        deadline_before: Optional[datetime] = None,
        attempted_before: Optional[datetime] = None,
    ) -> List[Claim]:
        result = []
        for claim in self._claims.values():
            if statuses is not None and claim.status not in statuses:
                continue
            if chef_id is not None and claim.chef_id != chef_id:
                continue
            if manager_id is not None and claim.manager_id != manager_id:
                continue
            if deadline_before is not None and not claim.chef_response_deadline < deadline_before:
                continue
            if attempted_before is not None and (
                claim.charge_attempted_at is None or not claim.charge_attempted_at < attempted_before
            ):
                continue
            result.append(claim.model_copy(deep=True))
        result.sort(key=lambda c: c.created_at, reverse=True)
        return result

    async def count_claims_for_booking(self, booking_type: BookingType, booking_id: int) -> int:
        return sum(
            1 for c in self._claims.values()
            if c.booking_type == booking_type and c.booking_id == booking_id
        )

    async def transition(
        self,
        claim_id: str,
        expected_status: ClaimStatus,
        changes: Dict[str, Any],
        entry: HistoryEntry,
        *,
        owner: Optional[OwnerGuard] = None,
        min_evidence: int = 0,
    ) -> Claim:
        if entry.claim_id != claim_id or entry.previous_status != expected_status:
            raise ValueError("history entry does not describe this transition")
        if "status" in changes:
            raise ValueError("pass the new status through the history entry")

        async with self._lock:
            current = self._require(claim_id, owner)
            if current.status != expected_status:
                raise StatusConflict(claim_id, expected_status, current.status)
            if min_evidence:
                found = self._evidence_count(claim_id)
                if found < min_evidence:
                    raise InsufficientEvidence(claim_id, found, min_evidence)

            updated = self._apply(current, {**changes, "status": entry.new_status})
            self._claims[claim_id] = updated
            self._history[claim_id].append(entry)

        logger.debug(
            f"Claim {claim_id}: {expected_status.value} -> {entry.new_status.value} ({entry.action})"
        )
        return updated.model_copy(deep=True)

    async def update_draft(
        self, claim_id: str, owner: OwnerGuard, changes: Dict[str, Any]
    ) -> Claim:
        async with self._lock:
            current = self._require(claim_id, owner)
            if current.status != ClaimStatus.DRAFT:
                raise StatusConflict(claim_id, ClaimStatus.DRAFT, current.status)
            updated = self._apply(current, changes)
            self._claims[claim_id] = updated
        return updated.model_copy(deep=True)

    async def delete_draft(self, claim_id: str, owner: OwnerGuard) -> None:
        async with self._lock:
            current = self._require(claim_id, owner)
            if current.status != ClaimStatus.DRAFT:
                raise StatusConflict(claim_id, ClaimStatus.DRAFT, current.status)
            for evidence_id in [e.id for e in self._evidence.values() if e.claim_id == claim_id]:
                del self._evidence[evidence_id]
            del self._claims[claim_id]
            del self._history[claim_id]

    async def update_fields(self, claim_id: str, changes: Dict[str, Any]) -> Claim:
        if "status" in changes:
            raise ValueError("status can only change through transition()")
        async with self._lock:
            current = self._require(claim_id, None)
            updated = self._apply(current, changes)
            self._claims[claim_id] = updated
        return updated.model_copy(deep=True)

    async def add_evidence(
        self, evidence: Evidence, allowed_statuses: Collection[ClaimStatus]
    ) -> Evidence:
        async with self._lock:
            current = self._require(evidence.claim_id, None)
            if current.status not in allowed_statuses:
                raise StatusConflict(evidence.claim_id, sorted(s.value for s in allowed_statuses), current.status)
            self._evidence[evidence.id] = evidence.model_copy(deep=True)
        return evidence

    async def remove_evidence(self, evidence_id: str, owner: OwnerGuard) -> Evidence:
        async with self._lock:
            evidence = self._evidence.get(evidence_id)
            if evidence is None:
                raise EvidenceNotFound(evidence_id)
            current = self._require(evidence.claim_id, owner)
            if current.status != ClaimStatus.DRAFT:
                raise StatusConflict(evidence.claim_id, ClaimStatus.DRAFT, current.status)
            del self._evidence[evidence_id]
        return evidence

    async def list_evidence(self, claim_id: str) -> List[Evidence]:
        items = [e.model_copy(deep=True) for e in self._evidence.values() if e.claim_id == claim_id]
        items.sort(key=lambda e: e.uploaded_at)
        return items

    async def list_history(self, claim_id: str) -> List[HistoryEntry]:
        return list(self._history.get(claim_id, []))

    def _require(self, claim_id: str, owner: Optional[OwnerGuard]) -> Claim:
        current = self._claims.get(claim_id)
        if current is None:
            raise ClaimNotFound(claim_id)
        if owner is not None:
            field, expected = owner
            if getattr(current, field) != expected:
                raise OwnershipMismatch(claim_id, field)
        return current

    def _evidence_count(self, claim_id: str) -> int:
        return sum(1 for e in self._evidence.values() if e.claim_id == claim_id)

    @staticmethod
    def _apply(current: Claim, changes: Dict[str, Any]) -> Claim:
        # Re-validate so amount invariants hold on every write
        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        return Claim.model_validate(data)
