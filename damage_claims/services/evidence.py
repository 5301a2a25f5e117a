"""
Evidence Service

Attachments supporting a claim. Evidence can be added while the claim is
still open for review and removed only while it is a draft.
"""
import logging
from typing import List

from damage_claims.core.models import Evidence, EvidenceCreate
from damage_claims.core.results import (
    ClaimNotFound,
    ErrorKind,
    EvidenceResult,
    OwnershipMismatch,
    StatusConflict,
)
from damage_claims.core.states import EVIDENCE_OPEN_STATUSES
from damage_claims.persistence.claim_store import ClaimStore, EvidenceNotFound

logger = logging.getLogger(__name__)


class EvidenceService:

    def __init__(self, store: ClaimStore):
        self.store = store

    async def add_evidence(self, claim_id: str, manager_id: int, data: EvidenceCreate) -> EvidenceResult:
        """
        Attach evidence to a claim owned by the manager.

        Allowed while the claim is draft, submitted or under review.
        """
        claim = await self.store.get_claim(claim_id)
        if claim is None:
            return EvidenceResult.failure(ErrorKind.NOT_FOUND, f"Claim {claim_id} not found")
        if claim.manager_id != manager_id:
            return EvidenceResult.failure(ErrorKind.AUTHORIZATION, "Not authorized to add evidence to this claim")

        evidence = Evidence(claim_id=claim_id, uploaded_by=manager_id, **data.model_dump())
        try:
            evidence = await self.store.add_evidence(evidence, EVIDENCE_OPEN_STATUSES)
        except ClaimNotFound as e:
            return EvidenceResult.failure(ErrorKind.NOT_FOUND, str(e))
        except StatusConflict as e:
            return EvidenceResult.failure(
                ErrorKind.CONFLICT,
                f"Cannot add evidence to a claim in {e.actual.value} status",
                status=e.actual.value,
            )

        logger.info(f"Added {evidence.kind.value} evidence {evidence.id} to claim {claim_id}")
        return EvidenceResult(ok=True, evidence=evidence)

    async def remove_evidence(self, evidence_id: str, manager_id: int) -> EvidenceResult:
        try:
            evidence = await self.store.remove_evidence(evidence_id, ("manager_id", manager_id))
        except (EvidenceNotFound, ClaimNotFound) as e:
            return EvidenceResult.failure(ErrorKind.NOT_FOUND, str(e))
        except OwnershipMismatch:
            return EvidenceResult.failure(ErrorKind.AUTHORIZATION, "Not authorized to remove this evidence")
        except StatusConflict:
            return EvidenceResult.failure(ErrorKind.CONFLICT, "Can only remove evidence from draft claims")

        logger.info(f"Removed evidence {evidence_id} from claim {evidence.claim_id}")
        return EvidenceResult(ok=True, evidence=evidence)

    async def list_evidence(self, claim_id: str) -> List[Evidence]:
        return await self.store.list_evidence(claim_id)

    async def count_evidence(self, claim_id: str) -> int:
        return len(await self.store.list_evidence(claim_id))
