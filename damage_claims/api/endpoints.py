"""
FastAPI Endpoints for Damage Claims

REST API for filing, responding to, adjudicating, charging and refunding
damage claims. Actor ids are passed explicitly; authentication happens
upstream of this service.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from damage_claims.core.models import (
    AdminDecision,
    BookingRef,
    ChefResponse,
    Claim,
    ClaimCreate,
    ClaimData,
    DraftUpdate,
    Evidence,
    EvidenceCreate,
    HistoryEntry,
    RefundRequest,
)
from damage_claims.core.results import (
    ChargeResult,
    ClaimError,
    ClaimResult,
    ErrorKind,
    EvidenceResult,
    RefundBreakdown,
    RefundResult,
)
from damage_claims.core.states import ChefAction, ClaimStatus
from damage_claims.engine import ClaimEngine
from damage_claims.monitors.deadline_sweeper import SweepReport

logger = logging.getLogger(__name__)

# Initialize router
router = APIRouter(prefix="/claims", tags=["claims"])

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def get_engine(request: Request) -> ClaimEngine:
    return request.app.state.engine


class ClaimResponse(BaseModel):
    """Response model for claim operations."""
    claim: Claim
    message: str
    next_valid_statuses: List[ClaimStatus]


class HistoryResponse(BaseModel):
    """Response model for a claim's audit trail."""
    claim_id: str
    status: ClaimStatus
    history: List[HistoryEntry]


class UnpaidClaimsResponse(BaseModel):
    chef_id: int
    has_unpaid_claims: bool
    total_owed_cents: int
    claims: List[Claim]


class FileClaimRequest(BaseModel):
    """Request model for filing a claim from another workflow."""
    booking: BookingRef
    manager_id: int
    claim: ClaimData


def _raise_for(error: ClaimError) -> None:
    raise HTTPException(
        status_code=HTTP_STATUS_BY_KIND[error.kind],
        detail=error.model_dump(mode="json"),
    )


def _raise_for_payment(error: Optional[str], kind: Optional[ErrorKind]) -> None:
    # No kind means the gateway itself failed
    code = HTTP_STATUS_BY_KIND[kind] if kind else status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail={"kind": kind.value if kind else "gateway", "message": error})


def _claim_response(engine: ClaimEngine, result: ClaimResult, message: str) -> ClaimResponse:
    if not result.ok:
        _raise_for(result.error)
    claim = result.claim
    return ClaimResponse(
        claim=claim,
        message=message,
        next_valid_statuses=engine.state_machine.get_valid_transitions(claim.status),
    )


def _evidence(result: EvidenceResult) -> Evidence:
    if not result.ok:
        _raise_for(result.error)
    return result.evidence


# ----------------------------------------------------------------------
# Listings (declared before /{claim_id} so the paths match first)
# ----------------------------------------------------------------------

@router.get("/disputed", response_model=List[Claim])
async def list_disputed_claims(engine: ClaimEngine = Depends(get_engine)) -> List[Claim]:
    """Claims awaiting admin review."""
    return await engine.lifecycle.list_disputed_claims()


@router.get("/manager/{manager_id}", response_model=List[Claim])
async def list_manager_claims(
    manager_id: int,
    include_closed: bool = True,
    engine: ClaimEngine = Depends(get_engine),
) -> List[Claim]:
    return await engine.lifecycle.list_manager_claims(manager_id, include_closed=include_closed)


@router.get("/chef/{chef_id}", response_model=List[Claim])
async def list_chef_claims(chef_id: int, engine: ClaimEngine = Depends(get_engine)) -> List[Claim]:
    return await engine.lifecycle.list_chef_claims(chef_id)


@router.get("/chef/{chef_id}/unpaid", response_model=UnpaidClaimsResponse)
async def get_unpaid_claims(chef_id: int, engine: ClaimEngine = Depends(get_engine)) -> UnpaidClaimsResponse:
    """
    Approved claims the chef has not paid.

    Other workflows use this to block new bookings until the balance is
    settled.
    """
    claims = await engine.lifecycle.unpaid_claims(chef_id)
    return UnpaidClaimsResponse(
        chef_id=chef_id,
        has_unpaid_claims=bool(claims),
        total_owed_cents=sum(c.final_amount_cents or c.approved_amount_cents or 0 for c in claims),
        claims=claims,
    )


# ----------------------------------------------------------------------
# Manager operations
# ----------------------------------------------------------------------

@router.post("/", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED)
async def create_claim(data: ClaimCreate, engine: ClaimEngine = Depends(get_engine)) -> ClaimResponse:
    """
    File a new damage claim.

    The claim starts in DRAFT unless submit_immediately is set.
    """
    result = await engine.lifecycle.create(data)
    return _claim_response(engine, result, "Claim created successfully")


@router.post("/file", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED)
async def file_claim(request: FileClaimRequest, engine: ClaimEngine = Depends(get_engine)) -> ClaimResponse:
    """Create and submit a claim in one step."""
    result = await engine.lifecycle.file_claim(request.booking, request.manager_id, request.claim)
    return _claim_response(engine, result, "Claim filed and submitted")


@router.get("/{claim_id}", response_model=ClaimResponse)
async def get_claim(claim_id: str, engine: ClaimEngine = Depends(get_engine)) -> ClaimResponse:
    claim = await engine.lifecycle.get_claim(claim_id)
    if not claim:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Claim {claim_id} not found"
        )
    return _claim_response(engine, ClaimResult.success(claim), f"Claim {claim_id} retrieved")


@router.patch("/{claim_id}", response_model=ClaimResponse)
async def update_draft(
    claim_id: str,
    changes: DraftUpdate,
    manager_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> ClaimResponse:
    result = await engine.lifecycle.update_draft(claim_id, manager_id, changes)
    return _claim_response(engine, result, "Draft updated")


@router.delete("/{claim_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_draft(
    claim_id: str,
    manager_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> Response:
    result = await engine.lifecycle.delete_draft(claim_id, manager_id)
    if not result.ok:
        _raise_for(result.error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{claim_id}/submit", response_model=ClaimResponse)
async def submit_claim(
    claim_id: str,
    manager_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> ClaimResponse:
    result = await engine.lifecycle.submit(claim_id, manager_id)
    return _claim_response(engine, result, "Claim submitted to chef")


@router.get("/{claim_id}/evidence", response_model=List[Evidence])
async def list_evidence(claim_id: str, engine: ClaimEngine = Depends(get_engine)) -> List[Evidence]:
    return await engine.evidence.list_evidence(claim_id)


@router.post("/{claim_id}/evidence", response_model=Evidence, status_code=status.HTTP_201_CREATED)
async def add_evidence(
    claim_id: str,
    data: EvidenceCreate,
    manager_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> Evidence:
    return _evidence(await engine.evidence.add_evidence(claim_id, manager_id, data))


@router.delete("/{claim_id}/evidence/{evidence_id}", response_model=Evidence)
async def remove_evidence(
    claim_id: str,
    evidence_id: str,
    manager_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> Evidence:
    evidence = _evidence(await engine.evidence.remove_evidence(evidence_id, manager_id))
    if evidence.claim_id != claim_id:
        logger.warning(f"Evidence {evidence_id} removed via claim {claim_id} but belonged to {evidence.claim_id}")
    return evidence


# ----------------------------------------------------------------------
# Chef and admin operations
# ----------------------------------------------------------------------

@router.post("/{claim_id}/respond", response_model=ClaimResponse)
async def chef_respond(
    claim_id: str,
    response: ChefResponse,
    chef_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> ClaimResponse:
    """
    Chef accepts or disputes a submitted claim.

    Accepting approves the claim and triggers payment capture.
    """
    result = await engine.lifecycle.chef_respond(claim_id, chef_id, response)
    verb = "accepted" if response.action == ChefAction.ACCEPT else "disputed"
    return _claim_response(engine, result, f"Claim {verb}")


@router.post("/{claim_id}/decision", response_model=ClaimResponse)
async def admin_decide(
    claim_id: str,
    decision: AdminDecision,
    admin_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> ClaimResponse:
    result = await engine.lifecycle.admin_decide(claim_id, admin_id, decision)
    return _claim_response(engine, result, f"Decision recorded: {decision.decision.value}")


@router.post("/{claim_id}/charge", response_model=ChargeResult)
async def charge_claim(
    claim_id: str,
    admin_id: int = Query(...),
    engine: ClaimEngine = Depends(get_engine),
) -> ChargeResult:
    """Capture an approved claim, or re-charge one whose charge failed."""
    claim = await engine.lifecycle.get_claim(claim_id)
    if claim is not None and claim.status == ClaimStatus.CHARGE_FAILED:
        result = await engine.capture.recharge(claim_id, admin_id)
    else:
        result = await engine.capture.capture(claim_id)
    if result.error_kind:
        _raise_for_payment(result.error, result.error_kind)
    return result


@router.post("/{claim_id}/reconcile", response_model=ChargeResult)
async def reconcile_charge(claim_id: str, engine: ClaimEngine = Depends(get_engine)) -> ChargeResult:
    result = await engine.capture.reconcile(claim_id)
    if result.error_kind:
        _raise_for_payment(result.error, result.error_kind)
    return result


@router.get("/{claim_id}/refund-breakdown", response_model=RefundBreakdown)
async def refund_breakdown(claim_id: str, engine: ClaimEngine = Depends(get_engine)) -> RefundBreakdown:
    breakdown = await engine.refunds.refund_breakdown(claim_id)
    if breakdown is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No charge found for claim {claim_id}"
        )
    return breakdown


@router.post("/{claim_id}/refund", response_model=RefundResult)
async def refund_claim(
    claim_id: str,
    request: RefundRequest,
    engine: ClaimEngine = Depends(get_engine),
) -> RefundResult:
    result = await engine.refunds.refund(claim_id, request)
    if not result.success:
        _raise_for_payment(result.error, result.error_kind)
    return result


@router.get("/{claim_id}/history", response_model=HistoryResponse)
async def get_claim_history(claim_id: str, engine: ClaimEngine = Depends(get_engine)) -> HistoryResponse:
    """
    Get the status transition history for a claim, oldest first.
    """
    claim = await engine.lifecycle.get_claim(claim_id)
    if not claim:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Claim {claim_id} not found"
        )
    return HistoryResponse(
        claim_id=claim.id,
        status=claim.status,
        history=await engine.lifecycle.get_history(claim_id),
    )


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.post("/sweep", response_model=SweepReport)
async def run_sweep(engine: ClaimEngine = Depends(get_engine)) -> SweepReport:
    """Run the deadline sweep now instead of waiting for the next interval."""
    return await engine.sweeper.run_once()
