"""
Deadline Sweeper

Periodic job that auto-approves submitted claims whose chef response
deadline has passed, then captures payment for them. It also settles
claims left in charge_pending by an interrupted capture.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

from pydantic import BaseModel, Field

from damage_claims.config.settings import SchedulerSettings
from damage_claims.core.models import utcnow
from damage_claims.core.results import ChargeResult, ErrorKind
from damage_claims.core.states import ClaimStatus
from damage_claims.persistence.claim_store import ClaimStore

if TYPE_CHECKING:
    from damage_claims.services.capture import PaymentCaptureEngine
    from damage_claims.services.lifecycle import ClaimLifecycleService

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    """What one sweep did."""
    started_at: datetime
    examined: int = 0
    transitioned: List[str] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)
    recovered: List[str] = Field(default_factory=list)
    captures_attempted: int = 0
    captures_succeeded: int = 0


class DeadlineSweeper:
    """
    Runs the deadline sweep on a fixed interval.

    Each claim is handled on its own: a failure is recorded in the report
    and the sweep moves on. Captures for the approved claims run
    concurrently, bounded by the configured number of workers.
    """

    CHARGEABLE_STATUSES = (ClaimStatus.APPROVED, ClaimStatus.PARTIALLY_APPROVED)

    def __init__(
        self,
        store: ClaimStore,
        lifecycle: "ClaimLifecycleService",
        capture_engine: "PaymentCaptureEngine",
        settings: SchedulerSettings,
        clock=utcnow,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.capture_engine = capture_engine
        self.settings = settings
        self.clock = clock
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> SweepReport:
        """
        Auto-approve every overdue submitted claim and capture payment.

        Approved claims with no charge attempt on record are captured too,
        so an approval whose capture was lost is picked up on the next run.
        """
        now = self.clock()
        report = SweepReport(started_at=now)
        overdue = await self.store.find_claims(statuses=[ClaimStatus.SUBMITTED], deadline_before=now)
        report.examined = len(overdue)

        for claim in overdue:
            try:
                result = await self.lifecycle.expire_response_deadline(claim.id, dispatch=False)
            except Exception as e:
                logger.exception(f"Error auto-approving claim {claim.id}")
                report.failures[claim.id] = str(e)
                continue

            if result.ok:
                report.transitioned.append(claim.id)
            elif result.error.kind == ErrorKind.CONFLICT:
                # The chef responded between the query and the write
                logger.info(f"Claim {claim.id} skipped: {result.error.message}")
            else:
                report.failures[claim.id] = result.error.message

        # Approvals whose capture never started, e.g. after a restart mid-sweep
        report.recovered = [
            claim.id for claim in await self.store.find_claims(statuses=self.CHARGEABLE_STATUSES)
            if claim.charge_attempted_at is None and claim.id not in report.transitioned
        ]
        if report.recovered:
            logger.warning(f"Capturing {len(report.recovered)} approved claims that were never charged")

        charges = await self._bounded(self.capture_engine.capture, report.transitioned + report.recovered)
        report.captures_attempted = len(charges)
        report.captures_succeeded = sum(1 for r in charges.values() if r.success)

        logger.info(
            f"Deadline sweep: {report.examined} overdue, {len(report.transitioned)} approved, "
            f"{report.captures_succeeded}/{report.captures_attempted} charged, {len(report.failures)} failed"
        )
        return report

    async def reconcile_pending(self, older_than: timedelta) -> Dict[str, ChargeResult]:
        """Settle claims whose charge has been pending longer than older_than."""
        cutoff = self.clock() - older_than
        stuck = await self.store.find_claims(statuses=[ClaimStatus.CHARGE_PENDING], attempted_before=cutoff)
        if not stuck:
            return {}
        logger.warning(f"Reconciling {len(stuck)} claims stuck in charge_pending")
        return await self._bounded(self.capture_engine.reconcile, [c.id for c in stuck])

    async def run_forever(self) -> None:
        interval = self.settings.sweep_interval_seconds
        logger.info(f"Deadline sweeper started (every {interval:.0f}s)")
        while not self._stop.is_set():
            try:
                await self.run_once()
                await self.reconcile_pending(timedelta(seconds=self.settings.reconcile_after_seconds))
            except Exception:
                logger.exception("Deadline sweep failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Deadline sweeper stopped")

    def start(self) -> asyncio.Task:
        self._stop.clear()
        self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _bounded(self, operation, claim_ids: List[str]) -> Dict[str, ChargeResult]:
        semaphore = asyncio.Semaphore(self.settings.capture_workers)

        async def run(claim_id: str) -> ChargeResult:
            async with semaphore:
                return await operation(claim_id)

        results = await asyncio.gather(*(run(cid) for cid in claim_ids), return_exceptions=True)
        outcome: Dict[str, ChargeResult] = {}
        for claim_id, result in zip(claim_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Capture task for claim {claim_id} raised: {result}")
                outcome[claim_id] = ChargeResult(success=False, error=str(result))
            else:
                outcome[claim_id] = result
        return outcome
