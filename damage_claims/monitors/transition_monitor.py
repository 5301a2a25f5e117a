"""
Transition Monitor

Watches claim status changes and triggers the actions registered for the
status entered, such as capturing payment when a claim is approved.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Set

from damage_claims.core.models import Claim
from damage_claims.core.states import ClaimStatus

logger = logging.getLogger(__name__)

StatusHandler = Callable[[Claim], Awaitable[Any]]


class TransitionMonitor:
    """
    Monitors claim transitions and triggers event hooks.

    Handlers run either inline, awaited by the operation that caused the
    transition, or as background tasks. Handler failures are logged and
    never undo the transition that triggered them.
    """

    def __init__(self, run_in_background: bool = True):
        """
        Initialize the transition monitor.

        Args:
            run_in_background: Schedule handlers as tasks instead of awaiting them
        """
        self.run_in_background = run_in_background
        self._event_handlers: Dict[ClaimStatus, List[StatusHandler]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def register_handler(self, status: ClaimStatus, handler: StatusHandler) -> None:
        """
        Register an async handler to be called when a claim enters a status.

        Args:
            status: The status that triggers the handler
            handler: Async function to call with the claim
        """
        self._event_handlers.setdefault(status, []).append(handler)
        logger.info(f"Registered handler for status {status.value}")

    async def on_status_entered(self, claim: Claim, status: ClaimStatus) -> None:
        """
        Called after a claim enters a new status.

        Triggers all registered handlers for the status.
        """
        for handler in self._event_handlers.get(status, []):
            if self.run_in_background:
                self.spawn(self._run_handler(handler, claim, status))
            else:
                await self._run_handler(handler, claim, status)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine as a tracked background task."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    async def drain(self) -> None:
        """Wait for every background task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _run_handler(self, handler: StatusHandler, claim: Claim, status: ClaimStatus) -> None:
        try:
            await handler(claim)
        except Exception:
            logger.exception(f"Handler for {status.value} failed on claim {claim.id}")

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")
