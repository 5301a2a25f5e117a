"""
Engine wiring

Builds the services from settings and wires capture into the approval
transitions. Any collaborator can be supplied to replace the default.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from damage_claims.config.settings import Settings
from damage_claims.core.models import utcnow
from damage_claims.gateway.base import PaymentGateway, UnconfiguredGateway
from damage_claims.gateway.http_client import HttpPaymentGateway
from damage_claims.integrations.ledger import InMemoryLedger, Ledger
from damage_claims.integrations.notifications import LoggingNotifier, Notifier, WebhookNotifier
from damage_claims.monitors.deadline_sweeper import DeadlineSweeper
from damage_claims.monitors.transition_monitor import TransitionMonitor
from damage_claims.persistence.bookings import BookingDirectory, InMemoryBookingDirectory
from damage_claims.persistence.claim_store import ClaimStore, InMemoryClaimStore
from damage_claims.services.capture import PaymentCaptureEngine
from damage_claims.services.evidence import EvidenceService
from damage_claims.services.lifecycle import ClaimLifecycleService, Clock
from damage_claims.services.refunds import RefundEngine
from damage_claims.state_machine.machine import ClaimStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ClaimEngine:
    settings: Settings
    store: ClaimStore
    bookings: BookingDirectory
    gateway: PaymentGateway
    ledger: Ledger
    notifier: Notifier
    state_machine: ClaimStateMachine
    monitor: TransitionMonitor
    lifecycle: ClaimLifecycleService
    evidence: EvidenceService
    capture: PaymentCaptureEngine
    refunds: RefundEngine
    sweeper: DeadlineSweeper


def default_gateway(settings: Settings) -> PaymentGateway:
    if settings.gateway.base_url:
        return HttpPaymentGateway(settings.gateway)
    logger.warning("GATEWAY_BASE_URL is not set; charges and refunds will fail until it is configured")
    return UnconfiguredGateway()


def default_notifier(settings: Settings) -> Notifier:
    if settings.notify_webhook_url:
        return WebhookNotifier(settings.notify_webhook_url)
    return LoggingNotifier()


def build_engine(
    settings: Settings,
    *,
    store: Optional[ClaimStore] = None,
    bookings: Optional[BookingDirectory] = None,
    gateway: Optional[PaymentGateway] = None,
    ledger: Optional[Ledger] = None,
    notifier: Optional[Notifier] = None,
    clock: Clock = utcnow,
) -> ClaimEngine:
    """Assemble the claim engine."""
    store = store or InMemoryClaimStore()
    bookings = bookings or InMemoryBookingDirectory()
    gateway = gateway or default_gateway(settings)
    ledger = ledger or InMemoryLedger()
    notifier = notifier or default_notifier(settings)

    state_machine = ClaimStateMachine()
    monitor = TransitionMonitor(run_in_background=settings.scheduler.capture_in_background)

    lifecycle = ClaimLifecycleService(
        store, bookings, settings.limits, notifier, monitor, state_machine, clock=clock
    )
    capture = PaymentCaptureEngine(
        store, bookings, gateway, ledger, notifier, settings.gateway, monitor, state_machine, clock=clock
    )
    refunds = RefundEngine(store, bookings, gateway, ledger, notifier, settings.gateway, clock=clock)
    sweeper = DeadlineSweeper(store, lifecycle, capture, settings.scheduler, clock=clock)

    for status in state_machine.APPROVAL_STATUSES:
        monitor.register_handler(status, capture.on_claim_approved)

    return ClaimEngine(
        settings=settings,
        store=store,
        bookings=bookings,
        gateway=gateway,
        ledger=ledger,
        notifier=notifier,
        state_machine=state_machine,
        monitor=monitor,
        lifecycle=lifecycle,
        evidence=EvidenceService(store),
        capture=capture,
        refunds=refunds,
        sweeper=sweeper,
    )
