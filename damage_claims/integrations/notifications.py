"""
Notification Dispatch

Fire-and-forget notifications sent after user-visible transitions. A
failed dispatch is logged and never affects the claim.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    CLAIM_FILED = "damage_claim_filed"
    CLAIM_RESPONSE_RECEIVED = "damage_claim_response_received"
    CLAIM_DISPUTED = "damage_claim_disputed"
    CLAIM_DECISION = "damage_claim_decision"
    CLAIM_AUTO_APPROVED = "damage_claim_auto_approved"
    CLAIM_CHARGED = "damage_claim_charged"
    CLAIM_PAYMENT_RECEIVED = "damage_claim_payment_received"
    CLAIM_CHARGE_FAILED = "damage_claim_charge_failed"
    CLAIM_REFUNDED = "damage_claim_refunded"


class Notifier(ABC):
    """Delivers a notification to one recipient."""

    @abstractmethod
    def notify(self, event_kind: NotificationEvent, recipient_id: Optional[int], payload: Dict[str, Any]) -> None:
        """Send a notification. May raise; callers treat failures as non-fatal."""


class LoggingNotifier(Notifier):
    """Writes notifications to the log. Used when no webhook is configured."""

    def notify(self, event_kind, recipient_id, payload) -> None:
        logger.info(f"Notification {event_kind.value} -> {recipient_id}: {payload}")


class WebhookNotifier(Notifier):
    """Posts notifications to the marketplace's notification service."""

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, event_kind, recipient_id, payload) -> None:
        response = self.session.post(
            self.url,
            json={"event": event_kind.value, "recipient_id": recipient_id, "payload": payload},
            timeout=self.timeout,
        )
        response.raise_for_status()


async def notify_safely(
    notifier: Notifier,
    event_kind: NotificationEvent,
    recipient_id: Optional[int],
    payload: Dict[str, Any],
) -> bool:
    """
    Dispatch a notification off the event loop, swallowing failures.

    Returns:
        True if the notifier accepted the notification
    """
    try:
        await asyncio.to_thread(notifier.notify, event_kind, recipient_id, payload)
        return True
    except Exception as e:
        logger.error(f"Failed to send {event_kind.value} to {recipient_id}: {e}")
        return False
