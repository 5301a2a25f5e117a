"""
Payment Gateway Interface

The engine talks to the payment gateway only through this interface. The
gateway is injected at construction so tests can supply a fake.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pydantic import BaseModel, Field

# The only charge status treated as money collected
SUCCEEDED = "succeeded"


class GatewayError(Exception):
    """A gateway call failed: declined, timed out, or unreachable."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ChargeRequest(BaseModel):
    """Off-session charge against a saved payment method."""
    amount_cents: int = Field(..., gt=0)
    currency: str
    customer_ref: str
    payment_method_ref: str
    destination_account: Optional[str] = None
    application_fee_cents: Optional[int] = Field(default=None, ge=0)
    idempotency_key: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    statement_descriptor_suffix: str = "DAMAGE CLAIM"


class GatewayCharge(BaseModel):
    id: str = Field(..., description="Payment intent id")
    status: str
    amount_cents: int
    charge_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


class GatewayRefund(BaseModel):
    id: str
    amount_cents: int
    status: str


class PaymentGateway(ABC):
    """Blocking gateway client; the engine runs its calls off the event loop."""

    @abstractmethod
    def create_charge(self, request: ChargeRequest) -> GatewayCharge:
        """
        Create and confirm a charge.

        A repeated idempotency key returns the original charge instead of
        charging again.

        Raises:
            GatewayError: On decline, timeout or transport failure
        """

    @abstractmethod
    def lookup_charge(self, idempotency_key: str) -> Optional[GatewayCharge]:
        """The charge created under an idempotency key, if the gateway has one."""

    @abstractmethod
    def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        reason: str,
        metadata: Dict[str, str],
    ) -> GatewayRefund:
        """
        Refund part or all of a charge.

        Raises:
            GatewayError: If the refund could not be created
        """

    @abstractmethod
    def fetch_processing_fee(self, payment_intent_id: str) -> Optional[int]:
        """The fee the gateway actually took, once its balance entry exists."""


class UnconfiguredGateway(PaymentGateway):
    """Stand-in used when no gateway credentials are configured."""

    def create_charge(self, request: ChargeRequest) -> GatewayCharge:
        raise GatewayError("Payment gateway not configured", code="not_configured")

    def lookup_charge(self, idempotency_key: str) -> Optional[GatewayCharge]:
        return None

    def create_refund(self, payment_intent_id, amount_cents, reason, metadata) -> GatewayRefund:
        raise GatewayError("Payment gateway not configured", code="not_configured")

    def fetch_processing_fee(self, payment_intent_id: str) -> Optional[int]:
        return None
