# Payment gateway clients
from .base import (
    SUCCEEDED,
    ChargeRequest,
    GatewayCharge,
    GatewayError,
    GatewayRefund,
    PaymentGateway,
    UnconfiguredGateway,
)
from .http_client import HttpPaymentGateway

__all__ = [
    "SUCCEEDED",
    "ChargeRequest",
    "GatewayCharge",
    "GatewayError",
    "GatewayRefund",
    "PaymentGateway",
    "UnconfiguredGateway",
    "HttpPaymentGateway",
]
