# Claim lifecycle, evidence, capture and refund services
from .capture import PaymentCaptureEngine, idempotency_key
from .evidence import EvidenceService
from .fees import application_fee, break_even_fee
from .lifecycle import ClaimLifecycleService
from .payment_methods import (
    DEFAULT_RESOLVERS,
    BookingResolver,
    ClaimSnapshotResolver,
    LinkedStorageResolver,
    PaymentMethodResolver,
    ResolvedPaymentMethod,
    resolve_payment_method,
)
from .refunds import RefundEngine

__all__ = [
    "PaymentCaptureEngine",
    "idempotency_key",
    "EvidenceService",
    "application_fee",
    "break_even_fee",
    "ClaimLifecycleService",
    "DEFAULT_RESOLVERS",
    "BookingResolver",
    "ClaimSnapshotResolver",
    "LinkedStorageResolver",
    "PaymentMethodResolver",
    "ResolvedPaymentMethod",
    "resolve_payment_method",
    "RefundEngine",
]
