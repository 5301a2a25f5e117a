"""
HTTP Payment Gateway Client

Talks to the platform's payments facade with requests. The facade fronts
the card processor and adds two lookups the processor API does not offer
directly: finding a payment intent by the idempotency key it was created
with (GET /payment_intents?idempotency_key=...) and the balance transaction
of an intent (GET /payment_intents/{id}/balance_transaction).

Every call uses the configured request timeout. A timeout, a non-2xx
response or a success body missing required fields surfaces as a
GatewayError.
"""
import logging
from typing import Any, Dict, Optional

import requests

from damage_claims.config.settings import GatewaySettings
from .base import ChargeRequest, GatewayCharge, GatewayError, GatewayRefund, PaymentGateway

logger = logging.getLogger(__name__)


class HttpPaymentGateway(PaymentGateway):
    """requests-based gateway client."""

    def __init__(self, settings: GatewaySettings, session: Optional[requests.Session] = None):
        self.base_url = settings.base_url.rstrip("/")
        self.timeout = settings.timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {settings.api_key}"})

    def create_charge(self, request: ChargeRequest) -> GatewayCharge:
        body: Dict[str, Any] = {
            "amount": request.amount_cents,
            "currency": request.currency,
            "customer": request.customer_ref,
            "payment_method": request.payment_method_ref,
            "off_session": True,
            "confirm": True,
            "metadata": request.metadata,
            "statement_descriptor_suffix": request.statement_descriptor_suffix,
        }
        if request.destination_account:
            body["transfer_data"] = {"destination": request.destination_account}
            if request.application_fee_cents:
                body["application_fee_amount"] = request.application_fee_cents

        data = self._request(
            "POST",
            "/payment_intents",
            json=body,
            headers={"Idempotency-Key": request.idempotency_key},
        )
        return self._to_charge(data)

    def lookup_charge(self, idempotency_key: str) -> Optional[GatewayCharge]:
        data = self._request(
            "GET",
            "/payment_intents",
            params={"idempotency_key": idempotency_key, "limit": 1},
        )
        items = data.get("data") or []
        if not items:
            return None
        return self._to_charge(items[0])

    def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        reason: str,
        metadata: Dict[str, str],
    ) -> GatewayRefund:
        data = self._request(
            "POST",
            "/refunds",
            json={
                "payment_intent": payment_intent_id,
                "amount": amount_cents,
                "reason": reason,
                "reverse_transfer": True,
                "metadata": metadata,
            },
        )
        try:
            return GatewayRefund(id=data["id"], amount_cents=int(data["amount"]), status=data["status"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected refund response for {payment_intent_id}: {data}")
            raise GatewayError(f"Refund response is missing or has invalid fields: {e}", code="invalid_response")

    def fetch_processing_fee(self, payment_intent_id: str) -> Optional[int]:
        data = self._request("GET", f"/payment_intents/{payment_intent_id}/balance_transaction")
        fee = data.get("fee")
        return int(fee) if fee is not None else None

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"Gateway timeout on {method} {path}: {e}")
            raise GatewayError(f"Gateway request timed out: {e}", code="timeout")
        except requests.exceptions.HTTPError as e:
            detail = _error_detail(e.response)
            logger.error(f"Gateway rejected {method} {path}: {detail}")
            raise GatewayError(detail, code=str(e.response.status_code))
        except requests.exceptions.RequestException as e:
            logger.error(f"Gateway request failed on {method} {path}: {e}")
            raise GatewayError(f"Gateway request failed: {e}", code="transport")
        except ValueError as e:
            raise GatewayError(f"Gateway returned invalid JSON: {e}", code="invalid_response")

    @staticmethod
    def _to_charge(data: Dict[str, Any]) -> GatewayCharge:
        try:
            latest = data.get("latest_charge")
            charge_id = latest.get("id") if isinstance(latest, dict) else latest
            return GatewayCharge(
                id=data["id"],
                status=data["status"],
                amount_cents=int(data.get("amount", 0)),
                charge_id=charge_id,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected payment intent response: {data}")
            raise GatewayError(f"Payment intent response is missing or has invalid fields: {e}", code="invalid_response")


def _error_detail(response: Optional[requests.Response]) -> str:
    if response is None:
        return "Gateway error"
    try:
        error = response.json().get("error", {})
        return error.get("message") or f"Gateway error {response.status_code}"
    except ValueError:
        return f"Gateway error {response.status_code}"
