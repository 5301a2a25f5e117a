# tests/test_settings.py
import pytest
from pydantic import ValidationError

from damage_claims.config.settings import ClaimLimits, GatewaySettings, SchedulerSettings, Settings


@pytest.mark.parametrize("raw, expected", [("on", True), ("yes", True), ("1", True), ("off", False), ("false", False)])
def test_boolean_spellings(monkeypatch, raw, expected):
    monkeypatch.setenv("CAPTURE_IN_BACKGROUND", raw)
    assert Settings().scheduler.capture_in_background is expected


def test_bad_value_names_the_field(monkeypatch):
    monkeypatch.setenv("CAPTURE_WORKERS", "four")
    with pytest.raises(ValidationError, match="capture_workers"):
        SchedulerSettings()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CLAIM_MIN_AMOUNT_CENTS", "2500")
    monkeypatch.setenv("CLAIM_MAX_PER_BOOKING", "5")
    monkeypatch.setenv("CHEF_RESPONSE_DEADLINE_HOURS", "48")
    monkeypatch.setenv("CLAIM_CURRENCY", "usd")
    monkeypatch.setenv("GATEWAY_FEE_FIXED_CENTS", "25")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example/claims")

    settings = Settings()

    assert settings.limits.min_amount_cents == 2500
    assert settings.limits.max_claims_per_booking == 5
    assert settings.limits.chef_response_deadline_hours == 48
    assert settings.gateway.currency == "usd"
    assert settings.gateway.fee_fixed_cents == 25
    assert settings.notify_webhook_url == "https://hooks.example/claims"


def test_keyword_arguments_still_work():
    limits = ClaimLimits(max_claims_per_booking=1, min_evidence_count=0)
    gateway = GatewaySettings(api_key="sk_test", currency="eur")

    assert limits.max_claims_per_booking == 1
    assert limits.min_evidence_count == 0
    assert gateway.currency == "eur"


def test_min_must_not_exceed_max():
    with pytest.raises(ValidationError):
        ClaimLimits(min_amount_cents=5000, max_amount_cents=1000)
