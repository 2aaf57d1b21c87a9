"""
Tests for configuration validation and structured logging.
"""
import json
import logging

import pytest

from sharewizard.core.config import Settings, validate_config
from sharewizard.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    latency_bucket_ms,
    log_event,
    request_id_ctx_var,
)


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    cfg = _settings()
    assert cfg.STORE_BACKEND == "memory"
    assert cfg.CHECKOUT_GATEWAY == "stripe"
    assert cfg.CHECKOUT_TIMEOUT_SECONDS == 30
    assert cfg.REFERRAL_EXPIRY_DAYS == 90
    assert cfg.TRIAL_LENGTH_DAYS == 5


def test_validate_config_warns_on_missing_keys(caplog):
    logger = logging.getLogger("sharewizard.test.config")
    with caplog.at_level(logging.WARNING, logger="sharewizard.test.config"):
        assert validate_config(strict=False, settings_obj=_settings(), logger=logger) is True

    assert "STRIPE_SECRET_KEY" in caplog.text
    assert "STRIPE_PRICE_FLEXY" in caplog.text


def test_validate_config_strict_raises():
    cfg = _settings(STORE_BACKEND="sql", CHECKOUT_GATEWAY="document_store")

    with pytest.raises(RuntimeError) as exc_info:
        validate_config(strict=True, settings_obj=cfg)

    assert "DATABASE_URL" in str(exc_info.value)
    assert "STRIPE_SECRET_KEY" not in str(exc_info.value)


def test_validate_config_passes_when_complete():
    cfg = _settings(
        STRIPE_SECRET_KEY="sk_test",
        STRIPE_PRICE_BASIC_MONTH="price_m",
        STRIPE_PRICE_BASIC_YEAR="price_y",
        STRIPE_PRICE_FLEXY="price_f",
    )
    assert validate_config(strict=True, settings_obj=cfg) is True


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"


def _record(**extra):
    record = logging.LogRecord("sharewizard.test", logging.INFO, __file__, 1, "[usage] CHARGED", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields():
    token = request_id_ctx_var.set("req-42")
    try:
        record = _record(account_id="acct-1", cost=4)
        RequestIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "[usage] CHARGED"
    assert payload["request_id"] == "req-42"
    assert payload["account_id"] == "acct-1"
    assert payload["cost"] == 4


def test_pretty_formatter_appends_fields():
    line = PrettyFormatter().format(_record(request_id="req-1", plan_id="free"))

    assert "[rid=req-1]" in line
    assert "plan_id=free" in line


def test_log_event_truncates_and_correlates(caplog):
    with caplog.at_level(logging.INFO, logger="sharewizard"):
        log_event(
            "warning",
            "[referral] REJECTED",
            request_id="req-9",
            account_id="acct-1",
            error_code="not_found",
            extra={"referral_code": "X" * 600},
        )

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.request_id == "req-9"
    assert record.error_code == "not_found"
    assert record.referral_code.endswith("...<truncated>")
