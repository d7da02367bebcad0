"""
Tests for request-id stamping, formatters and log_event.
"""
import json
import logging

from loqui.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    configure_logging,
    log_event,
    request_id_ctx_var,
)


def _record(**fields):
    base = {"name": "loqui", "levelname": "INFO", "levelno": logging.INFO, "msg": "ratelimit.alert"}
    base.update(fields)
    return logging.makeLogRecord(base)


def test_filter_stamps_request_id_from_context():
    record = _record()
    token = request_id_ctx_var.set("rid-42")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)

    assert record.request_id == "rid-42"


def test_filter_keeps_explicit_request_id():
    record = _record(request_id="given")
    RequestIdFilter().filter(record)
    assert record.request_id == "given"


def test_json_formatter_flattens_fields():
    record = _record(request_id="rid-1", tenant_id="tenant-1", limiter="analysis", error_code=None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "ratelimit.alert"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "rid-1"
    assert payload["tenant_id"] == "tenant-1"
    assert payload["limiter"] == "analysis"
    assert "error_code" not in payload
    assert payload["timestamp"].endswith("Z")


def test_pretty_formatter_is_one_line():
    line = PrettyFormatter().format(_record(request_id="rid-1", status=429))

    assert "\n" not in line
    assert "ratelimit.alert" in line
    assert "rid=rid-1" in line
    assert "status=429" in line


def test_log_event_emits_structured_fields(caplog):
    with caplog.at_level(logging.WARNING, logger="loqui"):
        log_event("warning", "[enforcement] BLOCK", tenant_id="tenant-1", event_type="plan_limit", used=5)

    [record] = caplog.records
    assert record.levelno == logging.WARNING
    assert record.tenant_id == "tenant-1"
    assert record.event_type == "plan_limit"
    assert record.used == 5
    assert not hasattr(record, "error_code")


def test_configure_logging_replaces_handlers():
    configure_logging("production")
    logger = configure_logging("production")

    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)
    assert isinstance(configure_logging("development").handlers[0].formatter, PrettyFormatter)
