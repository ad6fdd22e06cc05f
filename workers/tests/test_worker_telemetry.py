from __future__ import annotations

import logging

import pytest

from relay_workers.core import telemetry
from relay_workers.core.config import Settings


@pytest.fixture
def restore_record_factory():
    original = logging.getLogRecordFactory()
    yield
    logging.setLogRecordFactory(original)


def _record() -> logging.LogRecord:
    return logging.getLogRecordFactory()("relay", logging.INFO, __file__, 1, "claimed job", (), None)


def test_parse_otlp_headers_drops_malformed_entries() -> None:
    parsed = telemetry.parse_otlp_headers("authorization=Bearer abc, x-team = relay ,broken,=orphan")

    assert parsed == {"authorization": "Bearer abc", "x-team": "relay"}
    assert telemetry.parse_otlp_headers(None) == {}


def test_disabled_telemetry_has_no_provider() -> None:
    runtime = telemetry.setup_worker_telemetry(Settings(otel_enabled=False))

    assert runtime.enabled is False
    telemetry.shutdown_worker_telemetry(runtime)


def test_log_records_carry_empty_trace_ids_outside_spans(restore_record_factory: None) -> None:
    telemetry.configure_worker_logging(Settings(otel_log_correlation=True))
    installed = logging.getLogRecordFactory()
    telemetry.configure_worker_logging(Settings(otel_log_correlation=True))

    record = _record()

    assert logging.getLogRecordFactory() is installed
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_log_correlation_can_be_switched_off(restore_record_factory: None) -> None:
    def plain_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        return logging.LogRecord(*args, **kwargs)  # type: ignore[arg-type]

    logging.setLogRecordFactory(plain_factory)
    telemetry.configure_worker_logging(Settings(otel_log_correlation=False))

    assert logging.getLogRecordFactory() is plain_factory
