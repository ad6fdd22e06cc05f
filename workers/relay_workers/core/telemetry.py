"""Tracing and trace-correlated logging for the worker loop.

The worker's outbound traffic (coordinator API, AI completions, embeddings and
the delivery webhook) all goes through httpx, so instrumenting httpx plus the
poll-cycle spans opened in ``main`` is the whole span surface.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from relay_workers.core.config import Settings

PLAIN_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
CORRELATED_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"

_NO_TRACE_ID = "0" * 32
_NO_SPAN_ID = "0" * 16
_httpx_instrumentor = HTTPXClientInstrumentor()

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerTelemetry:
    provider: TracerProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_worker_logging(settings: Settings) -> None:
    if settings.otel_log_correlation:
        _stamp_trace_ids_on_records()
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format=CORRELATED_LOG_FORMAT if settings.otel_log_correlation else PLAIN_LOG_FORMAT,
    )


def setup_worker_telemetry(settings: Settings) -> WorkerTelemetry:
    if not settings.otel_enabled:
        return WorkerTelemetry()

    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: settings.otel_service_name,
                DEPLOYMENT_ENVIRONMENT: settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if endpoint:
        headers = parse_otlp_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=headers or None)))
    else:
        logger.info("no OTLP endpoint configured; worker spans stay in-process")

    trace.set_tracer_provider(provider)
    _httpx_instrumentor.instrument(tracer_provider=provider)
    return WorkerTelemetry(provider=provider)


def shutdown_worker_telemetry(telemetry: WorkerTelemetry) -> None:
    if telemetry.provider is None:
        return
    _httpx_instrumentor.uninstrument()
    telemetry.provider.force_flush()
    telemetry.provider.shutdown()


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2``; entries without ``=`` or a key are dropped."""
    headers: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, separator, value = item.partition("=")
        if separator and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _stamp_trace_ids_on_records() -> None:
    base_factory = logging.getLogRecordFactory()
    if getattr(base_factory, "stamps_trace_ids", False):
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = base_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else _NO_TRACE_ID
        record.span_id = format(context.span_id, "016x") if context.is_valid else _NO_SPAN_ID
        return record

    record_factory.stamps_trace_ids = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(record_factory)
