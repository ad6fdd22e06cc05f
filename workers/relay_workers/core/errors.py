from __future__ import annotations

import httpx

RETRYABLE_STATUS_CODES = {408, 429}


class WorkerError(Exception):
    """Base class for failures a handler reports back to the job coordinator."""

    error_class = "unexpected"


class TransientError(WorkerError):
    """Network, timeout or rate-limit failure; safe to retry."""

    error_class = "transient"


class DataQualityError(WorkerError):
    """Malformed AI output or an embedding of the wrong dimension."""

    error_class = "data_quality"


class UnsupportedJobError(WorkerError):
    error_class = "unexpected"


class EmbeddingConfigurationError(RuntimeError):
    """The embedding endpoint disagrees with the configured dimension; raised at startup."""


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, WorkerError):
        return exc.error_class
    if isinstance(exc, httpx.TransportError):
        return "transient"
    if isinstance(exc, httpx.HTTPStatusError) and is_retryable_status(exc.response.status_code):
        return "transient"
    return "unexpected"


def error_payload(exc: BaseException) -> dict[str, str]:
    return {
        "error": str(exc) or type(exc).__name__,
        "error_class": classify_error(exc),
        "error_type": type(exc).__name__,
    }
