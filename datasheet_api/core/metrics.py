"""
Prometheus metrics for uploads, extractions and distributors.

All counters live on a dedicated ``CollectorRegistry`` so that
test runs and multiple app instances never collide with the
``prometheus_client`` default registry.  Services call the
``record_*`` helpers; the ``/metrics`` route renders
``generate_metrics()``.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, generate_latest

#: Dedicated registry (see module docstring).
REGISTRY = CollectorRegistry()

_FILE_CACHE_LOOKUPS = Counter(
    "datasheet_file_cache_lookups",
    "Uploaded-file cache lookups by result.",
    ["result"],
    registry=REGISTRY,
)

_UPLOADS = Counter(
    "datasheet_uploads",
    "Document uploads to the inference service by outcome.",
    ["outcome"],
    registry=REGISTRY,
)

_EXTRACTION_ATTEMPTS = Counter(
    "datasheet_extraction_attempts",
    "Generation calls issued, including repair retries.",
    ["task"],
    registry=REGISTRY,
)

_EXTRACTIONS = Counter(
    "datasheet_extractions",
    "Finished extractions by outcome.",
    ["task", "outcome"],
    registry=REGISTRY,
)

_TOKEN_ACQUISITIONS = Counter(
    "datasheet_token_acquisitions",
    "Distributor credential acquisitions by outcome.",
    ["distributor", "outcome"],
    registry=REGISTRY,
)

_RATE_LIMIT_RETRIES = Counter(
    "datasheet_rate_limit_retries",
    "Backoff sleeps after a distributor rate-limit or timeout.",
    ["distributor"],
    registry=REGISTRY,
)


def record_cache_hit() -> None:
    """Count a lookup answered by a still-valid cache entry."""
    _FILE_CACHE_LOOKUPS.labels(result="hit").inc()


def record_cache_miss() -> None:
    """Count a lookup that required an upload (or joined one)."""
    _FILE_CACHE_LOOKUPS.labels(result="miss").inc()


def record_upload(*, success: bool) -> None:
    """Count one upload call."""
    _UPLOADS.labels(outcome="success" if success else "failure").inc()


def record_extraction_attempt(task: str) -> None:
    """Count one generation call for *task*."""
    _EXTRACTION_ATTEMPTS.labels(task=task).inc()


def record_extraction(task: str, outcome: str) -> None:
    """Count a finished extraction.

    Args:
        task: Task name.
        outcome: ``success``, ``not_found``, ``invalid`` or ``error``.
    """
    _EXTRACTIONS.labels(task=task, outcome=outcome).inc()


def record_token_acquisition(distributor: str, *, success: bool) -> None:
    """Count one call to a distributor token endpoint."""
    _TOKEN_ACQUISITIONS.labels(
        distributor=distributor,
        outcome="success" if success else "failure",
    ).inc()


def record_rate_limit_retry(distributor: str) -> None:
    """Count one backoff sleep against *distributor*."""
    _RATE_LIMIT_RETRIES.labels(distributor=distributor).inc()


def generate_metrics() -> bytes:
    """Render Prometheus exposition format for all counters.

    Returns:
        UTF-8 bytes ready to be served on ``/metrics``.
    """
    return generate_latest(REGISTRY)
