"""Runtime configuration with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from .models import AggregationMode


@dataclass(frozen=True, slots=True)
class TriageConfig:
    elasticsearch_url: str = "http://localhost:9200"
    index: str = "logstash-*"
    page_size: int = 100
    # Batch size used by archive-by-query; also bounds each job iteration.
    bulk_batch_size: int = 1000
    default_inbox_aggregation: AggregationMode = AggregationMode.NONE
    request_timeout: float = 30.0
    max_job_iterations: int = 10_000


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0")
    return value


def resolve_config(cfg: TriageConfig | None = None) -> TriageConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = TriageConfig()

    overrides: dict[str, object] = {}

    url = os.getenv("ALERT_TRIAGE_ES_URL")
    if url:
        overrides["elasticsearch_url"] = url.rstrip("/")

    index = os.getenv("ALERT_TRIAGE_INDEX")
    if index:
        overrides["index"] = index

    for env_name, attr in (
        ("ALERT_TRIAGE_PAGE_SIZE", "page_size"),
        ("ALERT_TRIAGE_BULK_SIZE", "bulk_batch_size"),
        ("ALERT_TRIAGE_MAX_JOB_ITERATIONS", "max_job_iterations"),
    ):
        value = _env_int(env_name)
        if value is not None:
            overrides[attr] = value

    timeout = _env_float("ALERT_TRIAGE_TIMEOUT")
    if timeout is not None:
        overrides["request_timeout"] = timeout

    agg = os.getenv("ALERT_TRIAGE_INBOX_AGGREGATION")
    if agg is not None:
        try:
            overrides["default_inbox_aggregation"] = AggregationMode(agg.strip().lower())
        except ValueError as exc:
            valid = ", ".join(repr(m.value) for m in AggregationMode)
            raise ValueError(
                f"ALERT_TRIAGE_INBOX_AGGREGATION must be one of: {valid}"
            ) from exc

    if not overrides:
        return cfg
    return replace(cfg, **overrides)
