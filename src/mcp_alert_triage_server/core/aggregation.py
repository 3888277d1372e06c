"""Facet flattening, sorting and severity resolution.

A bucketed aggregation response is turned into a flat list of
``AggregationRow`` objects. Rows are usable as soon as they are projected;
severity is filled in afterwards by ``resolve_severities``, which patches each
row in place when its lookup completes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .errors import TransportError
from .models import (
    SEVERITY_FIELD,
    AggregationMode,
    AggregationResponse,
    AggregationRow,
    SortField,
    SortOrder,
)
from .query_builder import build_severity_query
from .search_client import SearchClient

logger = logging.getLogger(__name__)

SeverityCallback = Callable[[AggregationRow], None]


class SeverityCache:
    """Session-wide map of signature -> last known severity.

    Entries are never invalidated. Concurrent lookups for the same key share a
    single in-flight task, so a key is fetched at most once per miss.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self.fetches = 0

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def lookup(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        """Return the in-flight lookup for ``key``, starting one if needed."""
        task = self._inflight.get(key)
        if task is None:
            self.fetches += 1
            task = asyncio.ensure_future(fetch())
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return task


def project_buckets(response: AggregationResponse, mode: AggregationMode) -> list[AggregationRow]:
    """Flatten the bucket tree into one row per leaf bucket."""
    buckets = ((response.aggregations or {}).get("signature") or {}).get("buckets") or []
    rows: list[AggregationRow] = []

    if mode is AggregationMode.SIGNATURE_SRC:
        for signature in buckets:
            for addr in (signature.get("source_addrs") or {}).get("buckets") or []:
                rows.append(
                    AggregationRow(
                        signature=signature["key"],
                        last_timestamp=_metric(addr),
                        count=addr.get("doc_count", 0),
                        src_ip=addr["key"],
                    )
                )
    elif mode is AggregationMode.SIGNATURE:
        for signature in buckets:
            rows.append(
                AggregationRow(
                    signature=signature["key"],
                    last_timestamp=_metric(signature),
                    count=signature.get("doc_count", 0),
                )
            )
    return rows


def _metric(bucket: dict[str, Any]) -> Any:
    return (bucket.get("last_timestamp") or {}).get("value")


def _sort_key(sort_by: SortField) -> Callable[[AggregationRow], Any]:
    # None sorts first so missing values never break the comparison.
    def attr(name: str) -> Callable[[AggregationRow], Any]:
        def key(row: AggregationRow) -> Any:
            value = getattr(row, name)
            return (value is not None, value if value is not None else 0)

        return key

    return {
        SortField.LAST: attr("last_timestamp"),
        SortField.COUNT: attr("count"),
        SortField.MESSAGE: attr("signature"),
        SortField.SRC_IP: attr("src_ip"),
    }[sort_by]


def sort_rows(
    rows: Iterable[AggregationRow], sort_by: SortField, order: SortOrder
) -> list[AggregationRow]:
    """Stable ascending sort; descending is the exact reverse of ascending."""
    out = sorted(rows, key=_sort_key(sort_by))
    if order is SortOrder.DESC:
        out.reverse()
    return out


def project(
    response: AggregationResponse,
    mode: AggregationMode,
    sort_by: SortField,
    order: SortOrder,
) -> list[AggregationRow]:
    return sort_rows(project_buckets(response, mode), sort_by, order)


def _severity_from_hit(hit: dict[str, Any]) -> Any:
    fields = hit.get("fields") or {}
    if SEVERITY_FIELD in fields:
        value = fields[SEVERITY_FIELD]
        return value[0] if isinstance(value, list) else value
    return ((hit.get("_source") or {}).get("alert") or {}).get("severity")


async def _fetch_severity(client: SearchClient, row: AggregationRow, cache: SeverityCache) -> Any:
    response = await client.search_hits(build_severity_query(row))
    if not response.hits:
        logger.debug("No document found for severity of %r", row.signature)
        return None
    severity = _severity_from_hit(response.hits[0])
    cache.set(row.key, severity)
    return severity


def resolve_severities(
    rows: Iterable[AggregationRow],
    *,
    client: SearchClient,
    cache: SeverityCache,
    on_resolved: SeverityCallback | None = None,
) -> list[asyncio.Task[None]]:
    """Fill in row severities from the cache, scheduling lookups for misses.

    Cache hits are applied immediately. Each miss gets a task that patches its
    row when the lookup returns; rows whose lookup finds nothing keep
    ``severity=None`` until the next pass. Must be called from a running loop.
    """
    tasks: list[asyncio.Task[None]] = []

    for row in rows:
        if row.key in cache:
            row.severity = cache.get(row.key)
            continue

        shared = cache.lookup(row.key, lambda row=row: _fetch_severity(client, row, cache))
        tasks.append(asyncio.ensure_future(_patch(row, shared, on_resolved)))

    return tasks


async def _patch(
    row: AggregationRow,
    lookup: asyncio.Task[Any],
    on_resolved: SeverityCallback | None,
) -> None:
    # shield: one row's task being cancelled must not cancel a shared lookup
    try:
        severity = await asyncio.shield(lookup)
    except TransportError:
        logger.warning("Severity lookup failed for %r", row.signature, exc_info=True)
        return
    if severity is None:
        return
    row.severity = severity
    if on_resolved is not None:
        on_resolved(row)
