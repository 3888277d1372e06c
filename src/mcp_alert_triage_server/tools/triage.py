"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into console calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from mcp_alert_triage_server.core.console import TriageConsole, default_form
from mcp_alert_triage_server.core.models import (
    TAGS_FIELD,
    AggregationMode,
    EventRecord,
    FilterClause,
    SearchForm,
    SortField,
    SortOrder,
    View,
)
from mcp_alert_triage_server.core.schemas import (
    AggregationRowOut,
    EventOut,
    FailureOut,
    JobOut,
    NotificationOut,
    SearchResult,
)

from .session import TriageSession, get_session

HARD_PAGE_SIZE = 1000


def _choice(enum_cls, value: str, what: str):
    try:
        return enum_cls(value.strip().lower())
    except ValueError as e:
        valid = ", ".join(repr(m.value) for m in enum_cls)
        raise ValueError(f"Unknown {what} '{value}'. Valid values: {valid}.") from e


def _parse_filters(filters: Sequence[str] | None) -> tuple[FilterClause, ...]:
    """Parse ``field=value`` equality filters and ``tag:name`` membership filters."""
    out: list[FilterClause] = []
    for raw in filters or ():
        s = raw.strip()
        if not s:
            continue
        if s.startswith("tag:"):
            out.append(FilterClause(TAGS_FIELD, s[4:]))
            continue
        field, sep, value = s.partition("=")
        if not sep or not field.strip():
            raise ValueError(
                f"Invalid filter '{raw}'. Use 'field=value' or 'tag:name'."
            )
        out.append(FilterClause(field.strip(), value.strip()))
    return tuple(out)


def build_form(
    session: TriageSession,
    view: View,
    *,
    query: str | None = None,
    aggregate_by: str | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
    filters: Sequence[str] | None = None,
) -> SearchForm:
    overrides: dict[str, Any] = {"user_query": query or ""}
    if aggregate_by is not None:
        overrides["aggregate_by"] = _choice(AggregationMode, aggregate_by, "aggregation")
    if sort_by is not None:
        overrides["sort_by"] = _choice(SortField, sort_by, "sort field")
    if sort_order is not None:
        overrides["sort_order"] = _choice(SortOrder, sort_order, "sort order")
    if page is not None:
        overrides["page"] = page
    if page_size is not None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        overrides["page_size"] = min(page_size, HARD_PAGE_SIZE)
    if filters:
        overrides["filters"] = _parse_filters(filters)
    return default_form(view, session.config, **overrides)


def _result(console: TriageConsole, *, include_source: bool = False) -> dict[str, Any]:
    events = [EventOut.from_record(r, include_source=include_source) for r in console.results.records]
    rows = [AggregationRowOut.from_row(row) for row in console.aggregations]
    result = SearchResult(
        view=console.view.value,
        page=console.form.page,
        total=console.results.total if not rows else sum(r.count for r in rows),
        count=len(rows) if rows else len(events),
        events=events,
        aggregations=rows,
        notifications=[
            NotificationOut.from_notification(n) for n in console.notifications.drain()
        ],
    )
    return result.model_dump(exclude_none=True)


async def _open(session: TriageSession | None, view: str, **form_args: Any) -> TriageConsole:
    session = session or get_session()
    v = _choice(View, view, "view")
    console = session.console(v, build_form(session, v, **form_args))
    await console.search()
    return console


def _pick(console: TriageConsole, ids: Sequence[str]) -> list[EventRecord]:
    wanted = set(ids)
    return [r for r in console.results.records if r.id in wanted]


async def search_alerts_impl(
    *,
    view: str = "inbox",
    query: str | None = None,
    aggregate_by: str | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
    filters: Sequence[str] | None = None,
    include_source: bool = False,
    resolve_severity: bool = True,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Implementation for the `search_alerts` MCP tool.

    Notes
    -----
    - aggregate_by switches the result from a page of events to facet rows.
    - resolve_severity waits for pending severity lookups before returning;
      otherwise rows not yet in the severity cache come back without one.
    """
    console = await _open(
        session,
        view,
        query=query,
        aggregate_by=aggregate_by,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
        filters=filters,
    )
    if resolve_severity:
        await console.wait_for_severities()
    return _result(console, include_source=include_source)


async def archive_events_impl(
    *,
    ids: Sequence[str],
    query: str | None = None,
    page: int | None = None,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Archive the listed events (inbox view only)."""
    console = await _open(session, "inbox", query=query, page=page, aggregate_by="")
    for record in _pick(console, ids):
        record.selected = True
    failures = await console.archive_selected()
    out = _result(console)
    out["failures"] = [FailureOut.from_outcome(f).model_dump() for f in failures]
    return out


async def delete_events_impl(
    *,
    ids: Sequence[str],
    view: str = "inbox",
    query: str | None = None,
    page: int | None = None,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Permanently delete the listed events."""
    console = await _open(session, view, query=query, page=page, aggregate_by="")
    for record in _pick(console, ids):
        record.selected = True
    failures = await console.delete_selected()
    out = _result(console)
    out["failures"] = [FailureOut.from_outcome(f).model_dump() for f in failures]
    return out


async def star_event_impl(
    *,
    id: str,
    view: str = "inbox",
    query: str | None = None,
    page: int | None = None,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Toggle the starred tag on one event of the current page."""
    console = await _open(session, view, query=query, page=page, aggregate_by="")
    matches = _pick(console, [id])
    if not matches:
        raise ValueError(f"Event '{id}' is not on the requested page.")
    starred = await console.toggle_star(matches[0])
    notes = [NotificationOut.from_notification(n).model_dump() for n in console.notifications.drain()]
    return {"id": id, "starred": starred, "notifications": notes}


async def archive_all_matching_impl(
    *,
    query: str | None = None,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Archive every inbox alert matching ``query`` up to the newest one now visible."""
    console = await _open(session, "inbox", query=query, aggregate_by="", page=1)
    job = await console.archive_by_query()
    out = _result(console)
    out["job"] = JobOut.from_job(job).model_dump() if job is not None else None
    return out


async def delete_all_matching_impl(
    *,
    view: str = "inbox",
    query: str | None = None,
    filters: Sequence[str] | None = None,
    session: TriageSession | None = None,
) -> dict[str, Any]:
    """Delete every alert matching the view + query up to the newest one now visible."""
    console = await _open(session, view, query=query, filters=filters, aggregate_by="", page=1)
    deleted = await console.delete_by_query()
    out = _result(console)
    out["deleted"] = deleted
    return out


def list_notifications_impl(*, session: TriageSession | None = None) -> dict[str, Any]:
    """Drain notifications not yet returned by another tool."""
    session = session or get_session()
    notes = session.notifications.drain()
    return {
        "count": len(notes),
        "notifications": [NotificationOut.from_notification(n).model_dump() for n in notes],
    }
