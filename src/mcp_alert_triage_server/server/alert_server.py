"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: search and triage actions against the alert index
- Resources: addressable data blobs (help, effective config, result schema)
- Prompts: reusable triage workflows that clients can invoke

Run locally (stdio):
    python -m mcp_alert_triage_server.server.alert_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from mcp_alert_triage_server.prompts.registry import register_prompts
from mcp_alert_triage_server.resources.registry import register_resources
from mcp_alert_triage_server.tools.triage import (
    archive_all_matching_impl,
    archive_events_impl,
    delete_all_matching_impl,
    delete_events_impl,
    list_notifications_impl,
    search_alerts_impl,
    star_event_impl,
)

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging on stderr; stdout belongs to the stdio transport."""
    level_name = os.getenv("ALERT_TRIAGE_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


mcp = FastMCP("alert-triage", json_response=True)

register_resources(mcp)
register_prompts(mcp)


@mcp.tool()
async def search_alerts(
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
) -> dict[str, Any]:
    """Search alerts in a view, as a page of events or as facet rows.

    Parameters
    ----------
    view:
        inbox (tagged inbox), starred (tagged starred) or alerts (everything).
    query:
        Free-text query string; empty means match everything.
    aggregate_by:
        "" for a page of events, "signature" or "signature+src" for facet rows.
        The inbox view may default to an aggregation (ALERT_TRIAGE_INBOX_AGGREGATION).
    sort_by/sort_order:
        Facet ordering: last|count|message|src_ip, asc|desc (default last, desc).
    page/page_size:
        1-based page and page size for event lists.
    filters:
        Extra filters: "field=value" or "tag:name".
    include_source:
        Include the full document source for each event.
    resolve_severity:
        Wait for facet severity lookups before returning.

    Returns
    -------
    dict:
        {"view", "page", "total", "count", "events", "aggregations", "notifications"}
    """
    return await search_alerts_impl(
        view=view,
        query=query,
        aggregate_by=aggregate_by,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
        filters=filters,
        include_source=include_source,
        resolve_severity=resolve_severity,
    )


@mcp.tool()
async def archive_events(
    ids: list[str],
    query: str | None = None,
    page: int | None = None,
) -> dict[str, Any]:
    """Archive (remove the inbox tag from) events on an inbox page by id."""
    return await archive_events_impl(ids=ids, query=query, page=page)


@mcp.tool()
async def delete_events(
    ids: list[str],
    view: str = "inbox",
    query: str | None = None,
    page: int | None = None,
) -> dict[str, Any]:
    """Permanently delete events on a page by id."""
    return await delete_events_impl(ids=ids, view=view, query=query, page=page)


@mcp.tool()
async def star_event(
    id: str,
    view: str = "inbox",
    query: str | None = None,
    page: int | None = None,
) -> dict[str, Any]:
    """Toggle the starred tag on one event."""
    return await star_event_impl(id=id, view=view, query=query, page=page)


@mcp.tool()
async def archive_all_matching(query: str | None = None) -> dict[str, Any]:
    """Archive every inbox alert matching the query, batch by batch.

    Only alerts no newer than the newest one currently visible are archived, so
    alerts arriving while the job runs stay in the inbox.
    """
    return await archive_all_matching_impl(query=query)


@mcp.tool()
async def delete_all_matching(
    view: str = "inbox",
    query: str | None = None,
    filters: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Permanently delete every alert in the view matching the query."""
    return await delete_all_matching_impl(view=view, query=query, filters=filters)


@mcp.tool()
def list_notifications() -> dict[str, Any]:
    """Return warnings and errors raised by earlier calls and not yet reported."""
    return list_notifications_impl()


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
