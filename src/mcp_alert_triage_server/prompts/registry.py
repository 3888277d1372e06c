"""MCP prompt registry.

Prompts are predefined conversation/workflow templates that the client can invoke explicitly.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP


def triage_inbox_messages(
    query: str = "",
    aggregate_by: str = "signature",
    archive_noise: bool = False,
) -> list[dict[str, Any]]:
    """Build the inbox triage workflow prompt."""
    call_lines = [
        "- view: inbox",
        f"- query: {query or '(empty, match everything)'}",
        f"- aggregate_by: {aggregate_by}",
        "- sort_by: count",
        "- sort_order: desc",
    ]
    call_block = "\n".join(call_lines)
    if archive_noise:
        archive_rule = (
            "- For signatures you judge to be noise, call archive_all_matching with a "
            "query that selects only that signature (e.g., alert.signature:\"...\"). "
            "Never archive a signature you rated high severity.\n"
        )
    else:
        archive_rule = "- Do not archive or delete anything; only recommend actions.\n"
    return [
        {
            "role": "system",
            "content": (
                "You are a SOC analyst triaging IDS alerts. Be concise and evidence-based. "
                "Do not invent alerts; if the data is insufficient, say so."
            ),
        },
        {
            "role": "user",
            "content": (
                "Triage the alert inbox using search_alerts. Follow this workflow:\n"
                "- Call search_alerts first with the parameters below.\n"
                "- Group the facet rows into: likely incident, needs review, noise.\n"
                "- For 'likely incident' rows, call search_alerts again with "
                "aggregate_by=\"\" and a query for that signature to inspect events.\n"
                f"{archive_rule}"
                "- Report any notifications returned by the tools.\n\n"
                "Call search_alerts with:\n"
                f"{call_block}\n\n"
                "Return this structure:\n"
                "1) Likely incidents (signature, source, count, severity)\n"
                "2) Needs review (bullets)\n"
                "3) Noise (bullets)\n"
                "4) Next actions (2-4 bullets)\n"
            ),
        },
    ]


def register_prompts(mcp: FastMCP) -> None:
    """Register prompt templates on the MCP server."""

    @mcp.prompt()
    def triage_inbox(
        query: str = "",
        aggregate_by: str = "signature",
        archive_noise: bool = False,
    ) -> list[dict[str, Any]]:
        """Build a prompt for a facet-first inbox triage pass."""
        return triage_inbox_messages(query, aggregate_by, archive_noise)
