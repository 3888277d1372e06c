"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

import aiofiles
from mcp.server.fastmcp import FastMCP

from mcp_alert_triage_server.core.config import resolve_config
from mcp_alert_triage_server.core.schemas import SearchResult

ALLOWED_FILE_SUFFIXES = {".json"}
BASE_DIR_ENV = "ALERT_TRIAGE_BASE_DIR"
TEXT_ENCODING = "utf-8"


def _base_dir() -> Path:
    """Return the resolved base directory for file resources."""
    raw = os.getenv(BASE_DIR_ENV, os.getcwd())
    return Path(raw).resolve()


def _safe_resolve(path: str) -> Path:
    """Resolve a path under the configured base directory."""
    base = _base_dir()
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    if base not in p.parents and p != base:
        raise ValueError("Path escapes base dir")
    return p


def resolve_query_path(path: str) -> Path:
    """Resolve and validate a saved-query file path."""
    resolved = _safe_resolve(path)
    if not resolved.is_file():
        raise FileNotFoundError(f"File not found: {resolved}")
    if resolved.suffix.lower() not in ALLOWED_FILE_SUFFIXES:
        allowed = ", ".join(sorted(ALLOWED_FILE_SUFFIXES))
        raise ValueError(f"File type not allowed. Allowed: {allowed}.")
    return resolved


async def read_saved_query(path: Path) -> dict[str, Any]:
    """Load a saved query document (JSON object)."""
    async with aiofiles.open(path, encoding=TEXT_ENCODING) as f:
        data = json.loads(await f.read())
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: saved query must be a JSON object")
    return data


def effective_config() -> dict[str, Any]:
    cfg = asdict(resolve_config())
    cfg["default_inbox_aggregation"] = cfg["default_inbox_aggregation"].value
    return cfg


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://alert-triage/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        base = _base_dir()
        return (
            "Resources:\n"
            "- app://alert-triage/help\n"
            "- app://alert-triage/config\n"
            "- app://alert-triage/schemas/search-result\n"
            f"- file://{{path}} (saved queries under {BASE_DIR_ENV}; .json only)\n"
            "\nViews: inbox, starred, alerts\n"
            "Aggregations: '' (none), signature, signature+src\n"
            f"\nBase directory: {base}\n"
        )

    @mcp.resource("app://alert-triage/config")
    def config_resource() -> dict[str, Any]:
        """Return the effective configuration (defaults plus env overrides)."""
        return effective_config()

    @mcp.resource("app://alert-triage/schemas/search-result")
    def search_result_schema() -> dict[str, Any]:
        """Return the JSON schema of search tool results."""
        return SearchResult.model_json_schema()

    @mcp.resource("file://{path}")
    async def read_file(path: str) -> dict[str, Any]:
        """Read a saved query document from within ALERT_TRIAGE_BASE_DIR."""
        return await read_saved_query(resolve_query_path(path))
