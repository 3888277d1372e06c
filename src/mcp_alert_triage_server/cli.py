from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from mcp_alert_triage_server.core.config import resolve_config
from mcp_alert_triage_server.core.console import TriageConsole
from mcp_alert_triage_server.core.models import View
from mcp_alert_triage_server.core.search_client import ElasticSearchClient
from mcp_alert_triage_server.resources.registry import read_saved_query
from mcp_alert_triage_server.tools.session import TriageSession
from mcp_alert_triage_server.tools.triage import build_form


def _parse_view(s: str) -> View:
    try:
        return View(s.strip().lower())
    except ValueError as e:
        raise argparse.ArgumentTypeError("Invalid view. Allowed: inbox, starred, alerts") from e


def _add_query_args(p: argparse.ArgumentParser, *, with_view: bool = True) -> None:
    if with_view:
        p.add_argument("--view", type=_parse_view, default=View.INBOX)
    p.add_argument("-q", "--query", default=None, help="Free-text query (default: match all)")
    p.add_argument(
        "--filter",
        dest="filters",
        action="append",
        default=None,
        help="Extra filter, 'field=value' or 'tag:name' (repeatable)",
    )
    p.add_argument("--query-file", default=None, help="Saved query JSON (keys: query, filters, aggregate_by)")


def _print_console(console: TriageConsole) -> None:
    if console.aggregations:
        for row in console.aggregations:
            src = f" {row.src_ip}" if row.src_ip else ""
            sev = row.severity if row.severity is not None else "-"
            print(f"{row.count:>7} sev={sev} {row.last_timestamp}{src} {row.signature}")
        print(f"\n{len(console.aggregations)} facet rows.")
    else:
        for r in console.results.records:
            alert = r.source.get("alert") or {}
            print(f"{r.id} {r.timestamp or '-'} {r.source.get('src_ip', '-')} {alert.get('signature', '')}")
        print(f"\nShowing {len(console.results)} of {console.results.total} events (page {console.form.page}).")

    for note in console.notifications.drain():
        print(f"[{note.level.value}] {note.message}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    config = resolve_config()
    saved: dict[str, Any] = {}
    if args.query_file:
        saved = await read_saved_query(Path(args.query_file))

    async with ElasticSearchClient(config) as client:
        session = TriageSession(config=config, client=client)
        form_args: dict[str, Any] = {
            "query": args.query if args.query is not None else saved.get("query"),
            "filters": args.filters or saved.get("filters"),
        }
        if args.command == "search":
            form_args.update(
                aggregate_by=args.aggregate_by if args.aggregate_by is not None else saved.get("aggregate_by"),
                sort_by=args.sort_by,
                sort_order=args.order,
                page=args.page,
            )
        else:
            form_args["aggregate_by"] = ""

        console = session.console(args.view, build_form(session, args.view, **form_args))
        ok = await console.search()

        if ok and args.command == "search":
            await console.wait_for_severities()
        elif ok and args.command == "archive-all":
            job = await console.archive_by_query()
            if job is not None:
                print(f"{job.label} processed {job.processed}/{job.total} ({job.failed} failed)")
        elif ok and args.command == "delete-all":
            deleted = await console.delete_by_query()
            if deleted is not None:
                print(f"Deleted {deleted} events.")

        _print_console(console)
        return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Alert triage against an Elasticsearch event index.")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("search", help="Search a view (events or facets)")
    _add_query_args(sp)
    sp.add_argument("--aggregate-by", choices=["", "signature", "signature+src"], default=None)
    sp.add_argument("--sort-by", choices=["last", "count", "message", "src_ip"], default=None)
    sp.add_argument("--order", choices=["asc", "desc"], default=None)
    sp.add_argument("--page", type=int, default=None)

    ap = sub.add_parser("archive-all", help="Archive every inbox alert matching the query")
    _add_query_args(ap, with_view=False)
    # archiving only exists in the inbox
    ap.set_defaults(view=View.INBOX)

    dp = sub.add_parser("delete-all", help="Delete every alert matching the view and query")
    _add_query_args(dp)
    return p


def main() -> None:
    args = build_parser().parse_args()

    try:
        code = asyncio.run(_run(args))
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
