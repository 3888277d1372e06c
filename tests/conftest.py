from __future__ import annotations

import copy
import json
from collections.abc import Sequence
from typing import Any

import pytest

from mcp_alert_triage_server.core.config import TriageConfig
from mcp_alert_triage_server.core.errors import TransportError
from mcp_alert_triage_server.core.models import (
    AggregationResponse,
    BulkResponse,
    DocumentRef,
    HitListResponse,
    ItemOutcome,
)


def _get(source: dict[str, Any], field: str) -> Any:
    if field.endswith(".raw"):
        field = field[: -len(".raw")]
    value: Any = source
    for part in field.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class FakeEngine:
    """In-memory stand-in for the search engine (implements SearchClient)."""

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.aggregations: dict[str, Any] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_ids: set[str] = set()
        self.raise_on: dict[str, TransportError] = {}

    def add(
        self,
        id: str,
        *,
        timestamp: str,
        signature: str = "ET POLICY test",
        severity: int = 2,
        src_ip: str = "10.0.0.1",
        tags: list[str] | None = None,
    ) -> None:
        self.docs[id] = {
            "@timestamp": timestamp,
            "event_type": "alert",
            "src_ip": src_ip,
            "alert": {"signature": signature, "severity": severity},
            "tags": ["inbox"] if tags is None else tags,
        }

    def _check(self, name: str) -> None:
        if name in self.raise_on:
            raise self.raise_on[name]

    def _matches(self, source: dict[str, Any], query: dict[str, Any]) -> bool:
        filtered = query.get("query", {}).get("filtered", {})
        text = filtered.get("query", {}).get("query_string", {}).get("query", "*")
        if text != "*" and text not in json.dumps(source):
            return False
        for clause in filtered.get("filter", {}).get("and", []):
            if "term" in clause:
                (field, wanted), = clause["term"].items()
                value = _get(source, field)
                if isinstance(value, list):
                    if wanted not in value:
                        return False
                elif value != wanted:
                    return False
            elif "range" in clause:
                (field, bounds), = clause["range"].items()
                value = _get(source, field)
                if value is None or ("lte" in bounds and value > bounds["lte"]):
                    return False
        return True

    def matching(self, query: dict[str, Any]) -> list[str]:
        ids = [i for i, src in self.docs.items() if self._matches(src, query)]
        return sorted(ids, key=lambda i: self.docs[i]["@timestamp"], reverse=True)

    async def search_hits(self, query: dict[str, Any]) -> HitListResponse:
        self.calls.append(("search", query))
        self._check("search_hits")
        ids = self.matching(query)
        start = query.get("from", 0)
        page = ids[start : start + query.get("size", 10)]
        hits = []
        for i in page:
            hit: dict[str, Any] = {
                "_id": i,
                "_index": "logstash-test",
                "_type": "event",
                "_source": copy.deepcopy(self.docs[i]),
            }
            if "alert.severity" in query.get("fields", []):
                hit["fields"] = {"alert.severity": [self.docs[i]["alert"]["severity"]]}
            hits.append(hit)
        return HitListResponse(total=len(ids), hits=hits)

    async def search_aggregations(self, query: dict[str, Any]) -> AggregationResponse:
        self.calls.append(("aggregate", query))
        self._check("search_aggregations")
        return AggregationResponse(aggregations=copy.deepcopy(self.aggregations))

    def _tag_op(self, refs: Sequence[DocumentRef], tag: str, add: bool) -> BulkResponse:
        items = []
        for ref in refs:
            if ref.id in self.fail_ids or ref.id not in self.docs:
                items.append(ItemOutcome(id=ref.id, status=500, ok=False))
                continue
            tags = self.docs[ref.id].setdefault("tags", [])
            if add and tag not in tags:
                tags.append(tag)
            elif not add and tag in tags:
                tags.remove(tag)
            items.append(ItemOutcome(id=ref.id, status=200, ok=True))
        return BulkResponse(errors=any(not i.ok for i in items), items=items)

    async def bulk_remove_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse:
        self.calls.append(("remove_tag", [r.id for r in refs]))
        self._check("bulk_remove_tag")
        return self._tag_op(refs, tag, add=False)

    async def bulk_add_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse:
        self.calls.append(("add_tag", [r.id for r in refs]))
        self._check("bulk_add_tag")
        return self._tag_op(refs, tag, add=True)

    async def bulk_delete(self, refs: Sequence[DocumentRef]) -> BulkResponse:
        self.calls.append(("delete", [r.id for r in refs]))
        self._check("bulk_delete")
        items = []
        for ref in refs:
            if ref.id in self.fail_ids or self.docs.pop(ref.id, None) is None:
                items.append(ItemOutcome(id=ref.id, status=404, ok=False))
            else:
                items.append(ItemOutcome(id=ref.id, status=200, ok=True))
        return BulkResponse(errors=any(not i.ok for i in items), items=items)

    async def delete_by_query(self, query: dict[str, Any]) -> int:
        self.calls.append(("delete_by_query", query))
        self._check("delete_by_query")
        ids = self.matching(query)
        for i in ids:
            del self.docs[i]
        return len(ids)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def config() -> TriageConfig:
    return TriageConfig(elasticsearch_url="http://es.test:9200", page_size=10, bulk_batch_size=2)


@pytest.fixture
def inbox_engine(engine: FakeEngine) -> FakeEngine:
    """Three inbox alerts, newest first: a3, a2, a1."""
    engine.add("a1", timestamp="2025-12-30T08:00:00+00:00")
    engine.add("a2", timestamp="2025-12-30T09:00:00+00:00", signature="ET SCAN nmap")
    engine.add("a3", timestamp="2025-12-30T10:00:00+00:00")
    return engine
