"""Search engine transport.

``SearchClient`` is the boundary the rest of the core depends on; the
Elasticsearch implementation speaks HTTP through ``httpx``.

The wire format is that of Elasticsearch 2.x, matching the ``filtered`` queries
built in ``query_builder``: update scripts are inline Groovy (the cluster needs
``script.inline: true``) and delete-by-query is ``DELETE /{index}/_query``
(the delete-by-query plugin). Servers without the plugin are handled by the
console, which falls back to deleting page by page.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from .config import TriageConfig
from .errors import TransportError
from .models import (
    AggregationResponse,
    BulkResponse,
    DocumentRef,
    HitListResponse,
    ItemOutcome,
)

logger = logging.getLogger(__name__)

_SCRIPT_LANG = "groovy"
_REMOVE_TAG_SCRIPT = "if (ctx._source.tags != null) { ctx._source.tags.removeAll([tag]) }"
_ADD_TAG_SCRIPT = (
    "if (ctx._source.tags == null) { ctx._source.tags = [] }; "
    "if (!ctx._source.tags.contains(tag)) { ctx._source.tags.add(tag) }"
)
# Start of an error body kept on TransportError.
_DETAIL_CHARS = 500


class SearchClient(Protocol):
    """What the console, projector and job runner need from the engine."""

    async def search_hits(self, query: dict[str, Any]) -> HitListResponse: ...

    async def search_aggregations(self, query: dict[str, Any]) -> AggregationResponse: ...

    async def bulk_remove_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse: ...

    async def bulk_add_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse: ...

    async def bulk_delete(self, refs: Sequence[DocumentRef]) -> BulkResponse: ...

    async def delete_by_query(self, query: dict[str, Any]) -> int: ...


def parse_hits(body: dict[str, Any]) -> HitListResponse:
    hits = body.get("hits") or {}
    return HitListResponse(total=int(hits.get("total", 0)), hits=list(hits.get("hits") or []))


def parse_bulk(body: dict[str, Any]) -> BulkResponse:
    """Flatten a ``_bulk`` response into per-item outcomes (request order)."""
    items: list[ItemOutcome] = []
    for raw in body.get("items") or []:
        action, result = next(iter(raw.items()))
        status = int(result.get("status", 0))
        if action == "delete":
            ok = bool(result.get("found"))
        else:
            ok = status == 200
        items.append(ItemOutcome(id=str(result.get("_id", "")), status=status, ok=ok))
    return BulkResponse(errors=bool(body.get("errors")), items=items)


def parse_delete_by_query(body: dict[str, Any]) -> int:
    """Deleted count from a delete-by-query response (``_indices._all``)."""
    indices = body.get("_indices") or {}
    if "_all" in indices:
        return int(indices["_all"].get("deleted", 0))
    return sum(int(stats.get("deleted", 0)) for stats in indices.values())


def _action_meta(ref: DocumentRef) -> dict[str, Any]:
    meta: dict[str, Any] = {"_index": ref.index, "_id": ref.id}
    if ref.doc_type:
        meta["_type"] = ref.doc_type
    return meta


def _ndjson(lines: list[dict[str, Any]]) -> str:
    return "".join(json.dumps(line) + "\n" for line in lines)


class ElasticSearchClient:
    """SearchClient over the Elasticsearch REST API."""

    def __init__(
        self,
        config: TriageConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.url = config.elasticsearch_url
        self._client = client or httpx.AsyncClient(
            base_url=config.elasticsearch_url,
            timeout=config.request_timeout,
        )

    async def __aenter__(self) -> ElasticSearchClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        content: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/x-ndjson"} if content is not None else None
        try:
            resp = await self._client.request(
                method, path, json=json_body, content=content, headers=headers
            )
        except httpx.TransportError as exc:
            logger.error("No response from %s: %s", self.url, exc)
            raise TransportError(0, str(exc), url=self.url) from exc

        if resp.status_code >= 400:
            logger.error("%s %s failed: %s %s", method, path, resp.status_code, resp.reason_phrase)
            raise TransportError(
                resp.status_code,
                resp.reason_phrase,
                url=self.url,
                detail=resp.text[:_DETAIL_CHARS],
            )
        return resp.json()

    async def search(self, query: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/{self.config.index}/_search", json_body=query)

    async def search_hits(self, query: dict[str, Any]) -> HitListResponse:
        return parse_hits(await self.search(query))

    async def search_aggregations(self, query: dict[str, Any]) -> AggregationResponse:
        body = await self.search(query)
        return AggregationResponse(aggregations=body.get("aggregations") or {})

    async def _bulk(self, lines: list[dict[str, Any]]) -> BulkResponse:
        body = await self._request("POST", "/_bulk", content=_ndjson(lines))
        result = parse_bulk(body)
        logger.debug("Bulk request: %s items, errors=%s", result.attempted, result.errors)
        return result

    async def _bulk_script(self, refs: Sequence[DocumentRef], script: str, tag: str) -> BulkResponse:
        lines: list[dict[str, Any]] = []
        for ref in refs:
            lines.append({"update": _action_meta(ref)})
            lines.append(
                {"script": {"inline": script, "lang": _SCRIPT_LANG, "params": {"tag": tag}}}
            )
        return await self._bulk(lines)

    async def bulk_remove_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse:
        return await self._bulk_script(refs, _REMOVE_TAG_SCRIPT, tag)

    async def bulk_add_tag(self, refs: Sequence[DocumentRef], tag: str) -> BulkResponse:
        return await self._bulk_script(refs, _ADD_TAG_SCRIPT, tag)

    async def bulk_delete(self, refs: Sequence[DocumentRef]) -> BulkResponse:
        return await self._bulk([{"delete": _action_meta(ref)} for ref in refs])

    async def delete_by_query(self, query: dict[str, Any]) -> int:
        body = await self._request("DELETE", f"/{self.config.index}/_query", json_body=query)
        return parse_delete_by_query(body)

