"""Query document construction.

Every query produced here uses the filtered-query shape: a ``query_string``
over the user's free text (``*`` when empty) and an ``and`` list of filters.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any

from .models import (
    INBOX_TAG,
    SEVERITY_FIELD,
    SIGNATURE_FIELD,
    SOURCE_ADDR_FIELD,
    STARRED_TAG,
    TAGS_FIELD,
    TIMESTAMP_FIELD,
    AggregationMode,
    AggregationRow,
    FilterClause,
    SearchForm,
    View,
)

_LAST_TIMESTAMP_AGG = {"last_timestamp": {"max": {"field": TIMESTAMP_FIELD}}}


def _timestamp_desc() -> list[dict[str, Any]]:
    return [{TIMESTAMP_FIELD: {"order": "desc"}}]


def fixed_filters(view: View) -> list[dict[str, Any]]:
    """Filters that always apply for a view."""
    filters: list[dict[str, Any]] = [{"term": {"event_type": "alert"}}]
    if view is View.INBOX:
        filters.append({"term": {TAGS_FIELD: INBOX_TAG}})
    elif view is View.STARRED:
        filters.append({"term": {TAGS_FIELD: STARRED_TAG}})
    return filters


def _filtered(user_query: str, filters: Iterable[dict[str, Any]]) -> dict[str, Any]:
    return {
        "filtered": {
            "query": {"query_string": {"query": user_query or "*"}},
            "filter": {"and": list(filters)},
        }
    }


def _aggregations(mode: AggregationMode) -> dict[str, Any]:
    if mode is AggregationMode.SIGNATURE_SRC:
        inner = {
            "source_addrs": {
                "terms": {"field": SOURCE_ADDR_FIELD, "size": 0},
                "aggs": copy.deepcopy(_LAST_TIMESTAMP_AGG),
            }
        }
    else:
        inner = copy.deepcopy(_LAST_TIMESTAMP_AGG)
    return {
        "signature": {
            # size 0 asks for every bucket
            "terms": {"field": SIGNATURE_FIELD, "size": 0},
            "aggs": inner,
        }
    }


def search_filters(form: SearchForm, view: View) -> list[dict[str, Any]]:
    """Fixed view filters ANDed with the form's own filter clauses."""
    return fixed_filters(view) + [clause.to_query() for clause in form.filters]


def build_search_query(form: SearchForm, view: View) -> dict[str, Any]:
    """Build the primary search query for a form."""
    query: dict[str, Any] = {
        "query": _filtered(form.user_query, search_filters(form, view)),
        "sort": _timestamp_desc(),
    }

    if form.aggregate_by is AggregationMode.NONE:
        query["size"] = form.page_size
        query["from"] = form.offset
    else:
        query["size"] = 0
        query["aggs"] = _aggregations(form.aggregate_by)
    return query


def build_severity_query(row: AggregationRow) -> dict[str, Any]:
    """Top-1 lookup of the newest document behind a facet row."""
    filters: list[dict[str, Any]] = [
        {"term": {SIGNATURE_FIELD: row.signature}},
        {"range": {TIMESTAMP_FIELD: {"lte": row.last_timestamp}}},
    ]
    if row.src_ip:
        filters.append({"term": {SOURCE_ADDR_FIELD: row.src_ip}})
    return {
        "query": {"filtered": {"filter": {"and": filters}}},
        "size": 1,
        "sort": _timestamp_desc(),
        "fields": [SEVERITY_FIELD],
    }


def build_archive_query(
    user_query: str,
    latest_timestamp: str,
    *,
    size: int,
    filters: Iterable[FilterClause] = (),
) -> dict[str, Any]:
    """Query for archive-by-query: inbox alerts up to the newest visible one.

    The form's own filter clauses are ANDed in, so only what the search
    showed is archived.

    Archiving removes the inbox tag, so every iteration of the same query
    matches fewer documents.
    """
    clauses = [
        {"term": {TAGS_FIELD: INBOX_TAG}},
        {"range": {TIMESTAMP_FIELD: {"lte": latest_timestamp}}},
    ]
    clauses.extend(clause.to_query() for clause in filters)
    return {
        "query": _filtered(user_query, clauses),
        "size": size,
        "fields": ["_index", "_type", "_id"],
        "sort": _timestamp_desc(),
    }


def build_delete_query(form: SearchForm, view: View, latest_timestamp: str) -> dict[str, Any]:
    """Query for the server-side delete-by-query call."""
    filters = search_filters(form, view)
    filters.append({"range": {TIMESTAMP_FIELD: {"lte": latest_timestamp}}})
    return {"query": _filtered(form.user_query, filters)}
