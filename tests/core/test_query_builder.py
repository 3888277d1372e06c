from __future__ import annotations

import pytest

from mcp_alert_triage_server.core.models import (
    AggregationMode,
    AggregationRow,
    FilterClause,
    SearchForm,
    View,
)
from mcp_alert_triage_server.core.query_builder import (
    build_archive_query,
    build_delete_query,
    build_search_query,
    build_severity_query,
    fixed_filters,
)


def _filters(query: dict) -> list[dict]:
    return query["query"]["filtered"]["filter"]["and"]


def _depth(aggs: dict) -> int:
    depth = 0
    while aggs:
        terms = [v for v in aggs.values() if "terms" in v]
        if not terms:
            break
        depth += 1
        aggs = terms[0].get("aggs", {})
    return depth


@pytest.mark.parametrize("page,size", [(1, 100), (2, 100), (7, 25)])
def test_paging_offset(page: int, size: int) -> None:
    q = build_search_query(SearchForm(page=page, page_size=size), View.ALERTS)
    assert q["from"] == size * (page - 1)
    assert q["size"] == size
    assert "aggs" not in q
    assert q["sort"] == [{"@timestamp": {"order": "desc"}}]


def test_empty_user_query_matches_all() -> None:
    q = build_search_query(SearchForm(), View.ALERTS)
    assert q["query"]["filtered"]["query"] == {"query_string": {"query": "*"}}


def test_fixed_filters_per_view() -> None:
    assert fixed_filters(View.ALERTS) == [{"term": {"event_type": "alert"}}]
    assert {"term": {"tags": "inbox"}} in fixed_filters(View.INBOX)
    assert {"term": {"tags": "starred"}} in fixed_filters(View.STARRED)


def test_form_filters_are_anded_with_fixed_filters() -> None:
    form = SearchForm(user_query="dns", filters=(FilterClause("src_ip", "10.1.1.1"),))
    q = build_search_query(form, View.INBOX)
    assert _filters(q) == [
        {"term": {"event_type": "alert"}},
        {"term": {"tags": "inbox"}},
        {"term": {"src_ip": "10.1.1.1"}},
    ]
    assert q["query"]["filtered"]["query"]["query_string"]["query"] == "dns"


@pytest.mark.parametrize(
    "mode,depth",
    [(AggregationMode.SIGNATURE, 1), (AggregationMode.SIGNATURE_SRC, 2)],
)
def test_aggregation_nesting_depth(mode: AggregationMode, depth: int) -> None:
    q = build_search_query(SearchForm(aggregate_by=mode, page=3), View.INBOX)
    assert q["size"] == 0
    assert "from" not in q
    assert _depth(q["aggs"]) == depth
    assert q["aggs"]["signature"]["terms"] == {"field": "alert.signature.raw", "size": 0}


def test_two_level_aggregation_has_leaf_metric() -> None:
    q = build_search_query(SearchForm(aggregate_by=AggregationMode.SIGNATURE_SRC), View.INBOX)
    inner = q["aggs"]["signature"]["aggs"]["source_addrs"]
    assert inner["terms"]["field"] == "src_ip.raw"
    assert inner["aggs"]["last_timestamp"] == {"max": {"field": "@timestamp"}}


def test_form_rejects_invalid_paging() -> None:
    with pytest.raises(ValueError):
        SearchForm(page=0)
    with pytest.raises(ValueError):
        SearchForm(page_size=0)


def test_severity_query_scopes_to_source_when_present() -> None:
    row = AggregationRow(signature="ET SCAN", last_timestamp=5, count=1, src_ip="1.2.3.4")
    q = build_severity_query(row)
    assert q["size"] == 1
    assert q["fields"] == ["alert.severity"]
    assert {"term": {"src_ip.raw": "1.2.3.4"}} in _filters(q)
    assert {"range": {"@timestamp": {"lte": 5}}} in _filters(q)

    row.src_ip = None
    assert len(_filters(build_severity_query(row))) == 2


def test_archive_query_bounds_by_newest_visible() -> None:
    q = build_archive_query("", "2025-12-30T10:00:00+00:00", size=1000)
    assert q["size"] == 1000
    assert _filters(q) == [
        {"term": {"tags": "inbox"}},
        {"range": {"@timestamp": {"lte": "2025-12-30T10:00:00+00:00"}}},
    ]


def test_delete_query_uses_view_filters_plus_bound() -> None:
    q = build_delete_query(SearchForm(user_query="x"), View.STARRED, "2025-01-01T00:00:00Z")
    assert "size" not in q
    assert _filters(q)[-1] == {"range": {"@timestamp": {"lte": "2025-01-01T00:00:00Z"}}}
    assert {"term": {"tags": "starred"}} in _filters(q)


def test_archive_query_ands_form_filters() -> None:
    q = build_archive_query(
        "dns", "2025-12-30T10:00:00+00:00", size=10, filters=(FilterClause("src_ip", "10.0.0.1"),)
    )
    assert _filters(q)[0] == {"term": {"tags": "inbox"}}
    assert _filters(q)[-1] == {"term": {"src_ip": "10.0.0.1"}}
    assert q["query"]["filtered"]["query"]["query_string"]["query"] == "dns"
