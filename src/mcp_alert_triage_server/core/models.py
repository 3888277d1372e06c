"""Core data models for alert triage."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TIMESTAMP_FIELD = "@timestamp"
SIGNATURE_FIELD = "alert.signature.raw"
SOURCE_ADDR_FIELD = "src_ip.raw"
SEVERITY_FIELD = "alert.severity"
TAGS_FIELD = "tags"

INBOX_TAG = "inbox"
STARRED_TAG = "starred"


class View(str, Enum):
    """Which slice of alerts the console is looking at."""

    INBOX = "inbox"
    STARRED = "starred"
    ALERTS = "alerts"


class AggregationMode(str, Enum):
    """Facet mode of a search; the empty value means a plain hit list."""

    NONE = ""
    SIGNATURE = "signature"
    SIGNATURE_SRC = "signature+src"


class SortField(str, Enum):
    LAST = "last"
    COUNT = "count"
    MESSAGE = "message"
    SRC_IP = "src_ip"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class FilterClause:
    """Equality test on a single field (tags are matched by membership)."""

    field: str
    value: Any

    def to_query(self) -> dict[str, Any]:
        return {"term": {self.field: self.value}}


@dataclass(frozen=True, slots=True)
class SearchForm:
    """Normalized search-form state. Read-only to the core."""

    user_query: str = ""
    filters: tuple[FilterClause, ...] = ()
    aggregate_by: AggregationMode = AggregationMode.NONE
    sort_by: SortField = SortField.LAST
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    page_size: int = 100

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be > 0")

    @property
    def offset(self) -> int:
        return self.page_size * (self.page - 1)


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """Addressing triple needed by the bulk API."""

    index: str
    doc_type: str | None
    id: str


@dataclass(slots=True, eq=False)
class EventRecord:
    """One matched document plus transient console flags.

    Records compare by identity so that removing one from a result set never
    removes a different record that happens to carry the same payload.
    """

    id: str
    index: str
    doc_type: str | None
    source: dict[str, Any]
    selected: bool = False
    expanded: bool = False

    @property
    def ref(self) -> DocumentRef:
        return DocumentRef(index=self.index, doc_type=self.doc_type, id=self.id)

    @property
    def timestamp(self) -> str | None:
        return self.source.get(TIMESTAMP_FIELD)

    @property
    def tags(self) -> list[str]:
        return self.source.setdefault(TAGS_FIELD, [])


@dataclass(slots=True)
class AggregationRow:
    """One flattened facet row. ``severity`` stays None until resolved."""

    signature: str
    last_timestamp: Any
    count: int
    src_ip: str | None = None
    severity: Any = None

    @property
    def key(self) -> str:
        return self.signature


@dataclass(frozen=True, slots=True)
class HitListResponse:
    total: int
    hits: list[dict[str, Any]]


@dataclass(frozen=True, slots=True)
class AggregationResponse:
    aggregations: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    """Per-document result of a bulk mutation, in request order."""

    id: str
    status: int
    ok: bool


@dataclass(frozen=True, slots=True)
class BulkResponse:
    errors: bool
    items: list[ItemOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.ok)
