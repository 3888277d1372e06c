"""Current page of matched alerts and the state the console keeps on it."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from .models import TAGS_FIELD, TIMESTAMP_FIELD, EventRecord, HitListResponse, ItemOutcome

logger = logging.getLogger(__name__)


class LoadOutcome(str, Enum):
    LOADED = "loaded"
    # Page came back empty past page 1; caller should step back a page.
    RETRY_PREVIOUS_PAGE = "retry_previous_page"


def _normalize_timestamp(value: Any) -> Any:
    """Render a timestamp as ISO-8601 with offset; leave unknown shapes alone."""
    if not isinstance(value, str):
        return value
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return dt.isoformat()


def record_from_hit(hit: dict[str, Any]) -> EventRecord:
    source = dict(hit.get("_source") or {})
    if TIMESTAMP_FIELD in source:
        source[TIMESTAMP_FIELD] = _normalize_timestamp(source[TIMESTAMP_FIELD])
    if source.get(TAGS_FIELD) is None:
        source[TAGS_FIELD] = []
    return EventRecord(
        id=str(hit["_id"]),
        index=hit.get("_index", ""),
        doc_type=hit.get("_type"),
        source=source,
    )


class ResultSetController:
    """Owns the record list, the total count and the active cursor.

    The active index is always a valid position, or -1 when the set is empty.
    """

    def __init__(self) -> None:
        self.records: list[EventRecord] = []
        self.total = 0
        self.active_index = -1

    def __len__(self) -> int:
        return len(self.records)

    @property
    def active(self) -> EventRecord | None:
        if self.active_index < 0:
            return None
        return self.records[self.active_index]

    def load(self, response: HitListResponse, *, page: int = 1) -> LoadOutcome:
        """Replace the result set wholesale with a fresh response."""
        self.records = [record_from_hit(hit) for hit in response.hits]
        self.total = response.total
        self.active_index = 0 if self.records else -1
        if not self.records and page > 1:
            return LoadOutcome.RETRY_PREVIOUS_PAGE
        return LoadOutcome.LOADED

    def clear(self) -> None:
        self.records = []
        self.total = 0
        self.active_index = -1

    def remove(self, record: EventRecord) -> None:
        """Drop one record, keeping the cursor on the same underlying record."""
        active = self.active
        try:
            self.records.remove(record)
        except ValueError:
            return
        self.total = max(0, self.total - 1)

        if active is not None and active is not record:
            self.active_index = self.records.index(active)
        else:
            self.active_index = min(self.active_index, len(self.records) - 1)

    def reconcile_bulk_result(
        self,
        targets: Sequence[EventRecord],
        outcomes: Sequence[ItemOutcome],
    ) -> list[ItemOutcome]:
        """Remove every target whose outcome succeeded; return the failures.

        ``outcomes`` is parallel to ``targets``. Failures stay in the set.
        """
        if len(targets) != len(outcomes):
            logger.warning(
                "Bulk response has %s items for %s targets", len(outcomes), len(targets)
            )
        failures: list[ItemOutcome] = []
        for record, outcome in zip(targets, outcomes):
            if outcome.ok:
                self.remove(record)
            else:
                logger.warning("Failed to update event %s: %s", outcome.id, outcome.status)
                failures.append(outcome)
        return failures

    def selected(self) -> list[EventRecord]:
        return [r for r in self.records if r.selected]

    def select_all(self) -> None:
        for record in self.records:
            record.selected = True

    def deselect_all(self) -> None:
        for record in self.records:
            record.selected = False

    def toggle_expand(self, record: EventRecord) -> None:
        """Toggle one record open; every other record is collapsed."""
        for other in self.records:
            if other is not record:
                other.expanded = False
        record.expanded = not record.expanded

    def toggle_selected(self) -> None:
        if self.active is not None:
            self.active.selected = not self.active.selected

    def move_next(self) -> None:
        if self.active_index + 1 < len(self.records):
            self.active_index += 1

    def move_previous(self) -> None:
        if self.active_index > 0:
            self.active_index -= 1

    def move_first(self) -> None:
        self.active_index = 0 if self.records else -1

    def move_last(self) -> None:
        self.active_index = len(self.records) - 1

    def newest_timestamp(self) -> str | None:
        """Timestamp of the first record (results are sorted newest first)."""
        if not self.records:
            return None
        return self.records[0].timestamp
