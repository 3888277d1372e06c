"""JSON-facing result models returned by the tools and published as schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from .bulk_jobs import BulkJob
from .models import AggregationRow, EventRecord, ItemOutcome
from .notifications import Notification


class EventOut(BaseModel):
    id: str = Field(description="Document id.")
    index: str = Field(description="Index the document lives in.")
    timestamp: str | None = Field(default=None, description="ISO-8601 event time.")
    signature: str | None = Field(default=None, description="Alert signature.")
    severity: Any = Field(default=None, description="Alert severity.")
    src_ip: str | None = None
    dest_ip: str | None = None
    tags: list[str] = Field(default_factory=list)
    source: dict[str, Any] | None = Field(
        default=None, description="Full document source (only when requested)."
    )

    @classmethod
    def from_record(cls, record: EventRecord, *, include_source: bool = False) -> EventOut:
        alert = record.source.get("alert") or {}
        return cls(
            id=record.id,
            index=record.index,
            timestamp=record.timestamp,
            signature=alert.get("signature"),
            severity=alert.get("severity"),
            src_ip=record.source.get("src_ip"),
            dest_ip=record.source.get("dest_ip"),
            tags=list(record.tags),
            source=record.source if include_source else None,
        )


class AggregationRowOut(BaseModel):
    signature: str
    src_ip: str | None = None
    count: int = Field(ge=0)
    last_timestamp: Any = Field(description="Newest event time in the bucket.")
    severity: Any = Field(default=None, description="Null until resolved.")

    @classmethod
    def from_row(cls, row: AggregationRow) -> AggregationRowOut:
        return cls(
            signature=row.signature,
            src_ip=row.src_ip,
            count=row.count,
            last_timestamp=row.last_timestamp,
            severity=row.severity,
        )


class NotificationOut(BaseModel):
    level: Literal["warning", "danger"]
    message: str

    @classmethod
    def from_notification(cls, note: Notification) -> NotificationOut:
        return cls(level=note.level.value, message=note.message)


class FailureOut(BaseModel):
    id: str
    status: int

    @classmethod
    def from_outcome(cls, outcome: ItemOutcome) -> FailureOut:
        return cls(id=outcome.id, status=outcome.status)


class JobOut(BaseModel):
    label: str
    state: Literal["idle", "querying", "mutating", "done", "failed"]
    processed: int = Field(ge=0, description="Items the bulk calls attempted.")
    total: int | None = Field(default=None, description="Matches when the job started.")
    failed: int = Field(ge=0)
    error: str | None = None

    @classmethod
    def from_job(cls, job: BulkJob) -> JobOut:
        return cls(**job.progress(), error=str(job.error) if job.error else None)


class SearchResult(BaseModel):
    view: str
    page: int = Field(ge=1)
    total: int = Field(ge=0)
    count: int = Field(ge=0)
    events: list[EventOut] = Field(default_factory=list)
    aggregations: list[AggregationRowOut] = Field(default_factory=list)
    notifications: list[NotificationOut] = Field(default_factory=list)
