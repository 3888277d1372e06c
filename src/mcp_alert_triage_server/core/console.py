"""Triage console: search, facet and mutate alerts for one view.

This is the layer presentation code talks to. Core errors are turned into
notifications here: ``ValidationError`` becomes a warning and
``TransportError`` a danger message, and the operation is abandoned.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from .aggregation import SeverityCache, SeverityCallback, project, resolve_severities
from .bulk_jobs import BulkJob, BulkJobRunner, DeleteAction, RemoveTagAction
from .config import TriageConfig
from .errors import TransportError, ValidationError
from .models import (
    INBOX_TAG,
    STARRED_TAG,
    TIMESTAMP_FIELD,
    AggregationMode,
    AggregationRow,
    EventRecord,
    ItemOutcome,
    SearchForm,
    View,
)
from .notifications import NotificationChannel
from .query_builder import build_archive_query, build_delete_query, build_search_query
from .result_set import LoadOutcome, ResultSetController
from .search_client import SearchClient

logger = logging.getLogger(__name__)

# Status codes meaning the server has no delete-by-query endpoint. Without the
# delete-by-query plugin, 2.x answers 400 "No handler found for uri".
_NO_DELETE_BY_QUERY = {404, 405}


def _no_delete_by_query(exc: TransportError) -> bool:
    if exc.status in _NO_DELETE_BY_QUERY:
        return True
    return exc.status == 400 and "no handler found" in exc.detail.lower()


def default_form(view: View, config: TriageConfig, **overrides) -> SearchForm:
    """Form for a freshly opened view (inbox may default to an aggregation)."""
    values: dict = {"page_size": config.page_size}
    if view is View.INBOX:
        values["aggregate_by"] = config.default_inbox_aggregation
    values.update(overrides)
    return SearchForm(**values)


class TriageConsole:
    def __init__(
        self,
        client: SearchClient,
        *,
        config: TriageConfig,
        view: View = View.INBOX,
        form: SearchForm | None = None,
        severity_cache: SeverityCache | None = None,
        notifications: NotificationChannel | None = None,
        on_severity: SeverityCallback | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.view = view
        self.form = form or default_form(view, config)
        self.severity_cache = severity_cache if severity_cache is not None else SeverityCache()
        self.notifications = notifications or NotificationChannel()
        self.on_severity = on_severity
        self.results = ResultSetController()
        self.aggregations: list[AggregationRow] = []
        self.severity_updates: list[asyncio.Task[None]] = []
        self.jobs = BulkJobRunner(
            client,
            max_iterations=config.max_job_iterations,
            on_all_done=self._jobs_done,
        )
        self.loading = False

    @contextmanager
    def _reporting(self) -> Iterator[None]:
        try:
            yield
        except ValidationError as exc:
            self.notifications.warning(str(exc))
        except TransportError as exc:
            self.notifications.danger(exc.user_message())

    # Searching

    async def search(self) -> bool:
        """Run the form's query; returns False when the search failed."""
        self.loading = True
        try:
            with self._reporting():
                await self._search()
                return True
            return False
        finally:
            self.loading = False

    async def _search(self) -> None:
        while True:
            query = build_search_query(self.form, self.view)

            if self.form.aggregate_by is not AggregationMode.NONE:
                response = await self.client.search_aggregations(query)
                self.results.clear()
                self.aggregations = project(
                    response, self.form.aggregate_by, self.form.sort_by, self.form.sort_order
                )
                self.severity_updates = resolve_severities(
                    self.aggregations,
                    client=self.client,
                    cache=self.severity_cache,
                    on_resolved=self.on_severity,
                )
                return

            response = await self.client.search_hits(query)
            self.aggregations = []
            outcome = self.results.load(response, page=self.form.page)
            if outcome is LoadOutcome.RETRY_PREVIOUS_PAGE:
                logger.debug("Page %s is empty, stepping back", self.form.page)
                self.form = replace(self.form, page=self.form.page - 1)
                continue
            return

    async def refresh(self) -> bool:
        return await self.search()

    async def goto_page(self, page: int) -> bool:
        self.form = replace(self.form, page=page)
        return await self.search()

    async def wait_for_severities(self) -> None:
        if self.severity_updates:
            await asyncio.gather(*self.severity_updates)

    async def _refresh_if_empty(self) -> None:
        if len(self.results) == 0:
            await self._search()

    # Single-record actions

    async def archive_event(self, record: EventRecord) -> bool:
        with self._reporting():
            result = await self.client.bulk_remove_tag([record.ref], INBOX_TAG)
            return await self._settle_one(record, result.items)
        return False

    async def delete_event(self, record: EventRecord) -> bool:
        with self._reporting():
            result = await self.client.bulk_delete([record.ref])
            return await self._settle_one(record, result.items)
        return False

    async def _settle_one(self, record: EventRecord, outcomes: list[ItemOutcome]) -> bool:
        if not outcomes:
            logger.warning("Empty bulk response for event %s", record.id)
            return False
        failures = self.results.reconcile_bulk_result([record], outcomes[:1])
        if failures:
            return False
        await self._refresh_if_empty()
        return True

    async def toggle_star(self, record: EventRecord) -> bool:
        """Add or remove the starred tag; returns the new starred state."""
        starred = STARRED_TAG in record.tags
        with self._reporting():
            if starred:
                result = await self.client.bulk_remove_tag([record.ref], STARRED_TAG)
            else:
                result = await self.client.bulk_add_tag([record.ref], STARRED_TAG)
            if result.items and result.items[0].ok:
                if starred:
                    record.tags.remove(STARRED_TAG)
                else:
                    record.tags.append(STARRED_TAG)
                return not starred
        return starred

    # Selection actions

    async def archive_selected(self) -> list[ItemOutcome]:
        """Archive selected records; returns per-item failures."""
        with self._reporting():
            if self.view is not View.INBOX:
                raise ValidationError("Archive not valid in this context")
            targets = self._require_selection()
            result = await self.client.bulk_remove_tag([r.ref for r in targets], INBOX_TAG)
            failures = self.results.reconcile_bulk_result(targets, result.items)
            await self._refresh_if_empty()
            return failures
        return []

    async def delete_selected(self) -> list[ItemOutcome]:
        """Delete selected records; returns per-item failures."""
        with self._reporting():
            targets = self._require_selection()
            result = await self.client.bulk_delete([r.ref for r in targets])
            failures = self.results.reconcile_bulk_result(targets, result.items)
            await self._refresh_if_empty()
            return failures
        return []

    def _require_selection(self) -> list[EventRecord]:
        targets = self.results.selected()
        if not targets:
            raise ValidationError("No events selected.")
        return targets

    # Query-driven actions

    def _newest_visible(self, what: str) -> str:
        newest = self.results.newest_timestamp()
        if self.results.total == 0 or newest is None:
            raise ValidationError(f"No events to {what}.")
        return newest

    async def archive_by_query(self) -> BulkJob | None:
        """Archive everything matching the current query, page by page."""
        with self._reporting():
            if self.view is not View.INBOX:
                raise ValidationError("Archive not valid in this context")
            newest = self._newest_visible("archive")
            query = build_archive_query(
                self.form.user_query,
                newest,
                size=self.config.bulk_batch_size,
                filters=self.form.filters,
            )
            job = BulkJob("Archiving...", query, RemoveTagAction(INBOX_TAG))
            await self.jobs.run([job])
            self._report_job(job)
            return job
        return None

    async def delete_by_query(self) -> int | None:
        """Delete everything matching the current query.

        Uses the server's delete-by-query endpoint; when the server does not
        offer one, falls back to a paginated bulk-delete job.
        """
        with self._reporting():
            newest = self._newest_visible("delete")
            query = build_delete_query(self.form, self.view, newest)
            try:
                deleted = await self.client.delete_by_query(query)
            except TransportError as exc:
                if not _no_delete_by_query(exc):
                    raise
                logger.info("Delete-by-query unavailable (%s), deleting page by page", exc.status)
                return await self._delete_by_pages(query)
            logger.info("Deleted %s events by query", deleted)
            await self._jobs_done()
            return deleted
        return None

    async def _delete_by_pages(self, query: dict) -> int:
        paged = dict(query)
        paged["size"] = self.config.bulk_batch_size
        paged["fields"] = ["_index", "_type", "_id"]
        paged["sort"] = [{TIMESTAMP_FIELD: {"order": "desc"}}]
        job = BulkJob("Deleting...", paged, DeleteAction())
        await self.jobs.run([job])
        self._report_job(job)
        return job.processed - job.failed

    def _report_job(self, job: BulkJob) -> None:
        if job.error is None:
            return
        if isinstance(job.error, TransportError):
            self.notifications.danger(job.error.user_message())
        else:
            self.notifications.danger(str(job.error))

    async def _jobs_done(self) -> None:
        # reload failures become notifications; the caller still reports the job
        self.form = replace(self.form, page=1)
        with self._reporting():
            await self._search()
