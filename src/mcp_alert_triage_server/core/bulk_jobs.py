"""Query-driven bulk mutation jobs.

A job repeats ``search -> mutate the returned page -> search again`` with the
same query until the search returns no hits. The loop only ends because every
action registered here makes the documents it touches stop matching the job's
query (archiving removes the tag the query filters on, deleting removes the
document). An action that does not shrink its own result set is caught by the
stall check and the iteration cap instead of looping forever.

Progress: ``processed`` counts items the bulk call *attempted*, which is what
the engine reports back per batch. Items that failed are counted separately in
``failed``; a batch where nothing succeeded stops the job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .errors import JobStalledError, TriageError
from .models import BulkResponse, DocumentRef
from .search_client import SearchClient

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    QUERYING = "querying"
    MUTATING = "mutating"
    DONE = "done"
    FAILED = "failed"


class BulkAction(Protocol):
    """A mutation applied to one page of hits.

    Precondition: applying it must make the mutated documents stop matching
    the job's query.
    """

    async def apply(self, client: SearchClient, refs: Sequence[DocumentRef]) -> BulkResponse: ...


@dataclass(frozen=True, slots=True)
class RemoveTagAction:
    tag: str

    async def apply(self, client: SearchClient, refs: Sequence[DocumentRef]) -> BulkResponse:
        return await client.bulk_remove_tag(refs, self.tag)


@dataclass(frozen=True, slots=True)
class DeleteAction:
    async def apply(self, client: SearchClient, refs: Sequence[DocumentRef]) -> BulkResponse:
        return await client.bulk_delete(refs)


@dataclass(eq=False)
class BulkJob:
    label: str
    query: dict[str, Any]
    action: BulkAction
    processed: int = 0
    failed: int = 0
    total: int | None = None
    iterations: int = 0
    state: JobState = JobState.IDLE
    error: TriageError | None = None
    batch_sizes: list[int] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.state in (JobState.DONE, JobState.FAILED)

    def progress(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "state": self.state.value,
            "processed": self.processed,
            "total": self.total,
            "failed": self.failed,
        }


def _ref(hit: dict[str, Any]) -> DocumentRef:
    return DocumentRef(index=hit.get("_index", ""), doc_type=hit.get("_type"), id=str(hit["_id"]))


ProgressCallback = Callable[[BulkJob], None]
DoneCallback = Callable[[], Any]


class BulkJobRunner:
    """Drives bulk jobs to completion; jobs run concurrently, iterations do not."""

    def __init__(
        self,
        client: SearchClient,
        *,
        max_iterations: int = 10_000,
        on_progress: ProgressCallback | None = None,
        on_all_done: DoneCallback | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.client = client
        self.max_iterations = max_iterations
        self.on_progress = on_progress
        self.on_all_done = on_all_done
        self.active: list[BulkJob] = []

    async def run(self, jobs: Iterable[BulkJob]) -> list[BulkJob]:
        """Run jobs until each is done or failed; returns them in order."""
        jobs = list(jobs)
        self.active.extend(jobs)
        await asyncio.gather(*(self._run_job(job) for job in jobs))
        return jobs

    async def _run_job(self, job: BulkJob) -> None:
        try:
            while True:
                if job.iterations >= self.max_iterations:
                    raise JobStalledError(
                        f"{job.label}: gave up after {job.iterations} iterations"
                    )

                job.state = JobState.QUERYING
                response = await self.client.search_hits(job.query)
                if job.total is None:
                    job.total = response.total
                    self._report(job)

                if not response.hits:
                    job.state = JobState.DONE
                    logger.info("%s: done, processed %s/%s", job.label, job.processed, job.total)
                    break

                job.state = JobState.MUTATING
                job.iterations += 1
                refs = [_ref(hit) for hit in response.hits]
                result = await job.action.apply(self.client, refs)

                job.batch_sizes.append(result.attempted)
                job.processed += result.attempted
                job.failed += result.attempted - result.succeeded
                for item in result.items:
                    if not item.ok:
                        logger.warning("%s: event %s failed with status %s", job.label, item.id, item.status)
                self._report(job)

                if result.succeeded == 0:
                    raise JobStalledError(
                        f"{job.label}: no item in a batch of {len(refs)} was updated"
                    )
        except TriageError as exc:
            job.state = JobState.FAILED
            job.error = exc
            logger.error("%s: stopped: %s", job.label, exc)
        finally:
            await self._finish(job)

    def _report(self, job: BulkJob) -> None:
        logger.debug("%s: %s/%s", job.label, job.processed, job.total)
        if self.on_progress is not None:
            self.on_progress(job)

    async def _finish(self, job: BulkJob) -> None:
        if job in self.active:
            self.active.remove(job)
        if not self.active and self.on_all_done is not None:
            result = self.on_all_done()
            if asyncio.iscoroutine(result):
                await result
