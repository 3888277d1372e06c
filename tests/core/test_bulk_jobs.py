from __future__ import annotations

import math

import pytest

from mcp_alert_triage_server.core.bulk_jobs import (
    BulkJob,
    BulkJobRunner,
    DeleteAction,
    JobState,
    RemoveTagAction,
)
from mcp_alert_triage_server.core.errors import JobStalledError, TransportError
from mcp_alert_triage_server.core.query_builder import build_archive_query

NEWEST = "2025-12-31T00:00:00+00:00"


def _fill(engine, n: int) -> None:
    for i in range(n):
        engine.add(f"d{i:03}", timestamp=f"2025-12-30T{i % 24:02}:{i // 24:02}:00+00:00")


def _archive_job(size: int) -> BulkJob:
    return BulkJob("Archiving...", build_archive_query("", NEWEST, size=size), RemoveTagAction("inbox"))


@pytest.mark.asyncio
async def test_archive_three_documents_in_batches_of_two(engine) -> None:
    _fill(engine, 3)
    seen: list[int] = []
    done: list[bool] = []
    runner = BulkJobRunner(
        engine,
        on_progress=lambda job: seen.append(job.processed),
        on_all_done=lambda: done.append(True),
    )
    job = _archive_job(2)

    await runner.run([job])

    assert [len(ids) for name, ids in engine.calls if name == "remove_tag"] == [2, 1]
    assert seen == [0, 2, 3]
    assert job.state is JobState.DONE
    assert job.total == 3
    assert job.processed == 3
    assert done == [True]
    assert runner.active == []
    assert all("inbox" not in d["tags"] for d in engine.docs.values())


@pytest.mark.parametrize("total,batch", [(1, 1), (10, 3), (25, 5), (7, 10)])
@pytest.mark.asyncio
async def test_terminates_in_ceil_total_over_batch_iterations(engine, total: int, batch: int) -> None:
    _fill(engine, total)
    job = _archive_job(batch)

    await BulkJobRunner(engine).run([job])

    assert job.iterations == math.ceil(total / batch)
    assert job.processed == total
    assert job.batch_sizes[:-1] == [batch] * (len(job.batch_sizes) - 1)


@pytest.mark.asyncio
async def test_query_and_mutate_strictly_alternate(engine) -> None:
    _fill(engine, 5)
    await BulkJobRunner(engine).run([_archive_job(2)])
    assert engine.call_names() == [
        "search", "remove_tag", "search", "remove_tag", "search", "remove_tag", "search"
    ]


@pytest.mark.asyncio
async def test_same_query_is_reissued_every_iteration(engine) -> None:
    _fill(engine, 4)
    job = _archive_job(2)
    await BulkJobRunner(engine).run([job])
    queries = [q for name, q in engine.calls if name == "search"]
    assert all(q == job.query for q in queries)
    assert all("from" not in q for q in queries)


@pytest.mark.asyncio
async def test_empty_result_is_done_without_mutating(engine) -> None:
    job = _archive_job(10)
    await BulkJobRunner(engine).run([job])
    assert job.state is JobState.DONE
    assert job.total == 0
    assert engine.call_names() == ["search"]


@pytest.mark.asyncio
async def test_action_that_does_not_shrink_hits_iteration_cap(engine) -> None:
    _fill(engine, 3)
    # removing "starred" never takes a document out of the inbox query
    job = BulkJob("noop", build_archive_query("", NEWEST, size=10), RemoveTagAction("starred"))
    done: list[bool] = []

    await BulkJobRunner(engine, max_iterations=4, on_all_done=lambda: done.append(True)).run([job])

    assert job.state is JobState.FAILED
    assert isinstance(job.error, JobStalledError)
    assert job.iterations == 4
    assert done == [True]


@pytest.mark.asyncio
async def test_batch_with_no_successes_stops_the_job(engine) -> None:
    _fill(engine, 3)
    engine.fail_ids = set(engine.docs)
    job = _archive_job(10)

    await BulkJobRunner(engine).run([job])

    assert job.state is JobState.FAILED
    assert isinstance(job.error, JobStalledError)
    assert job.processed == 3
    assert job.failed == 3
    assert job.iterations == 1


@pytest.mark.asyncio
async def test_partial_failures_count_as_attempted(engine) -> None:
    _fill(engine, 4)
    job = _archive_job(4)
    engine.fail_ids = {"d001"}

    # the failing document keeps matching, so the job stalls on it alone
    await BulkJobRunner(engine).run([job])

    assert job.processed == 5
    assert job.failed == 2
    assert job.batch_sizes == [4, 1]
    assert isinstance(job.error, JobStalledError)


@pytest.mark.asyncio
async def test_transport_error_is_fatal_to_that_job_only(engine) -> None:
    _fill(engine, 2)
    engine.add("s1", timestamp="2025-12-30T05:00:00+00:00", tags=["starred"])
    engine.raise_on["bulk_remove_tag"] = TransportError(503, "Service Unavailable", url="http://es")

    starred_query = build_archive_query("", NEWEST, size=10)
    starred_query["query"]["filtered"]["filter"]["and"][0] = {"term": {"tags": "starred"}}
    archive = _archive_job(10)
    delete = BulkJob("Deleting...", starred_query, DeleteAction())
    done: list[bool] = []

    await BulkJobRunner(engine, on_all_done=lambda: done.append(True)).run([archive, delete])

    assert archive.state is JobState.FAILED
    assert isinstance(archive.error, TransportError)
    assert archive.error.status == 503
    assert delete.state is JobState.DONE
    assert "s1" not in engine.docs
    assert done == [True]


@pytest.mark.asyncio
async def test_async_done_callback_is_awaited(engine) -> None:
    calls: list[str] = []

    async def refresh() -> None:
        calls.append("refresh")

    await BulkJobRunner(engine, on_all_done=refresh).run([_archive_job(5)])
    assert calls == ["refresh"]


def test_runner_rejects_zero_iteration_cap(engine) -> None:
    with pytest.raises(ValueError):
        BulkJobRunner(engine, max_iterations=0)
