import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from subsai.batches import BatchJobManager, JobStore
from subsai.client import QUEUED, TranslationClient
from subsai.errors import JobPollError, JobSubmissionError
from subsai.providers import RemoteBatch
from subsai.structures import BatchJob, BatchRequest, JobStatus


def _result_line(custom_id, content, finish_reason="stop"):
    choice = {"message": {"content": content}, "finish_reason": finish_reason}
    return json.dumps({"custom_id": custom_id, "response": {"body": {"choices": [choice]}}})


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "cache.json")


@pytest.fixture
def provider():
    mock = MagicMock()
    mock.create_batch = AsyncMock(return_value=RemoteBatch(id="batch_1", status="validating"))
    mock.retrieve_batch = AsyncMock()
    mock.file_text = AsyncMock()
    return mock


def _completed_store(store):
    store.save(
        [
            BatchJob(
                id="batch_1",
                requests=[
                    BatchRequest(content="1. Hello.", id="11"),
                    BatchRequest(content="1. Goodbye.", id="22"),
                ],
            )
        ]
    )


def test_store_round_trips_jobs(store):
    job = BatchJob(
        id="batch_9",
        status=JobStatus.COMPLETED,
        finished=True,
        requests=[BatchRequest(content="1. Hi", id="1", result="1. Hola")],
    )
    store.save([job])

    assert store.load() == [job]
    assert not store.path.with_name("cache.json.tmp").exists()


def test_missing_store_loads_empty(store):
    assert store.load() == []


def test_enqueue_deduplicates_identical_content(store, provider):
    manager = BatchJobManager(store, provider)

    first = manager.enqueue("1. Hello.", {"model": "m"})
    second = manager.enqueue("1. Hello.", {"model": "m"})

    assert first is second
    assert len(manager.pending) == 1


@pytest.mark.asyncio
async def test_client_reuses_queued_entry(store, provider, make_settings):
    manager = BatchJobManager(store, provider)
    client = TranslationClient(provider=provider, settings=make_settings(), batches=manager)

    assert await client.translate_text("1. Hello.") is QUEUED
    assert await client.translate_text("1. Hello.") is QUEUED
    assert len(manager.pending) == 1
    body = manager.pending[0][1]
    assert body["messages"][1]["content"] == "1. Hello."
    assert body["temperature"] == 0.3


@pytest.mark.asyncio
async def test_submit_persists_job_and_clears_pending(store, provider):
    manager = BatchJobManager(store, provider)
    request = manager.enqueue("1. Hello.", {"model": "m"})

    job = await manager.submit()

    assert job.id == "batch_1"
    assert manager.pending == []
    lines = provider.create_batch.await_args.args[0]
    assert lines == [
        {
            "custom_id": request.id,
            "method": "POST",
            "url": "/v1/chat/completions",
            "body": {"model": "m"},
        }
    ]

    restarted = BatchJobManager(store, provider)
    assert [j.id for j in restarted.pending_jobs()] == ["batch_1"]
    assert restarted.lookup("1. Hello.").result is None


@pytest.mark.asyncio
async def test_submit_without_pending_is_a_noop(store, provider):
    manager = BatchJobManager(store, provider)

    assert await manager.submit() is None
    provider.create_batch.assert_not_awaited()
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_submit_failure_propagates(store, provider):
    provider.create_batch.side_effect = JobSubmissionError("quota")
    manager = BatchJobManager(store, provider)
    manager.enqueue("1. Hello.", {})

    with pytest.raises(JobSubmissionError):
        await manager.submit()
    assert manager.jobs == []


@pytest.mark.asyncio
async def test_poll_completed_job_fills_results_once(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(
        id="batch_1", status="completed", output_file_id="file_out"
    )
    provider.file_text.return_value = "\n".join(
        [_result_line("11", "1. Hola."), _result_line("22", "1. Adiós."), ""]
    )
    manager = BatchJobManager(store, provider)

    await manager.poll()
    await manager.poll()

    job = store.load()[0]
    assert job.finished is True
    assert job.status is JobStatus.COMPLETED
    assert [r.result for r in job.requests] == ["1. Hola.", "1. Adiós."]
    assert provider.retrieve_batch.await_count == 1
    assert manager.pending_jobs() == []


@pytest.mark.asyncio
async def test_poll_matches_by_position_when_ids_are_unknown(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(
        id="batch_1", status="completed", output_file_id="file_out"
    )
    provider.file_text.return_value = "\n".join(
        [_result_line("x", "1. Hola."), _result_line("y", "1. Adiós.")]
    )
    manager = BatchJobManager(store, provider)

    await manager.poll()

    assert manager.lookup("1. Goodbye.").result == "1. Adiós."


@pytest.mark.asyncio
async def test_poll_completed_without_output_drops_job(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(
        id="batch_1", status="completed", error_file_id="file_err"
    )
    provider.file_text.return_value = json.dumps(
        {"custom_id": "11", "response": {"body": {"error": {"message": "bad request"}}}}
    )
    manager = BatchJobManager(store, provider)

    await manager.poll()

    provider.file_text.assert_awaited_once_with("file_err")
    assert store.load() == []


@pytest.mark.asyncio
async def test_poll_failed_job_is_dropped(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(id="batch_1", status="failed")
    manager = BatchJobManager(store, provider)

    await manager.poll()

    assert manager.jobs == []
    assert store.load() == []


@pytest.mark.asyncio
async def test_poll_in_progress_leaves_job_pending(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(id="batch_1", status="in_progress")
    manager = BatchJobManager(store, provider)

    await manager.poll()

    assert [j.id for j in manager.pending_jobs()] == ["batch_1"]
    provider.file_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_poll_error_drops_job_and_is_surfaced(store, provider):
    _completed_store(store)
    provider.retrieve_batch.side_effect = JobPollError("boom")
    manager = BatchJobManager(store, provider)

    with pytest.raises(JobPollError):
        await manager.poll()
    assert store.load() == []


@pytest.mark.asyncio
async def test_discard_removes_request_and_empty_job(store, provider):
    _completed_store(store)
    manager = BatchJobManager(store, provider)

    await manager.discard("1. Hello.")
    assert [r.content for r in store.load()[0].requests] == ["1. Goodbye."]

    await manager.discard("1. Goodbye.")
    assert store.load() == []


@pytest.mark.asyncio
async def test_truncated_result_is_queued_again_with_its_attempt(store, provider):
    _completed_store(store)
    provider.retrieve_batch.return_value = RemoteBatch(
        id="batch_1", status="completed", output_file_id="file_out"
    )
    provider.file_text.return_value = "\n".join(
        [_result_line("11", "1. Hola."), _result_line("22", "1. Adi", finish_reason="length")]
    )
    manager = BatchJobManager(store, provider)

    await manager.poll()

    assert manager.lookup("1. Goodbye.") is None
    assert manager.attempts("1. Goodbye.") == 1
    assert [r.content for r in store.load()[0].requests] == ["1. Hello."]
    assert manager.enqueue("1. Goodbye.", {}).attempts == 1


@pytest.mark.asyncio
async def test_requeue_carries_attempts_into_next_request(store, provider):
    _completed_store(store)
    provider.create_batch.return_value = RemoteBatch(id="batch_2", status="validating")
    manager = BatchJobManager(store, provider)

    await manager.requeue("1. Hello.")
    request = manager.enqueue("1. Hello.", {})
    await manager.submit()

    assert request.attempts == 1
    assert BatchJobManager(store, provider).attempts("1. Hello.") == 1


@pytest.mark.asyncio
async def test_release_keeps_unresolved_requests(store, provider):
    store.save(
        [
            BatchJob(
                id="batch_1",
                finished=True,
                requests=[
                    BatchRequest(content="1. Hello.", id="11", result="1. Hola."),
                    BatchRequest(content="1. Goodbye.", id="22"),
                ],
            )
        ]
    )
    manager = BatchJobManager(store, provider)

    await manager.release(["1. Hello.", "1. Goodbye."])

    assert [r.content for r in store.load()[0].requests] == ["1. Goodbye."]
