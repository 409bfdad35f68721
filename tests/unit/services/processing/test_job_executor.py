"""Tests for the job executor state machine."""

import json
from unittest.mock import AsyncMock

import pytest

from conftest import FakePage, FakeSessionFactory
from harvester.errors import AuthenticationError, PayloadError
from harvester.services.processing.job_executor import JobExecutor, JobState
from harvester.signing import SigningKeys

KEYS = SigningKeys(current="current-key", next="next-key")
URL = "https://rink.org/"


def job_body(**overrides) -> bytes:
    payload = {"batchId": "batch-1", "url": URL, "settings": {"mode": "gentle"}}
    payload.update(overrides)
    return json.dumps(payload).encode()


@pytest.fixture
def store():
    store = AsyncMock()
    store.insert_result.return_value = 1
    return store


@pytest.fixture
def sessions():
    return FakeSessionFactory(
        FakePage(pages={URL: "<p>Coach: coach@rink.org</p>"})
    )


@pytest.fixture
def executor(store, sessions):
    return JobExecutor(KEYS, store, session_factory=sessions, budget_seconds=5)


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_without_a_session(executor, store, sessions):
    outcome = await executor.execute(job_body(), "deadbeef")

    assert outcome.state is JobState.REJECTED
    assert sessions.configs == []
    assert sessions.opened == 0
    store.insert_result.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("signature", ["caf\u00e9", "\ufffd" * 64, 42])
async def test_garbled_signature_is_rejected(executor, sessions, signature):
    outcome = await executor.execute(job_body(), signature)

    assert outcome.state is JobState.REJECTED
    assert sessions.opened == 0


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(executor, sessions):
    outcome = await executor.execute(job_body(), None)

    assert outcome.state is JobState.REJECTED
    assert sessions.opened == 0


@pytest.mark.asyncio
async def test_signature_checked_before_parsing(executor):
    with pytest.raises(AuthenticationError):
        executor.admit(b"not json", "bad")


@pytest.mark.asyncio
async def test_malformed_body_is_rejected_without_a_session(executor, sessions):
    body = b'{"url": "https://rink.org/"}'

    outcome = await executor.execute(body, KEYS.sign(body))

    assert outcome.state is JobState.REJECTED
    assert sessions.opened == 0


def test_empty_body_is_a_payload_error(executor):
    with pytest.raises(PayloadError):
        executor.admit(b"", KEYS.sign(b""))


@pytest.mark.asyncio
async def test_successful_job_is_persisted_and_acknowledged(executor, store, sessions):
    body = job_body()

    outcome = await executor.execute(body, KEYS.sign(body))

    assert outcome.acknowledged
    assert outcome.record.status == "success"
    assert [c.email for c in outcome.record.contacts] == ["coach@rink.org"]
    assert sessions.opened == sessions.closed == 1
    store.insert_result.assert_awaited_once()
    stored = store.insert_result.await_args.args[0]
    assert stored.batch_id == "batch-1"
    assert stored.url == URL


@pytest.mark.asyncio
async def test_next_key_is_accepted(executor):
    body = job_body()
    signature = SigningKeys(current="next-key").sign(body)

    outcome = await executor.execute(body, signature)

    assert outcome.acknowledged


@pytest.mark.asyncio
async def test_gentle_mode_visits_only_the_seed(executor, sessions):
    sessions.page.links[URL] = ["/about"]
    body = job_body()

    await executor.execute(body, KEYS.sign(body))

    config = sessions.configs[0]
    assert (config.max_depth, config.max_pages, config.follow_links) == (0, 1, False)
    assert sessions.page.visited == [URL]


@pytest.mark.asyncio
async def test_crawl_failure_is_an_acknowledged_error_row(executor, store, sessions):
    sessions.page.fail.add(URL)
    body = job_body()

    outcome = await executor.execute(body, KEYS.sign(body))

    assert outcome.acknowledged
    assert outcome.record.status == "error"
    assert outcome.record.contacts is None
    assert "Failed to load" in outcome.record.error_message
    assert sessions.closed == 1
    store.insert_result.assert_awaited_once()


@pytest.mark.asyncio
async def test_browser_launch_failure_is_an_error_row(store):
    sessions = FakeSessionFactory(fail_on_enter=RuntimeError("Executable doesn't exist"))
    executor = JobExecutor(KEYS, store, session_factory=sessions)
    body = job_body()

    outcome = await executor.execute(body, KEYS.sign(body))

    assert outcome.acknowledged
    assert outcome.record.status == "error"
    assert "Executable doesn't exist" in outcome.record.error_message


@pytest.mark.asyncio
async def test_persistence_failure_is_absorbed(executor, store):
    store.insert_result.side_effect = RuntimeError("database is locked")
    body = job_body()

    outcome = await executor.execute(body, KEYS.sign(body))

    assert outcome.acknowledged
    assert outcome.record.status == "success"
