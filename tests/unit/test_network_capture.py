"""Tests for the network capture layer."""

import pytest

from conftest import FakePage
from harvester.utils.network_capture import NetworkCapture

PATTERN = "/api/search"


@pytest.mark.asyncio
async def test_only_matching_responses_are_kept_in_arrival_order():
    page = FakePage()
    capture = NetworkCapture([PATTERN])
    capture.attach(page)

    page.emit(
        [
            ("https://site.org/app.js", "console.log(1)"),
            ("https://site.org/api/search?q=1", '{"n": 1}'),
            ("https://site.org/logo.png", "binary"),
            ("https://site.org/api/search?q=2", '{"n": 2}'),
        ]
    )
    captured = await capture.detach()

    assert [c.source_url for c in captured] == [
        "https://site.org/api/search?q=1",
        "https://site.org/api/search?q=2",
    ]
    assert all(c.matched_pattern == PATTERN for c in captured)
    assert page.listeners == []


@pytest.mark.asyncio
async def test_latest_returns_last_response_for_pattern():
    page = FakePage()
    capture = NetworkCapture([PATTERN, "/other"])
    capture.attach(page)
    page.emit(
        [
            ("https://site.org/api/search", "initial"),
            ("https://site.org/other", "unrelated"),
            ("https://site.org/api/search", "after submit"),
        ]
    )
    captured = await capture.detach()

    assert len(captured) == 3
    assert NetworkCapture.latest(captured, PATTERN).body == "after submit"
    assert NetworkCapture.latest(captured, "/missing") is None


@pytest.mark.asyncio
async def test_wait_for_resolves_once_pattern_seen():
    page = FakePage()
    capture = NetworkCapture([PATTERN])
    capture.attach(page)

    assert await capture.wait_for(PATTERN, timeout_ms=10) is False

    page.emit([("https://site.org/api/search", "{}")])
    assert await capture.wait_for(PATTERN, timeout_ms=1000) is True
    await capture.detach()


@pytest.mark.asyncio
async def test_wait_for_unknown_pattern_raises():
    capture = NetworkCapture([PATTERN])
    capture.attach(FakePage())

    with pytest.raises(ValueError):
        await capture.wait_for("/nope", timeout_ms=10)
    await capture.detach()


@pytest.mark.asyncio
async def test_windows_do_not_leak_into_each_other():
    page = FakePage()
    capture = NetworkCapture([PATTERN])

    capture.attach(page)
    page.emit([("https://site.org/api/search", "first page")])
    first = await capture.detach()

    capture.attach(page)
    second = await capture.detach()

    assert [c.body for c in first] == ["first page"]
    assert second == []


def test_attach_twice_is_an_error():
    capture = NetworkCapture([PATTERN])
    capture.attach(FakePage())

    with pytest.raises(RuntimeError):
        capture.attach(FakePage())


@pytest.mark.asyncio
async def test_no_patterns_registers_no_listener():
    page = FakePage()
    capture = NetworkCapture([])
    capture.attach(page)

    assert page.listeners == []
    assert await capture.detach() == []


@pytest.mark.asyncio
async def test_expect_ignores_earlier_responses():
    page = FakePage()
    capture = NetworkCapture([PATTERN])
    capture.attach(page)
    page.emit([("https://site.org/api/search", "on load")])
    assert await capture.wait_for(PATTERN, timeout_ms=1000) is True

    capture.expect(PATTERN)
    assert await capture.wait_for(PATTERN, timeout_ms=10) is False

    page.emit([("https://site.org/api/search", "after submit")])
    assert await capture.wait_for(PATTERN, timeout_ms=1000) is True
    captured = await capture.detach()
    assert [c.body for c in captured] == ["on load", "after submit"]
