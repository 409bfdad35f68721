"""Test configuration and fixtures."""

import asyncio
import os
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Test configuration
TEST_LOG_DIR = "test_logs"
TEST_SIGNING_KEY = "test-current-key"
TEST_NEXT_SIGNING_KEY = "test-next-key"

# Must be set before harvester modules configure their loggers
os.environ.setdefault("LOG_DIR", TEST_LOG_DIR)
os.environ.setdefault("CURRENT_SIGNING_KEY", TEST_SIGNING_KEY)
os.environ.setdefault("NEXT_SIGNING_KEY", TEST_NEXT_SIGNING_KEY)


class FakeResponse:
    """Stands in for a Playwright response."""

    def __init__(self, url: str, body: str):
        self.url = url
        self._body = body

    async def text(self) -> str:
        return self._body


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        if not self.page.elements.get(self.selector):
            raise TimeoutError(f"Timeout waiting for {self.selector}")

    async def count(self) -> int:
        return self.page.elements.get(self.selector, 0)

    async def select_option(self, value: Optional[str] = None) -> List[str]:
        self.page.actions.append(("select", self.selector, value))
        return [value]

    async def fill(self, value: str) -> None:
        self.page.actions.append(("fill", self.selector, value))

    async def click(self) -> None:
        self.page.actions.append(("click", self.selector))
        self.page.emit(self.page.submit_responses)


class FakePage:
    """Minimal async page: canned HTML, links and network responses per URL.

    Args:
        pages: url -> HTML returned by content()
        links: url -> hrefs returned for ``a[href]``
        elements: selector -> number of matching elements
        responses: url -> (response url, body) emitted while the page loads
        submit_responses: (response url, body) emitted when something is clicked
        fail: urls whose navigation raises
        goto_delay: seconds each navigation takes
        redirects: url -> address the page ends up at after navigation
    """

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        links: Optional[Dict[str, List[str]]] = None,
        elements: Optional[Dict[str, int]] = None,
        responses: Optional[Dict[str, Sequence[Tuple[str, str]]]] = None,
        submit_responses: Sequence[Tuple[str, str]] = (),
        fail: Sequence[str] = (),
        goto_delay: float = 0,
        redirects: Optional[Dict[str, str]] = None,
    ):
        self.pages = pages or {}
        self.links = links or {}
        self.elements = elements or {}
        self.responses = responses or {}
        self.submit_responses = list(submit_responses)
        self.fail = set(fail)
        self.goto_delay = goto_delay
        self.redirects = redirects or {}
        self.current: Optional[str] = None
        self.actions: List[tuple] = []
        self.listeners: list = []

    def on(self, event: str, handler) -> None:
        assert event == "response"
        self.listeners.append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners.remove(handler)

    def emit(self, items: Sequence[Tuple[str, str]]) -> None:
        for url, body in items:
            for handler in list(self.listeners):
                handler(FakeResponse(url, body))

    async def goto(self, url: str, **kwargs) -> None:
        self.actions.append(("goto", url))
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if url in self.fail:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.current = self.redirects.get(url, url)
        self.emit(self.responses.get(url, ()))

    async def content(self) -> str:
        return self.pages.get(self.current, "<html><body></body></html>")

    async def eval_on_selector_all(self, selector: str, script: str) -> List[str]:
        return list(self.links.get(self.current, []))

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def wait_for_timeout(self, timeout: float) -> None:
        self.actions.append(("wait", timeout))

    @property
    def url(self) -> str:
        return self.current or "about:blank"

    @property
    def visited(self) -> List[str]:
        return [action[1] for action in self.actions if action[0] == "goto"]


class FakeSessionFactory:
    """Callable used in place of BrowserSession; counts acquisitions and releases."""

    def __init__(self, page: Optional[FakePage] = None, fail_on_enter: Optional[Exception] = None):
        self.page = page or FakePage()
        self.fail_on_enter = fail_on_enter
        self.configs: list = []
        self.opened = 0
        self.closed = 0

    def __call__(self, config):
        self.configs.append(config)
        return _FakeSession(self)


class _FakeSession:
    def __init__(self, factory: FakeSessionFactory):
        self.factory = factory
        self.page = None

    async def __aenter__(self):
        if self.factory.fail_on_enter is not None:
            raise self.factory.fail_on_enter
        self.factory.opened += 1
        self.page = self.factory.page
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.factory.closed += 1


@pytest.fixture(scope="function")
def test_db_path(tmp_path):
    """Provide a fresh database path per test."""
    return str(tmp_path / "harvester_test.db")


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def session_factory():
    return FakeSessionFactory()
