"""
Network Capture Layer

Passively observes the responses a Playwright page receives during one page
visit (the capture window) and keeps the bodies of those whose URL contains
one of the configured substrings. Nothing else is read, so pages with many
assets do not grow memory.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..logging_config import setup_logging
from ..models.scrape_models import CapturedResponse

# Create module-specific logger
logger = setup_logging("network_capture")


class NetworkCapture:
    """Retains matching responses for one capture window at a time.

    Usage::

        capture = NetworkCapture(["GetPointsFromSearch"])
        capture.attach(page)
        await page.goto(url)
        responses = await capture.detach()
    """

    def __init__(self, patterns: Sequence[str]):
        self.patterns: Tuple[str, ...] = tuple(p for p in patterns if p)
        self._page: Any = None
        # (url, pattern, body task) in arrival order
        self._pending: List[Tuple[str, str, "asyncio.Task[str]"]] = []
        self._seen: Dict[str, asyncio.Event] = {}
        # Responses before this index no longer count towards wait_for()
        self._expect_from: Dict[str, int] = {}

    @property
    def attached(self) -> bool:
        return self._page is not None

    def attach(self, page: Any) -> None:
        """Open a capture window on `page`."""
        if self._page is not None:
            raise RuntimeError("Capture window already open")
        self._pending = []
        self._seen = {pattern: asyncio.Event() for pattern in self.patterns}
        self._expect_from = {pattern: 0 for pattern in self.patterns}
        self._page = page
        if self.patterns:
            page.on("response", self._on_response)

    def _match(self, url: str) -> Optional[str]:
        for pattern in self.patterns:
            if pattern in url:
                return pattern
        return None

    def _on_response(self, response: Any) -> None:
        url = response.url
        pattern = self._match(url)
        if pattern is None:
            return
        # The slot is taken now so arrival order survives slow body reads
        task = asyncio.ensure_future(self._read_body(response))
        index = len(self._pending)
        self._pending.append((url, pattern, task))
        # Bound to this window so a late callback cannot touch the next one
        event, expect_from = self._seen[pattern], self._expect_from

        def mark_seen(_task: "asyncio.Task[str]") -> None:
            if index >= expect_from.get(pattern, 0):
                event.set()

        task.add_done_callback(mark_seen)
        logger.debug("Captured response", extra={"url": url, "pattern": pattern})

    @staticmethod
    async def _read_body(response: Any) -> str:
        return await response.text()

    def expect(self, pattern: str) -> None:
        """Forget earlier sightings of `pattern` so wait_for() waits for a new one."""
        event = self._seen.get(pattern)
        if event is not None:
            event.clear()
            self._expect_from[pattern] = len(self._pending)

    async def wait_for(self, pattern: str, timeout_ms: int) -> bool:
        """Wait until a response matching `pattern` is captured in this window."""
        event = self._seen.get(pattern)
        if event is None:
            raise ValueError(f"Pattern is not being captured: {pattern}")
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout_ms / 1000)
            return True
        except asyncio.TimeoutError:
            return False

    async def detach(self) -> List[CapturedResponse]:
        """Close the window and return the retained responses in arrival order."""
        page, self._page = self._page, None
        if page is not None and self.patterns:
            page.remove_listener("response", self._on_response)

        captured: List[CapturedResponse] = []
        for url, pattern, task in self._pending:
            try:
                body = await task
            except Exception as e:
                logger.warning(
                    "Could not read captured response body",
                    extra={"url": url, "error": str(e)},
                )
                continue
            captured.append(
                CapturedResponse(source_url=url, body=body, matched_pattern=pattern)
            )
        self._pending = []
        return captured

    def abandon(self) -> None:
        """Close the window without waiting on bodies still being read."""
        page, self._page = self._page, None
        if page is not None and self.patterns:
            page.remove_listener("response", self._on_response)
        for _, _, task in self._pending:
            task.cancel()
        self._pending = []

    @staticmethod
    def latest(captured: Sequence[CapturedResponse], pattern: str) -> Optional[CapturedResponse]:
        """The last response for `pattern`; later responses reflect post-interaction state."""
        for response in reversed(captured):
            if response.matched_pattern == pattern:
                return response
        return None
