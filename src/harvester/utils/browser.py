"""
Browser session lifecycle.

One session per job: a Playwright driver, one browser, one context and one
page. Everything is torn down on exit, including when the job is cancelled.
"""

from typing import Any, Optional

from playwright.async_api import async_playwright

from ..logging_config import setup_logging
from ..models.scrape_models import ScrapeConfiguration

# Create module-specific logger
logger = setup_logging("browser")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class BrowserSession:
    """Async context manager yielding itself with a ready `page`.

    Usage::

        async with BrowserSession(config) as session:
            await session.page.goto(url)
    """

    def __init__(self, config: ScrapeConfiguration, user_agent: str = DEFAULT_USER_AGENT):
        self.config = config
        self.user_agent = user_agent
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self.page: Optional[Any] = None

    async def __aenter__(self) -> "BrowserSession":
        try:
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.config.browser_type)
            self._browser = await launcher.launch(headless=self.config.use_headless_browser)
            self._context = await self._browser.new_context(
                user_agent=self.user_agent,
                viewport={"width": 1366, "height": 900},
            )
            self._context.set_default_timeout(self.config.timeout_ms)
            self.page = await self._context.new_page()
        except BaseException:
            await self.close()
            raise
        logger.debug(
            "Browser session opened",
            extra={
                "browser_type": self.config.browser_type,
                "headless": self.config.use_headless_browser,
            },
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release page, context, browser and driver; close errors are logged."""
        for name in ("_context", "_browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Error closing browser {name.strip('_')}: {e}")
            setattr(self, name, None)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping Playwright driver: {e}")
            self._playwright = None
        self.page = None
