"""
Crawl Orchestrator

Breadth-first traversal of one seed site with a single browser page. Each
page visit is one capture window: the page is loaded, the search form is run
on the seed page only, then contacts are extracted from the rendered content
and from the captured API responses. Same-origin links are followed up to the
configured depth and page limit, under an optional wall-clock budget.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qsl, urldefrag, urljoin, urlparse

from ..errors import InteractionError, NavigationError
from ..logging_config import setup_logging
from ..models.scrape_models import (
    CapturedResponse,
    Contact,
    CrawlResult,
    CrawlStatus,
    ScrapeConfiguration,
)
from .contact_extractor import ContactExtractor, merge_contacts
from .form_interaction import FormInteractionEngine
from .network_capture import NetworkCapture

# Create module-specific logger
logger = setup_logging("web_crawler")

SKIPPED_EXTENSIONS = (".pdf", ".zip", ".jpg", ".jpeg", ".png", ".gif")
SKIPPED_PATH_FRAGMENTS = ("/api/", "/admin/")
MAX_QUERY_PARAMS = 3

_LINKS_SCRIPT = "els => els.map(e => e.getAttribute('href'))"


def _origin(url: str) -> Tuple[str, str]:
    parsed = urlparse(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


def should_follow(url: str, seed_url: str) -> bool:
    """Whether `url` is a same-origin page worth visiting for contact data."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    if _origin(url) != _origin(seed_url):
        return False
    path = parsed.path.lower()
    if path.endswith(SKIPPED_EXTENSIONS):
        return False
    if any(fragment in path for fragment in SKIPPED_PATH_FRAGMENTS):
        return False
    params = parse_qsl(parsed.query, keep_blank_values=True)
    if len(params) > MAX_QUERY_PARAMS:
        return False
    if any(key == "format" and value.lower() == "json" for key, value in params):
        return False
    return True


def normalize_link(href: Optional[str], base_url: str) -> Optional[str]:
    """Resolve `href` against `base_url` and drop the fragment."""
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    absolute, _ = urldefrag(urljoin(base_url, href))
    return absolute or None


@dataclass
class _CrawlState:
    """Accumulated output; survives cancellation so partial results can be returned."""

    seed_url: str
    # Seed address after redirects; links must share its origin
    origin_url: Optional[str] = None
    contacts: Dict[str, Contact] = field(default_factory=dict)
    visited: List[str] = field(default_factory=list)
    captured: List[CapturedResponse] = field(default_factory=list)
    seed_processed: bool = False

    def result(self, status: CrawlStatus, error_detail: Optional[str] = None) -> CrawlResult:
        return CrawlResult(
            seed_url=self.seed_url,
            contacts=tuple(self.contacts.values()),
            visited_urls=tuple(self.visited),
            captured_responses=tuple(self.captured),
            status=status,
            error_detail=error_detail,
        )


class CrawlOrchestrator:
    """Drives one page through a breadth-first crawl of a seed site."""

    def __init__(
        self,
        page: Any,
        extractor: Optional[ContactExtractor] = None,
        form_engine: Optional[FormInteractionEngine] = None,
    ):
        self.page = page
        self.extractor = extractor or ContactExtractor()
        self.form_engine = form_engine or FormInteractionEngine()

    async def crawl(
        self,
        seed_url: str,
        config: ScrapeConfiguration,
        budget_seconds: Optional[float] = None,
    ) -> CrawlResult:
        """Crawl `seed_url` and return everything found.

        Never raises for crawl failures: a seed page that cannot be loaded or
        interacted with produces an ``error`` result carrying the reason. When
        the budget expires the contacts gathered so far are returned.
        """
        state = _CrawlState(seed_url=seed_url)
        logger.info(
            "Starting crawl",
            extra={
                "seed_url": seed_url,
                "max_depth": config.max_depth,
                "max_pages": config.max_pages,
                "follow_links": config.follow_links,
                "budget_seconds": budget_seconds,
            },
        )
        try:
            if budget_seconds is None:
                await self._traverse(state, config)
            else:
                await asyncio.wait_for(self._traverse(state, config), timeout=budget_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Crawl budget expired",
                extra={
                    "seed_url": seed_url,
                    "pages_visited": len(state.visited),
                    "contacts_found": len(state.contacts),
                },
            )
            if not state.seed_processed:
                return state.result(
                    CrawlStatus.ERROR,
                    f"Crawl budget of {budget_seconds}s expired before {seed_url} was processed",
                )
        except (NavigationError, InteractionError) as e:
            logger.error(f"Seed page failed: {e}", extra={"seed_url": seed_url})
            return state.result(CrawlStatus.ERROR, str(e))

        logger.info(
            "Crawl finished",
            extra={
                "seed_url": seed_url,
                "pages_visited": len(state.visited),
                "contacts_found": len(state.contacts),
                "responses_captured": len(state.captured),
            },
        )
        return state.result(CrawlStatus.SUCCESS)

    async def _traverse(self, state: _CrawlState, config: ScrapeConfiguration) -> None:
        frontier: Deque[Tuple[str, int]] = deque([(state.seed_url, 0)])
        queued: Set[str] = {state.seed_url}
        visited: Set[str] = set()

        while frontier and len(state.visited) < config.max_pages:
            url, depth = frontier.popleft()
            if url in visited:
                continue
            visited.add(url)
            state.visited.append(url)
            is_seed = not state.seed_processed and depth == 0

            try:
                final_url, links = await self._visit(url, depth, is_seed, state, config)
            except (NavigationError, InteractionError) as e:
                if is_seed:
                    raise
                logger.warning(f"Skipping page: {e}", extra={"url": url, "depth": depth})
                continue

            if is_seed:
                state.seed_processed = True
            visited.add(final_url)
            queued.add(final_url)

            for link in links:
                if link in visited or link in queued:
                    continue
                queued.add(link)
                frontier.append((link, depth + 1))

    async def _visit(
        self,
        url: str,
        depth: int,
        is_seed: bool,
        state: _CrawlState,
        config: ScrapeConfiguration,
    ) -> Tuple[str, List[str]]:
        """Load one page inside a capture window.

        Returns the address the page ended up at and the links to enqueue.
        """
        capture = NetworkCapture([rule.pattern for rule in config.capture_rules])
        capture.attach(self.page)
        try:
            try:
                await self.page.goto(url, wait_until="domcontentloaded", timeout=config.timeout_ms)
            except Exception as e:
                raise NavigationError(f"Failed to load {url}: {e}") from e
            final_url = self.page.url or url
            if is_seed:
                state.origin_url = final_url

            form = config.form_interaction
            if is_seed and form is not None and form.enabled:
                await self.form_engine.interact(self.page, form, capture)

            try:
                content = await self.page.content()
            except Exception as e:
                raise NavigationError(f"Failed to read content of {url}: {e}") from e

            links: List[str] = []
            if config.follow_links and depth < config.max_depth:
                links = await self._collect_links(final_url, state.origin_url or state.seed_url)
        except BaseException:
            capture.abandon()
            raise
        captured = await capture.detach()

        found = merge_contacts(
            state.contacts,
            self.extractor.extract(content, url, config.include_phone_numbers),
        )
        for rule in config.capture_rules:
            response = NetworkCapture.latest(captured, rule.pattern)
            if response is None:
                continue
            found += merge_contacts(
                state.contacts,
                self.extractor.extract_from_payload(
                    response.body, rule.schema_hint, response.source_url
                ),
            )
        state.captured.extend(captured)

        logger.debug(
            "Page processed",
            extra={
                "url": url,
                "depth": depth,
                "new_contacts": found,
                "responses_captured": len(captured),
                "links_queued": len(links),
            },
        )
        return final_url, links

    async def _collect_links(self, url: str, origin_url: str) -> List[str]:
        try:
            hrefs = await self.page.eval_on_selector_all("a[href]", _LINKS_SCRIPT)
        except Exception as e:
            logger.warning(f"Could not collect links from {url}: {e}")
            return []

        links: List[str] = []
        seen: Set[str] = set()
        for href in hrefs or []:
            link = normalize_link(href, url)
            if link is None or link in seen or not should_follow(link, origin_url):
                continue
            seen.add(link)
            links.append(link)
        return links
