"""Tests for the crawl orchestrator."""

import json

import pytest

from conftest import FakePage
from harvester.models.scrape_models import (
    CaptureRule,
    CrawlStatus,
    FieldKind,
    FormField,
    FormInteractionSpec,
    ScrapeConfiguration,
)
from harvester.utils.web_crawler import CrawlOrchestrator, normalize_link, should_follow

SEED = "https://club.org/"
SEARCH_API = "/api/search"


def contact_page(*emails: str) -> str:
    return "<html><body>" + "".join(f"<p>{e}</p>" for e in emails) + "</body></html>"


@pytest.fixture
def site():
    return FakePage(
        pages={
            SEED: contact_page("office@club.org"),
            "https://club.org/staff": contact_page("coach@club.org", "office@club.org"),
            "https://club.org/about": contact_page("board@club.org"),
            "https://club.org/staff/detail": contact_page("deep@club.org"),
        },
        links={
            SEED: ["/staff", "/about#team", "https://other.org/", "/files/guide.pdf"],
            "https://club.org/staff": ["/staff/detail", "/"],
            "https://club.org/about": ["/staff"],
        },
    )


@pytest.mark.asyncio
async def test_max_depth_zero_visits_only_seed(site):
    config = ScrapeConfiguration(follow_links=True, max_depth=0, max_pages=10)

    result = await CrawlOrchestrator(site).crawl(SEED, config)

    assert result.status is CrawlStatus.SUCCESS
    assert result.visited_urls == (SEED,)
    assert site.visited == [SEED]
    assert [c.email for c in result.contacts] == ["office@club.org"]


@pytest.mark.asyncio
async def test_breadth_first_same_origin_without_duplicates(site):
    config = ScrapeConfiguration(follow_links=True, max_depth=2, max_pages=10)

    result = await CrawlOrchestrator(site).crawl(SEED, config)

    assert result.visited_urls == (
        SEED,
        "https://club.org/staff",
        "https://club.org/about",
        "https://club.org/staff/detail",
    )
    emails = [c.email for c in result.contacts]
    assert len(emails) == len(set(emails))
    assert set(emails) == {"office@club.org", "coach@club.org", "board@club.org", "deep@club.org"}


@pytest.mark.asyncio
async def test_max_pages_limits_visits(site):
    config = ScrapeConfiguration(follow_links=True, max_depth=2, max_pages=2)

    result = await CrawlOrchestrator(site).crawl(SEED, config)

    assert len(result.visited_urls) == 2


@pytest.mark.asyncio
async def test_links_not_followed_when_disabled(site):
    config = ScrapeConfiguration(follow_links=False, max_depth=2, max_pages=10)

    result = await CrawlOrchestrator(site).crawl(SEED, config)

    assert result.visited_urls == (SEED,)


@pytest.mark.asyncio
async def test_seed_navigation_failure_is_an_error():
    page = FakePage(fail=[SEED])

    result = await CrawlOrchestrator(page).crawl(SEED, ScrapeConfiguration())

    assert result.status is CrawlStatus.ERROR
    assert "Failed to load" in result.error_detail
    assert result.contacts == ()


@pytest.mark.asyncio
async def test_deeper_page_failure_is_skipped(site):
    site.fail.add("https://club.org/staff")
    config = ScrapeConfiguration(follow_links=True, max_depth=1, max_pages=10)

    result = await CrawlOrchestrator(site).crawl(SEED, config)

    assert result.status is CrawlStatus.SUCCESS
    assert "https://club.org/about" in result.visited_urls
    assert {c.email for c in result.contacts} == {"office@club.org", "board@club.org"}


@pytest.mark.asyncio
async def test_seed_interaction_failure_is_an_error():
    page = FakePage(pages={SEED: contact_page("office@club.org")})
    config = ScrapeConfiguration(
        form_interaction=FormInteractionSpec(
            fields=(FormField(selector="#state", value="CA", kind=FieldKind.SELECT),),
            submit_button_selector="#go",
        )
    )

    orchestrator = CrawlOrchestrator(page)
    orchestrator.form_engine.field_wait_timeout_ms = 10
    result = await orchestrator.crawl(SEED, config)

    assert result.status is CrawlStatus.ERROR
    assert "#state" in result.error_detail


@pytest.mark.asyncio
async def test_budget_expiry_returns_partial_results(site):
    site.goto_delay = 0.2
    config = ScrapeConfiguration(follow_links=True, max_depth=2, max_pages=10)

    result = await CrawlOrchestrator(site).crawl(SEED, config, budget_seconds=0.5)

    assert result.status is CrawlStatus.SUCCESS
    assert "office@club.org" in {c.email for c in result.contacts}
    assert len(result.visited_urls) < 4


@pytest.mark.asyncio
async def test_budget_expiry_before_seed_is_an_error(site):
    site.goto_delay = 1.0

    result = await CrawlOrchestrator(site).crawl(SEED, ScrapeConfiguration(), budget_seconds=0.05)

    assert result.status is CrawlStatus.ERROR
    assert "budget" in result.error_detail


@pytest.mark.asyncio
async def test_form_runs_on_seed_and_last_captured_response_wins():
    initial = json.dumps({"programs": [{"OrganizationEmail": "stale@club.org"}]})
    searched = json.dumps(
        {
            "programs": [
                {
                    "OrganizationEmail": "Fresh@Club.org",
                    "OrganizationName": "Fresh Skaters",
                    "City": "Reno",
                    "StateCode": "NV",
                    "Website": "http://",
                }
            ]
        }
    )
    page = FakePage(
        pages={SEED: "<html><body>Find a program</body></html>", "https://club.org/next": ""},
        links={SEED: ["/next"]},
        elements={"#state": 1, "#go": 1},
        responses={SEED: [(f"https://club.org{SEARCH_API}", initial)]},
        submit_responses=[(f"https://club.org{SEARCH_API}?state=NV", searched)],
    )
    config = ScrapeConfiguration(
        follow_links=True,
        max_depth=1,
        max_pages=5,
        form_interaction=FormInteractionSpec(
            fields=(FormField(selector="#state", value="NV", kind=FieldKind.SELECT),),
            submit_button_selector="#go",
            wait_for_response_pattern=SEARCH_API,
        ),
        capture_rules=(CaptureRule(pattern=SEARCH_API, schema_hint="program_listing"),),
    )

    result = await CrawlOrchestrator(page).crawl(SEED, config)

    assert result.status is CrawlStatus.SUCCESS
    assert [c.email for c in result.contacts] == ["fresh@club.org"]
    assert result.contacts[0].name == "Fresh Skaters (Reno, NV)"
    assert result.contacts[0].url == ""
    assert len(result.captured_responses) == 2
    # Form only on the seed page
    assert [a for a in page.actions if a[0] == "click"] == [("click", "#go")]
    assert page.visited == [SEED, "https://club.org/next"]


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://club.org/staff", True),
        ("https://CLUB.org/staff", True),
        ("http://club.org/staff", False),
        ("https://other.org/staff", False),
        ("https://club.org/guide.PDF", False),
        ("https://club.org/api/list", False),
        ("https://club.org/admin/", False),
        ("https://club.org/feed?format=json", False),
        ("https://club.org/search?a=1&b=2&c=3&d=4", False),
        ("https://club.org/search?a=1&b=2&c=3", True),
        ("mailto:office@club.org", False),
    ],
)
def test_should_follow(url, expected):
    assert should_follow(url, SEED) is expected


def test_normalize_link():
    assert normalize_link("/about#team", SEED) == "https://club.org/about"
    assert normalize_link("#top", SEED) is None
    assert normalize_link("", SEED) is None
    assert normalize_link(None, SEED) is None


@pytest.mark.asyncio
async def test_repeated_query_uses_only_last_response():
    club_a = {"OrganizationEmail": "a@clubs.org", "OrganizationName": "A"}
    club_b = {"OrganizationEmail": "b@clubs.org", "OrganizationName": "B"}
    page = FakePage(
        responses={
            SEED: [
                (f"https://club.org{SEARCH_API}", json.dumps({"programs": [club_a]})),
                (f"https://club.org{SEARCH_API}", json.dumps({"programs": [club_a, club_b]})),
            ]
        }
    )
    config = ScrapeConfiguration(capture_rules=(CaptureRule(pattern=SEARCH_API),))

    result = await CrawlOrchestrator(page).crawl(SEED, config)

    assert {c.email for c in result.contacts} == {"a@clubs.org", "b@clubs.org"}
    assert len(result.captured_responses) == 2


@pytest.mark.asyncio
async def test_links_follow_the_redirected_seed_address():
    page = FakePage(
        pages={
            "https://club.org/": contact_page("office@club.org"),
            "https://club.org/staff": contact_page("coach@club.org"),
            "https://club.org/about": contact_page("board@club.org"),
        },
        links={"https://club.org/": ["https://club.org/staff", "about", "/"]},
        redirects={"http://club.org/": "https://club.org/"},
    )
    config = ScrapeConfiguration(follow_links=True, max_depth=1, max_pages=10)

    result = await CrawlOrchestrator(page).crawl("http://club.org/", config)

    assert result.status is CrawlStatus.SUCCESS
    assert result.visited_urls == (
        "http://club.org/",
        "https://club.org/staff",
        "https://club.org/about",
    )
    assert {c.email for c in result.contacts} == {
        "office@club.org",
        "coach@club.org",
        "board@club.org",
    }
