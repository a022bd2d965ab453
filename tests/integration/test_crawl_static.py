"""
End-to-end crawl over the real static executor and extractors.

HTTP is served by aioresponses (pages) and an httpx mock transport
(robots.txt); nothing leaves the process.
"""

import httpx
import pytest
from aioresponses import aioresponses

from adaptivecrawl.adaptive import AdaptiveSelector, ProfileStore
from adaptivecrawl.crawler.rate_limiter import DomainRateLimiter
from adaptivecrawl.crawler.robots_parser import RobotsCache
from adaptivecrawl.crawler.scheduler import Scheduler
from adaptivecrawl.extractor import ContentExtractor
from adaptivecrawl.models import SessionStatus
from adaptivecrawl.persistence import InMemoryStore
from adaptivecrawl.strategies.static import StaticExecutor
from tests.helpers import html_page

BASE = "https://shop.example.com"
ROBOTS = "User-agent: *\nDisallow: /admin/\n"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_static_crawl_of_small_shop(product_html):
    store = ProfileStore()
    persistence = InMemoryStore()
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=ROBOTS))
    scheduler = Scheduler(
        AdaptiveSelector({"static": StaticExecutor(backoff_base=0)}, ContentExtractor(), store),
        persistence=persistence,
        robots=RobotsCache(client=httpx.AsyncClient(transport=transport)),
        rate_limiter=DomainRateLimiter(default_interval=0),
    )
    home = html_page(
        "Example Shop",
        links=[f"{BASE}/products/widget", f"{BASE}/about", f"{BASE}/admin/panel", f"{BASE}/gone", "https://ads.example.net/"],
    )

    try:
        with aioresponses() as m:
            m.get(f"{BASE}/", status=200, body=home, content_type="text/html")
            m.get(f"{BASE}/products/widget", status=200, body=product_html, content_type="text/html")
            m.get(f"{BASE}/about", status=200, body=html_page("About us"), content_type="text/html")
            m.get(f"{BASE}/gone", status=404)

            session_id = await scheduler.start_crawl(
                BASE, {"maxPages": 10, "maxDepth": 2, "delay": 0, "concurrent": 2, "forceMethod": "static"}
            )
            session = await scheduler.wait(session_id, timeout=30)

        assert session.status is SessionStatus.COMPLETED
        stats = session.stats
        assert stats.processed_urls == 3
        assert stats.failed_urls == 1
        assert stats.skipped_urls == 1
        assert stats.total_urls == 4

        titles = {c.url: c.title for c in scheduler.get_content(session_id, limit=10)["content"]}
        assert titles[f"{BASE}/about"] == "About us"
        assert titles[f"{BASE}/products/widget"] == "Super Widget - Example Shop"

        products = scheduler.get_structured_data(session_id, schema="product")
        assert products and products[0].fields["price"] == 19.99
        assert len(persistence.content(session_id)) == 3

        profile = store.get("shop.example.com")
        assert profile is not None
        assert profile.method_attempts["static"] == 4
    finally:
        await scheduler.close()
