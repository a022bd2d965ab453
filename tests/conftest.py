"""
Shared test configuration for AdaptiveCrawl.

Provides markers, settings isolation and sample pages. Browser and network
collaborators are replaced with the fakes in ``tests.helpers.fakes``.
"""

# Standard library imports
import asyncio
from typing import AsyncGenerator

# Third-party imports
import pytest
import pytest_asyncio

# Local imports
from adaptivecrawl.config import Settings, set_settings
from adaptivecrawl.config.config import CrawlConfig

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Tests running several components together")
    config.addinivalue_line("markers", "slow: Tests that take more than a few seconds")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings():
    """Fresh process-wide settings per test, never read from disk."""
    settings = Settings()
    set_settings(settings)
    yield settings
    set_settings(None)


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel tasks a test leaves behind so they cannot leak into the next one."""
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before
    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@pytest.fixture
def crawl_config() -> CrawlConfig:
    """Fast crawl config: no pacing, no robots."""
    return CrawlConfig(max_pages=10, max_depth=2, concurrent=2, delay=0, respect_robots=False)


# ============================================================================
# Sample Pages
# ============================================================================


@pytest.fixture
def article_html() -> str:
    """A content-rich article page."""
    paragraphs = "".join(
        f"<p>Paragraph {i} explains how adaptive crawlers choose between static requests, "
        f"rendered browsers and stealth sessions depending on what each site needs.</p>"
        for i in range(12)
    )
    return f"""
    <!DOCTYPE html>
    <html lang="en-US">
    <head>
        <title>Understanding Adaptive Crawling</title>
        <meta name="description" content="A long explanation of how adaptive crawlers pick a fetch strategy per site.">
        <meta name="keywords" content="crawling, scraping, adaptive">
    </head>
    <body>
        <header><nav><a href="/">Home</a><a href="/about">About</a><a href="/blog">Blog</a></nav></header>
        <img class="site-logo" src="/static/logo.png" alt="Example logo">
        <article>
            <h1>Understanding Adaptive Crawling</h1>
            <span class="author">Jane Doe</span>
            <time datetime="2024-03-05T10:00:00Z">March 5, 2024</time>
            {paragraphs}
            <h2>Strategies</h2>
            <img src="/images/diagram.png" alt="Strategy diagram">
            <p>Read more in <a href="/blog/part-2">part two</a>, <a href="/blog/part-3?utm_source=x">part three</a>
               and <a href="https://other.example.org/ref">an external reference</a>.</p>
            <a href="/contact">Contact</a>
            <a href="#top">Back to top</a>
        </article>
        <aside class="sidebar"><p>Sidebar noise that should not be part of the main text at all.</p></aside>
        <footer class="footer"><p>Copyright Example Inc. All rights reserved worldwide.</p></footer>
    </body>
    </html>
    """


@pytest.fixture
def product_html() -> str:
    """A product page with JSON-LD and matching markup."""
    return """
    <html>
    <head>
        <title>Super Widget - Example Shop</title>
        <script type="application/ld+json">
        {
            "@context": "https://schema.org",
            "@type": "Product",
            "name": "Super Widget",
            "description": "The best widget.",
            "sku": "SW-1",
            "brand": {"@type": "Brand", "name": "Acme"},
            "offers": {"@type": "Offer", "price": "19.99", "availability": "InStock"}
        }
        </script>
    </head>
    <body>
        <div class="product">
            <h1 class="product-title">Super Widget</h1>
            <span class="price">$19.99</span>
            <button class="add-to-cart">Add to cart</button>
        </div>
    </body>
    </html>
    """
