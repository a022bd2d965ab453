"""
Unit tests for API endpoint discovery and the API executor.
"""

import httpx
import pytest

from adaptivecrawl.errors import NetworkError
from adaptivecrawl.strategies.api import ApiExecutor, discover_endpoints, render_payload, score_endpoint
from adaptivecrawl.strategies.base import FetchOptions

PAGE = """
<html><body>
<div id="app" data-src="/api/v1/articles?limit=20"></div>
<script>
  fetch("/static/app.js");
  const feed = "/feed/latest.json";
  const other = "https://cdn.other.com/api/data";
</script>
</body></html>
"""


@pytest.mark.unit
class TestEndpointDiscovery:
    def test_score_endpoint_weights(self):
        endpoint = score_endpoint("https://example.com/api/items?page=2", "POST", "application/json", 5000)
        assert endpoint.is_json and endpoint.is_api
        assert endpoint.confidence == 100

    def test_non_api_url_scores_low(self):
        endpoint = score_endpoint("https://example.com/about")
        assert not endpoint.is_api
        assert endpoint.confidence == 0

    def test_discovers_same_origin_api_urls_best_first(self):
        endpoints = discover_endpoints(PAGE, "https://example.com/articles")
        urls = [e.url for e in endpoints]
        assert urls[0] == "https://example.com/api/v1/articles?limit=20"
        assert "https://example.com/feed/latest.json" in urls
        assert all("cdn.other.com" not in u for u in urls)
        assert all("app.js" not in u for u in urls)

    def test_render_payload_escapes_and_lists_items(self):
        html = render_payload({"data": {"title": "<News>", "items": [{"title": "One"}, "two"]}}, "https://example.com")
        assert "<title>&lt;News&gt;</title>" in html
        assert "<li>One</li>" in html
        assert "<li>two</li>" in html


@pytest.mark.unit
class TestApiExecutor:
    def _executor(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ApiExecutor(client), client

    @pytest.mark.asyncio
    async def test_json_page_is_returned_directly(self):
        executor, client = self._executor(lambda r: httpx.Response(200, json={"title": "Direct", "content": "Body"}))
        async with client:
            page = await executor.fetch("https://example.com/api/thing", FetchOptions())
        assert page.method == "api"
        assert page.json_payload == {"title": "Direct", "content": "Body"}
        assert page.final_url == page.api_endpoint == "https://example.com/api/thing"
        assert "<title>Direct</title>" in page.html

    @pytest.mark.asyncio
    async def test_reads_discovered_endpoints(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/articles":
                return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})
            if request.url.path == "/api/v1/articles":
                assert request.headers["accept"].startswith("application/json")
                return httpx.Response(200, json={"results": [{"title": "A"}, {"title": "B"}]})
            return httpx.Response(404)

        executor, client = self._executor(handler)
        async with client:
            page = await executor.fetch("https://example.com/articles", FetchOptions())

        assert page.final_url == "https://example.com/articles"
        assert page.api_endpoint == "https://example.com/api/v1/articles?limit=20"
        assert page.json_payload["results"][1]["title"] == "B"
        assert seen[:2] == ["/articles", "/api/v1/articles"]

    @pytest.mark.asyncio
    async def test_no_endpoints_is_network_error(self):
        executor, client = self._executor(
            lambda r: httpx.Response(200, text="<html><body>plain</body></html>", headers={"content-type": "text/html"})
        )
        async with client:
            with pytest.raises(NetworkError, match="No API endpoints found"):
                await executor.fetch("https://example.com/", FetchOptions())

    @pytest.mark.asyncio
    async def test_error_status(self):
        executor, client = self._executor(lambda r: httpx.Response(500))
        async with client:
            with pytest.raises(NetworkError) as exc_info:
                await executor.fetch("https://example.com/", FetchOptions())
        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        executor, client = self._executor(lambda r: httpx.Response(200))
        await executor.close()
        assert not client.is_closed
        await client.aclose()
