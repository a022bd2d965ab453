"""
API executor: finds the JSON endpoints a page talks to and reads those
instead of the HTML.

The page itself is fetched once with httpx. Candidate endpoints are pulled
from attributes and inline scripts, scored, and the best few requested. The first
JSON payload is returned together with a small HTML rendering so the content
extractor can treat it like any other page.
"""

from __future__ import annotations

import html as html_lib
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
import structlog

from adaptivecrawl.errors import FetchTimeoutError, NetworkError
from adaptivecrawl.models import RawPage
from adaptivecrawl.strategies.base import FetchOptions
from adaptivecrawl.strategies.static import DEFAULT_USER_AGENT, describe_status

logger = structlog.get_logger(__name__)

API_INDICATORS = (
    "/api/",
    "/v1/",
    "/v2/",
    "/v3/",
    "/graphql",
    "/rest/",
    "/json",
    ".json",
    "/data/",
    "/feed/",
    "/ajax/",
    "/xhr/",
)
PAGINATION_PARAMS = ("limit=", "offset=", "page=", "sort=", "filter=")

TITLE_KEYS = ("title", "name", "headline", "subject")
DESCRIPTION_KEYS = ("description", "summary", "excerpt", "intro")
CONTENT_KEYS = ("content", "body", "text", "message")

_CANDIDATE_RE = re.compile(r"""["'](?P<url>(?:https?://|/)[^"'\s<>]{2,300})["']""")
MAX_CANDIDATES = 50
MAX_RENDERED_ITEMS = 100


@dataclass
class ApiEndpoint:
    url: str
    method: str = "GET"
    content_type: str = ""
    response_size: int = 0
    is_json: bool = False
    is_api: bool = False
    confidence: int = 0


def score_endpoint(url: str, method: str = "GET", content_type: str = "", response_size: int = 0) -> ApiEndpoint:
    """Confidence that ``url`` is a data API, from 0 to 100."""
    confidence = 0
    is_json = False
    if "application/json" in content_type:
        is_json = True
        confidence += 40
    elif "text/json" in content_type:
        is_json = True
        confidence += 30

    url_lower = url.lower()
    is_api = any(indicator in url_lower for indicator in API_INDICATORS)
    if is_api:
        confidence += 25
    if method.upper() in ("POST", "PUT", "PATCH"):
        confidence += 10
    if response_size > 1000:
        confidence += 15
    if "?" in url and any(param in url_lower for param in PAGINATION_PARAMS):
        confidence += 20

    return ApiEndpoint(
        url=url,
        method=method.upper(),
        content_type=content_type,
        response_size=response_size,
        is_json=is_json,
        is_api=is_api or (is_json and confidence > 30),
        confidence=min(confidence, 100),
    )


def discover_endpoints(page_html: str, base_url: str) -> List[ApiEndpoint]:
    """Same-origin API-looking URLs referenced by the page, best first."""
    origin = urlparse(base_url).netloc.lower()
    seen = set()
    endpoints: List[ApiEndpoint] = []
    for match in _CANDIDATE_RE.finditer(page_html or ""):
        candidate = html_lib.unescape(match.group("url"))
        if candidate.startswith("//"):
            continue
        absolute = urljoin(base_url, candidate)
        if urlparse(absolute).netloc.lower() != origin or absolute in seen:
            continue
        seen.add(absolute)
        endpoint = score_endpoint(absolute)
        if endpoint.is_api:
            endpoints.append(endpoint)
        if len(endpoints) >= MAX_CANDIDATES:
            break
    endpoints.sort(key=lambda e: e.confidence, reverse=True)
    return endpoints


def _first(data: Dict[str, Any], keys: tuple) -> Optional[Any]:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def summarize_payload(payload: Any) -> Dict[str, Any]:
    """Pull title, description, content and items out of common API envelopes."""
    if isinstance(payload, list):
        return {"items": payload}
    if not isinstance(payload, dict):
        return {}
    if isinstance(payload.get("data"), (dict, list)):
        return summarize_payload(payload["data"])

    result: Dict[str, Any] = {}
    for key in ("results", "items"):
        if key in payload:
            value = payload[key]
            result["items"] = value if isinstance(value, list) else [value]
    result["title"] = _first(payload, TITLE_KEYS)
    result["description"] = _first(payload, DESCRIPTION_KEYS)
    result["content"] = _first(payload, CONTENT_KEYS)
    result["metadata"] = {k: v for k, v in payload.items() if k not in ("data", "results", "items")}
    return result


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)[:500]
    return str(value)


def render_payload(payload: Any, url: str) -> str:
    """Minimal HTML document carrying the payload's text."""
    summary = summarize_payload(payload)
    esc = html_lib.escape
    title = _text(summary.get("title")) or url
    description = _text(summary.get("description"))
    parts = [
        "<html><head>",
        f"<title>{esc(title)}</title>",
        f'<meta name="description" content="{esc(description)}">' if description else "",
        "</head><body><main><article>",
        f"<h1>{esc(title)}</h1>",
    ]
    if description:
        parts.append(f"<p>{esc(description)}</p>")
    if summary.get("content"):
        parts.append(f"<div class=\"content\"><p>{esc(_text(summary['content']))}</p></div>")
    items = summary.get("items") or []
    if items:
        parts.append('<ul class="items">')
        for item in items[:MAX_RENDERED_ITEMS]:
            if isinstance(item, dict):
                item_summary = summarize_payload(item)
                label = _text(item_summary.get("title")) or _text(item)
                detail = _text(item_summary.get("description"))
                parts.append(f"<li><h2>{esc(label)}</h2><p>{esc(detail)}</p></li>" if detail else f"<li>{esc(label)}</li>")
            else:
                parts.append(f"<li>{esc(_text(item))}</li>")
        parts.append("</ul>")
    parts.append("</article></main></body></html>")
    return "".join(parts)


def _is_json_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return "json" in content_type


class ApiExecutor:
    """Succeeds only when the site exposes JSON endpoints."""

    name = "api"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        endpoint_timeout: float = 10.0,
        max_endpoints: int = 5,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.endpoint_timeout = endpoint_timeout
        self.max_endpoints = max_endpoints

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(follow_redirects=True, max_redirects=5)
            self._owns_client = True
        return self._client

    async def fetch(self, url: str, options: FetchOptions) -> RawPage:
        client = self._get_client()
        headers = {"User-Agent": options.user_agent or DEFAULT_USER_AGENT, **options.request_headers()}
        cookies = {c["name"]: c["value"] for c in options.request_cookies() if "name" in c and "value" in c}
        start = time.monotonic()

        try:
            response = await client.get(url, headers=headers, cookies=cookies or None, timeout=options.timeout)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"Request timed out after {options.timeout:.0f}s", url=url) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Connection failed: {e}", url=url) from e
        if response.status_code >= 400:
            raise NetworkError(describe_status(response.status_code), url=url, status=response.status_code)

        if _is_json_response(response):
            payload = self._decode(response)
            if payload is not None:
                return self._page(url, str(response.url), response, payload, start)

        endpoints = discover_endpoints(response.text, str(response.url))
        logger.debug("API endpoints discovered", url=url, count=len(endpoints))
        json_headers = {**headers, "Accept": "application/json, text/plain, */*", "Referer": url}
        for endpoint in endpoints[: self.max_endpoints]:
            found = await self._fetch_endpoint(client, endpoint, json_headers, cookies)
            if found is None:
                continue
            endpoint_response, payload = found
            logger.info("API endpoint yielded JSON", url=url, endpoint=endpoint.url, confidence=endpoint.confidence)
            return self._page(url, str(response.url), endpoint_response, payload, start, api_endpoint=endpoint.url)

        raise NetworkError("No API endpoints found", url=url)

    async def _fetch_endpoint(
        self,
        client: httpx.AsyncClient,
        endpoint: ApiEndpoint,
        headers: Dict[str, str],
        cookies: Dict[str, str],
    ) -> Optional[tuple]:
        try:
            response = await client.get(endpoint.url, headers=headers, cookies=cookies or None, timeout=self.endpoint_timeout)
        except httpx.HTTPError as e:
            logger.debug("API endpoint request failed", endpoint=endpoint.url, error=str(e))
            return None
        if response.status_code >= 400 or not _is_json_response(response):
            return None
        payload = self._decode(response)
        return None if payload is None else (response, payload)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _page(
        self,
        url: str,
        final_url: str,
        response: httpx.Response,
        payload: Any,
        start: float,
        api_endpoint: Optional[str] = None,
    ) -> RawPage:
        return RawPage(
            url=url,
            final_url=final_url,
            status=response.status_code,
            html=render_payload(payload, url),
            headers=dict(response.headers),
            timing_ms=(time.monotonic() - start) * 1000,
            method=self.name,
            json_payload=payload,
            api_endpoint=api_endpoint or final_url,
        )

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
