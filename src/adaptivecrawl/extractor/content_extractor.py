"""
HTML content extraction and quality scoring.

Turns a fetched page into an ``ExtractedContent`` record: metadata, headings,
links, classified images, typed content chunks and the main readable text.
Parsing runs in the default thread pool since BeautifulSoup is CPU bound.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections import Counter
from typing import List, Optional, Set
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup, Tag

from adaptivecrawl.crawler.frontier import extract_domain, is_internal_url, normalize_url
from adaptivecrawl.models import ContentChunk, ExtractedContent, Heading, Image, Link, RawPage

logger = structlog.get_logger(__name__)

MAX_LINKS = 500
MAX_IMAGES = 200

TITLE_SOURCES = ("title", 'meta[property="og:title"]', 'meta[name="twitter:title"]', "h1")
DESCRIPTION_SOURCES = (
    'meta[name="description"]',
    'meta[property="og:description"]',
    'meta[name="twitter:description"]',
)

CHUNK_PATTERNS = (
    ("article", 0.9, ("article", ".article", ".post", ".blog-post", ".news-item")),
    ("product", 0.8, (".product", ".product-item", ".product-card", ".item", "[data-product]")),
    ("listing", 0.7, (".listing", ".list-item", ".search-result", ".result-item", "ul > li", "ol > li")),
    ("table", 0.9, ("table", ".table", ".data-table")),
    ("navigation", 0.9, ("nav", ".navigation", ".menu", ".nav", "header nav")),
    ("footer", 0.9, ("footer", ".footer", ".page-footer")),
    ("sidebar", 0.8, ("aside", ".sidebar", ".side-panel", ".widget")),
)
FALLBACK_CHUNK_SELECTORS = ("main", '[role="main"]', ".main-content", ".content")

SEMANTIC_CONTAINERS = ("main", "article", '[role="main"]', '[role="article"]')
CONTENT_CONTAINERS = (
    "#content",
    "#main",
    "#main-content",
    "#article",
    "#post",
    "#post-content",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".article-body",
    ".content-body",
    ".main-content",
    ".primary-content",
    ".content",
    ".post",
    ".post-body",
    ".entry",
    ".entry-body",
    '[itemprop="articleBody"]',
    '[itemprop="mainEntity"]',
)
NESTED_NOISE = (
    "nav",
    "aside",
    ".sidebar",
    ".widget-area",
    ".ad",
    ".advertisement",
    "#ad",
    "#advertisement",
    '[id*="google_ads"]',
    "#comments",
    ".comments-area",
    ".comment-section",
)
CONTENT_AREA_SELECTOR = "article, .content, .main, main, #content, #main"

_WS_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def is_substantial(text: str, min_length: int = 100, max_char_ratio: float = 0.3) -> bool:
    """Long enough and not dominated by one repeated character."""
    if len(text) < min_length:
        return False
    most_common = Counter(text.lower()).most_common(1)[0][1]
    return most_common / len(text) <= max_char_ratio


def quality_score(content: ExtractedContent) -> float:
    """Heuristic 0-100 score of how useful a page's content is."""
    score = 0
    if content.word_count > 1000:
        score += 30
    elif content.word_count > 500:
        score += 20
    elif content.word_count > 100:
        score += 10
    if content.title and len(content.title) > 10 and "Error" not in content.title:
        score += 20
    if content.description and len(content.description) > 50:
        score += 15
    if len(content.links) > 5:
        score += 15
    if content.headings:
        score += 10
    if content.chunks:
        score += 10
    return float(min(score, 100))


def completeness_score(content: ExtractedContent) -> float:
    present = [
        bool(content.title),
        bool(content.description),
        bool(content.headings),
        bool(content.main_text),
        bool(content.links),
        bool(content.images),
        bool(content.language),
    ]
    return round(100.0 * sum(present) / len(present), 2)


def _clean_text(text: str) -> str:
    lines = [_WS_RE.sub(" ", line).strip() for line in text.splitlines()]
    joined = "\n".join(line for line in lines if len(line) > 1 or not line)
    return _BLANK_LINES_RE.sub("\n\n", joined).strip()


class ContentExtractor:
    """BeautifulSoup extractor producing ``ExtractedContent``."""

    def __init__(self, parser: str = "html.parser", max_links: int = MAX_LINKS) -> None:
        self.parser = parser
        self.max_links = max_links

    async def extract(self, page: RawPage) -> ExtractedContent:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract_sync, page)

    def extract_sync(self, page: RawPage) -> ExtractedContent:
        base_url = page.final_url or page.url
        soup = BeautifulSoup(page.html or "", self.parser)
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()

        content = ExtractedContent(
            url=page.url,
            title=self._title(soup),
            description=self._description(soup),
            keywords=self._keywords(soup),
            language=self._language(soup),
            headings=self._headings(soup),
            links=self._links(soup, base_url, extract_domain(page.url)),
            images=self._images(soup, base_url),
            chunks=self._chunks(soup),
            method=page.method,
            html=page.html,
        )
        content.main_text = self._main_text(soup)
        content.word_count = len(content.main_text.split())
        content.content_hash = hashlib.sha256(content.main_text.encode("utf-8")).hexdigest()
        content.quality_score = quality_score(content)
        content.completeness_score = completeness_score(content)
        return content

    # ----------------------------------------------------------------- metadata

    @staticmethod
    def _title(soup: BeautifulSoup) -> str:
        for selector in TITLE_SOURCES:
            element = soup.select_one(selector)
            if element is None:
                continue
            value = element.get("content") if element.name == "meta" else element.get_text(" ", strip=True)
            if value and str(value).strip():
                return str(value).strip()
        return ""

    @staticmethod
    def _description(soup: BeautifulSoup) -> str:
        for selector in DESCRIPTION_SOURCES:
            element = soup.select_one(selector)
            value = element.get("content") if element is not None else None
            if value and str(value).strip():
                return str(value).strip()
        return ""

    @staticmethod
    def _keywords(soup: BeautifulSoup) -> List[str]:
        element = soup.select_one('meta[name="keywords"]')
        raw = element.get("content") if element is not None else None
        if not raw:
            return []
        return [k.strip() for k in str(raw).split(",") if k.strip()]

    @staticmethod
    def _language(soup: BeautifulSoup) -> Optional[str]:
        html_tag = soup.find("html")
        lang = html_tag.get("lang") if isinstance(html_tag, Tag) else None
        if not lang:
            meta = soup.select_one('meta[http-equiv="content-language"]')
            lang = meta.get("content") if meta is not None else None
        if not lang:
            return None
        return str(lang).split("-")[0].strip().lower() or None

    @staticmethod
    def _headings(soup: BeautifulSoup) -> List[Heading]:
        headings = []
        for element in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            text = element.get_text(" ", strip=True)
            if text:
                headings.append(Heading(level=int(element.name[1]), text=text))
        return headings

    # ------------------------------------------------------------ links, images

    def _links(self, soup: BeautifulSoup, base_url: str, domain: str) -> List[Link]:
        links: List[Link] = []
        seen: Set[str] = set()
        for anchor in soup.find_all("a", href=True):
            href = str(anchor["href"]).strip()
            if not href or href.startswith(("javascript:", "mailto:", "tel:", "#")):
                continue
            try:
                absolute = normalize_url(urljoin(base_url, href))
            except ValueError:
                continue
            if not absolute.startswith(("http://", "https://")) or absolute in seen:
                continue
            seen.add(absolute)
            links.append(Link(text=anchor.get_text(" ", strip=True), href=absolute, internal=is_internal_url(absolute, domain)))
            if len(links) >= self.max_links:
                break
        return links

    def _images(self, soup: BeautifulSoup, base_url: str) -> List[Image]:
        images: List[Image] = []
        seen: Set[str] = set()
        content_areas = {id(area) for area in soup.select(CONTENT_AREA_SELECTOR)}
        for img in soup.find_all("img", src=True):
            src = str(img["src"]).strip()
            if not src or src.startswith("data:") or "1x1" in src or "pixel" in src:
                continue
            absolute = urljoin(base_url, src)
            if absolute in seen:
                continue
            seen.add(absolute)
            alt = str(img.get("alt") or "")
            images.append(Image(src=absolute, alt=alt, type=self._classify_image(img, alt, src, content_areas)))
            if len(images) >= MAX_IMAGES:
                break
        return images

    @staticmethod
    def _classify_image(img: Tag, alt: str, src: str, content_areas: Set[int]) -> str:
        classes = " ".join(img.get("class") or [])
        img_id = str(img.get("id") or "")
        parent = img.parent if isinstance(img.parent, Tag) else None
        parent_classes = " ".join(parent.get("class") or []) if parent is not None else ""
        alt_lower = alt.lower()
        src_lower = src.lower()

        if "logo" in classes or "logo" in img_id or "logo" in alt_lower or "logo" in src_lower or "logo" in parent_classes:
            return "logo"
        if "product" in classes or "product" in parent_classes or "product" in alt_lower or "product" in src_lower:
            return "product"
        if "avatar" in classes or "profile" in classes or "avatar" in alt_lower or "profile" in alt_lower:
            return "avatar"
        if "icon" in classes or "icon" in src_lower or img.get("width") in ("16", "32") or img.get("height") in ("16", "32"):
            return "icon"
        if any(id(ancestor) in content_areas for ancestor in img.parents):
            return "content"
        return "unknown"

    # ------------------------------------------------------------------ chunks

    @staticmethod
    def _chunks(soup: BeautifulSoup) -> List[ContentChunk]:
        chunks: List[ContentChunk] = []
        seen: Set[str] = set()
        for chunk_type, confidence, selectors in CHUNK_PATTERNS:
            for selector in selectors:
                for element in soup.select(selector):
                    text = element.get_text(" ", strip=True)
                    if len(text) > 20 and text not in seen:
                        seen.add(text)
                        chunks.append(ContentChunk(type=chunk_type, selector=selector, text=text, confidence=confidence))

        if not chunks:
            for selector in FALLBACK_CHUNK_SELECTORS:
                for element in soup.select(selector):
                    text = element.get_text(" ", strip=True)
                    if len(text) > 50 and text not in seen:
                        seen.add(text)
                        chunks.append(ContentChunk(type="unknown", selector=selector, text=text, confidence=0.5))
        return chunks

    # --------------------------------------------------------------- main text

    def _main_text(self, soup: BeautifulSoup) -> str:
        working = BeautifulSoup(str(soup), self.parser)
        for tag in working(["iframe", "embed", "object", "svg"]):
            tag.decompose()

        container = self._find_container(working)
        if container is None:
            container = self._densest_block(working) or working.body or working
        for selector in NESTED_NOISE:
            for element in container.select(selector):
                if not element.decomposed:
                    element.decompose()
        return _clean_text(container.get_text("\n"))

    @staticmethod
    def _find_container(soup: BeautifulSoup) -> Optional[Tag]:
        for selector in SEMANTIC_CONTAINERS + CONTENT_CONTAINERS:
            element = soup.select_one(selector)
            if element is not None and is_substantial(element.get_text(" ", strip=True)):
                return element
        return None

    @staticmethod
    def _densest_block(soup: BeautifulSoup) -> Optional[Tag]:
        """Block with the most paragraph text per link; link-heavy blocks are skipped."""
        best: Optional[Tag] = None
        best_score = -1.0
        for element in soup.find_all(["div", "section", "article"]):
            text = element.get_text(" ", strip=True)
            if len(text) < 200:
                continue
            links = len(element.find_all("a"))
            if links / max(len(text) / 100, 1) > 0.5:
                continue
            score = len(element.find_all("p")) * len(text) / max(links, 1)
            if score > best_score:
                best_score = score
                best = element
        return best
