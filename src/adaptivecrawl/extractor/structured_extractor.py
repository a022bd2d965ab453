"""
Schema-driven structured data extraction.

Three sources are tried per page, most reliable first:

* embedded JSON-LD mapped onto a schema (``pattern``)
* CSS selectors of the detected or configured schema (``selector``)
* regular expressions over the page text for prices, emails and phones
  (``heuristic``), only for fields the selectors left empty
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import urljoin, urlparse

import structlog
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from adaptivecrawl.config.config import ExtractionConfig
from adaptivecrawl.extractor.schemas import DETECTION_ORDER, ExtractionSchema, FieldSpec, SchemaRegistry, selectors_schema
from adaptivecrawl.models import ExtractedContent, StructuredDataItem
from adaptivecrawl.observability import increment

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
PRICE_RE = re.compile(r"[$€£¥]\s?\d[\d,]*(?:\.\d{1,2})?|\d[\d,]*(?:\.\d{1,2})?\s?(?:USD|EUR|GBP)")
US_PHONE_RE = re.compile(r"\d{3}-\d{3}-\d{4}|\(\d{3}\)\s*\d{3}-\d{4}")
SLASH_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")

HEURISTIC_PATTERNS = {"currency": PRICE_RE, "email": EMAIL_RE, "phone": PHONE_RE}

MAX_ARRAY_ITEMS = 50


@dataclass
class StructuredExtraction:
    items: List[StructuredDataItem] = field(default_factory=list)
    extracted_total: int = 0

    @property
    def discarded(self) -> int:
        return self.extracted_total - len(self.items)


def filter_by_quality(items: Iterable[StructuredDataItem], threshold: float) -> List[StructuredDataItem]:
    """Items scoring at least ``threshold``. Applying it twice changes nothing."""
    return [item for item in items if item.quality_score >= threshold]


def score_fields(fields: Dict[str, Any], schema: ExtractionSchema) -> float:
    """``0.6 * extracted/total + 0.4 * required_extracted/required``, two decimals."""
    total = len(schema.fields)
    required = schema.required_fields
    extracted = sum(1 for name in schema.fields if _present(fields.get(name)))
    required_extracted = sum(1 for name in required if _present(fields.get(name)))
    base = extracted / total if total else 0.0
    required_score = required_extracted / len(required) if required else 1.0
    return round(base * 0.6 + required_score * 0.4, 2)


def _present(value: Any) -> bool:
    return value is not None and value != [] and value != ""


# ------------------------------------------------------------------ conversion


def _parse_currency(value: str) -> Optional[float]:
    digits = re.sub(r"[^0-9.,]", "", value)
    if "," in digits and "." in digits:
        digits = digits.replace(",", "")
    elif re.fullmatch(r"\d+,\d{1,2}", digits):
        digits = digits.replace(",", ".")
    else:
        digits = digits.replace(",", "")
    try:
        return float(digits)
    except ValueError:
        return None


def convert_value(value: Any, field_type: str, base_url: str = "") -> Any:
    """Coerce a raw value to the field type; None when it does not fit."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("name") or value.get("url") or value.get("@id") or value.get("value")
        if value is None:
            return None
    if isinstance(value, list) and field_type != "array":
        value = value[0] if value else None
        return convert_value(value, field_type, base_url)
    if field_type == "array":
        if isinstance(value, list):
            items = [convert_value(v, "text", base_url) for v in value]
        elif isinstance(value, str) and "," in value:
            items = [part.strip() for part in value.split(",")]
        else:
            items = [convert_value(value, "text", base_url)]
        items = [i for i in items if i]
        return items[:MAX_ARRAY_ITEMS] or None

    text = str(value).strip()
    if not text:
        return None

    if field_type == "number":
        try:
            return float(re.sub(r"[^0-9.\-]", "", text))
        except ValueError:
            return None
    if field_type == "currency":
        return _parse_currency(text)
    if field_type == "date":
        try:
            return dateutil_parser.parse(text).isoformat()
        except (ValueError, OverflowError):
            return None
    if field_type == "url":
        absolute = urljoin(base_url, text) if base_url else text
        return absolute if urlparse(absolute).scheme in ("http", "https") else None
    if field_type == "email":
        email = text.lower().removeprefix("mailto:").split("?")[0]
        return email if EMAIL_RE.fullmatch(email) else None
    if field_type == "phone":
        phone = re.sub(r"[^0-9+()\-\s]", "", text.removeprefix("tel:")).strip()
        return phone if len(phone) >= 10 else None
    return text


def _resolve_path(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


# ---------------------------------------------------------------- extraction


class StructuredExtractor:
    """Extracts ``StructuredDataItem`` records from pages."""

    def __init__(self, registry: Optional[SchemaRegistry] = None, parser: str = "html.parser") -> None:
        self.registry = registry or SchemaRegistry()
        self.parser = parser

    def get_available_schemas(self) -> List[str]:
        return self.registry.get_available_schemas()

    def get_schema(self, name: str) -> Optional[ExtractionSchema]:
        return self.registry.get_schema(name)

    def add_custom_schema(self, schema: ExtractionSchema) -> None:
        self.registry.add_custom_schema(schema)

    async def extract(self, content: ExtractedContent, extraction: ExtractionConfig) -> StructuredExtraction:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract_sync, content, extraction)

    def extract_sync(self, content: ExtractedContent, extraction: ExtractionConfig) -> StructuredExtraction:
        if not extraction.enable_structured_data or not content.html:
            return StructuredExtraction()

        soup = BeautifulSoup(content.html, self.parser)
        allowed = set(extraction.data_types)
        items: List[StructuredDataItem] = []

        items.extend(self._from_jsonld(soup, content.url, allowed))
        covered = {item.schema for item in items}

        for schema in self._selector_schemas(soup, extraction, allowed):
            if schema.name in covered:
                continue
            item = self._from_selectors(soup, schema, content.url)
            if item is not None:
                items.append(item)

        accepted = filter_by_quality(items, extraction.quality_threshold)
        accepted_ids = {id(item) for item in accepted}
        for item in items:
            increment(
                "structured_items",
                labels={"schema": item.schema, "accepted": "true" if id(item) in accepted_ids else "false"},
            )
        if len(accepted) < len(items):
            logger.debug(
                "Discarded low quality structured items",
                url=content.url,
                discarded=len(items) - len(accepted),
                threshold=extraction.quality_threshold,
            )
        return StructuredExtraction(items=accepted, extracted_total=len(items))

    # -------------------------------------------------------------- JSON-LD

    def _jsonld_nodes(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        nodes: List[Dict[str, Any]] = []
        for script in soup.find_all("script", type="application/ld+json"):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw.strip())
            except json.JSONDecodeError as e:
                logger.debug("Invalid JSON-LD block", error=str(e))
                continue
            stack = data if isinstance(data, list) else [data]
            for node in stack:
                if not isinstance(node, dict):
                    continue
                graph = node.get("@graph")
                if isinstance(graph, list):
                    nodes.extend(n for n in graph if isinstance(n, dict))
                else:
                    nodes.append(node)
        return nodes

    def _from_jsonld(self, soup: BeautifulSoup, url: str, allowed: Set[str]) -> List[StructuredDataItem]:
        items = []
        for node in self._jsonld_nodes(soup):
            types = node.get("@type")
            for type_name in types if isinstance(types, list) else [types]:
                if not isinstance(type_name, str):
                    continue
                schema = self.registry.for_jsonld_type(type_name)
                if schema is None or (allowed and schema.name not in allowed):
                    continue
                fields = self._map_jsonld(node, schema, url)
                if any(_present(v) for v in fields.values()):
                    items.append(
                        StructuredDataItem(
                            url=url,
                            schema=schema.name,
                            fields=fields,
                            quality_score=score_fields(fields, schema),
                            extraction_method="pattern",
                        )
                    )
                break
        return items

    @staticmethod
    def _map_jsonld(node: Dict[str, Any], schema: ExtractionSchema, url: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for name, spec in schema.fields.items():
            value = None
            for path in spec.jsonld:
                value = convert_value(_resolve_path(node, path), spec.type, url)
                if _present(value):
                    break
            if _present(value) or spec.required:
                fields[name] = value if _present(value) else None
        return fields

    # ------------------------------------------------------------ selectors

    def _selector_schemas(self, soup: BeautifulSoup, extraction: ExtractionConfig, allowed: Set[str]) -> List[ExtractionSchema]:
        if extraction.custom_selectors:
            return [selectors_schema("custom", extraction.custom_selectors)]

        schemas = []
        # Custom schemas named explicitly are always applied
        for name in extraction.data_types:
            schema = self.registry.get_schema(name)
            if schema is not None and name not in DETECTION_ORDER and name != "generic":
                schemas.append(schema)

        detected = self.detect_schema(soup, allowed)
        if detected is not None:
            schemas.append(detected)
        return schemas

    def detect_schema(self, soup: BeautifulSoup, allowed: Optional[Set[str]] = None) -> Optional[ExtractionSchema]:
        """First matching built-in schema, falling back to ``generic``."""
        allowed = allowed or set()
        text = soup.get_text(" ", strip=True).lower()
        html = str(soup).lower()
        checks = {
            "product": self._looks_like_product,
            "article": self._looks_like_article,
            "contact": self._looks_like_contact,
            "event": self._looks_like_event,
            "job": self._looks_like_job,
        }
        for name in DETECTION_ORDER:
            if allowed and name not in allowed:
                continue
            if checks[name](soup, text, html):
                return self.registry.get_schema(name)
        if not allowed or "generic" in allowed:
            return self.registry.get_schema("generic")
        return None

    @staticmethod
    def _looks_like_product(soup: BeautifulSoup, text: str, html: str) -> bool:
        words = ("price", "buy", "cart", "purchase", "product", "sku", "inventory")
        selectors = (".price", ".add-to-cart", ".buy-now", ".product")
        return any(w in text for w in words) and any(soup.select_one(s) is not None for s in selectors)

    @staticmethod
    def _looks_like_article(soup: BeautifulSoup, text: str, html: str) -> bool:
        words = ("author", "published", "article", "blog", "post")
        selectors = (".author", ".date", "time", ".article", ".post")
        has_signal = any(w in text for w in words) or any(soup.select_one(s) is not None for s in selectors)
        return has_signal and len(text) > 500

    @staticmethod
    def _looks_like_contact(soup: BeautifulSoup, text: str, html: str) -> bool:
        words = ("contact", "email", "phone", "address", "location")
        has_email = "mailto:" in html or EMAIL_RE.search(text) is not None
        has_phone = US_PHONE_RE.search(text) is not None
        return any(w in text for w in words) and (has_email or has_phone)

    @staticmethod
    def _looks_like_event(soup: BeautifulSoup, text: str, html: str) -> bool:
        words = ("event", "date", "location", "venue", "ticket", "register")
        has_date = soup.select_one("time") is not None or SLASH_DATE_RE.search(text) is not None
        return any(w in text for w in words) and has_date

    @staticmethod
    def _looks_like_job(soup: BeautifulSoup, text: str, html: str) -> bool:
        words = ("job", "career", "position", "salary", "employment", "apply")
        structure = soup.select_one(".company") is not None or soup.select_one(".salary") is not None
        return any(w in text for w in words) or structure

    def _from_selectors(self, soup: BeautifulSoup, schema: ExtractionSchema, url: str) -> Optional[StructuredDataItem]:
        fields: Dict[str, Any] = {}
        from_selectors = False
        from_heuristics = False
        page_text: Optional[str] = None

        for name, spec in schema.fields.items():
            value = self._select_value(soup, spec, url)
            if _present(value):
                from_selectors = True
            elif spec.type in HEURISTIC_PATTERNS:
                if page_text is None:
                    page_text = soup.get_text(" ", strip=True)
                match = HEURISTIC_PATTERNS[spec.type].search(page_text)
                value = convert_value(match.group(0), spec.type, url) if match else None
                from_heuristics = from_heuristics or _present(value)
            if _present(value) or spec.required:
                fields[name] = value if _present(value) else None

        if not from_selectors and not from_heuristics:
            return None
        return StructuredDataItem(
            url=url,
            schema=schema.name,
            fields=fields,
            quality_score=score_fields(fields, schema),
            extraction_method="selector" if from_selectors else "heuristic",
        )

    @staticmethod
    def _select_value(soup: BeautifulSoup, spec: FieldSpec, url: str) -> Any:
        if not spec.selector:
            return None
        elements = soup.select(spec.selector)
        if not elements:
            return None

        def raw(element: Any) -> Optional[str]:
            if spec.attribute:
                attr = element.get(spec.attribute)
                if attr:
                    return str(attr)
            text = element.get_text(" ", strip=True)
            if not text and element.name == "a" and spec.type in ("email", "phone"):
                return element.get("href")
            return text or None

        if spec.multiple:
            values: List[Any] = []
            for element in elements[:MAX_ARRAY_ITEMS]:
                value = raw(element)
                if spec.attribute in ("href", "src") and value:
                    value = urljoin(url, value)
                if value and value not in values:
                    values.append(value)
            return convert_value(values, spec.type, url) if values else None

        for element in elements:
            value = convert_value(raw(element), spec.type, url)
            if _present(value):
                return value
        return None

