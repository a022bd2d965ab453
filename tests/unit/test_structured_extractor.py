"""
Unit tests for schema-driven structured data extraction.
"""

import pytest

from adaptivecrawl.config.config import ExtractionConfig
from adaptivecrawl.errors import InvalidConfig
from adaptivecrawl.extractor import (
    ContentExtractor,
    ExtractionSchema,
    FieldSpec,
    StructuredExtractor,
    convert_value,
    filter_by_quality,
)
from adaptivecrawl.extractor.structured_extractor import score_fields
from adaptivecrawl.models import RawPage, StructuredDataItem
from tests.helpers import metric_delta

URL = "https://shop.example.com/items/1"

SELECTOR_PRODUCT = """
<html><head><title>Gadget</title></head><body>
<div class="product">
  <h1>Gadget</h1>
  <span class="price">$1,299.50</span>
  <span class="sku">G-1</span>
  <span class="brand">Acme</span>
  <button class="add-to-cart">Add to cart</button>
</div>
</body></html>
"""

CONTACT_TEXT = """
<html><head><title>Reach us</title></head><body>
<p>Contact us at info@example.com or call (555) 123-4567 during office hours.</p>
</body></html>
"""

GRAPH_ARTICLE = """
<html><head><script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "WebSite", "name": "Example"},
  {"@type": "BlogPosting", "headline": "Graph Post", "author": {"@type": "Person", "name": "Ann"},
   "datePublished": "2024-01-02", "keywords": "python, crawling"}
]}
</script></head><body><p>Body</p></body></html>
"""


def content_for(html, url=URL):
    return ContentExtractor().extract_sync(RawPage(url=url, final_url=url, status=200, html=html))


def extraction(**kwargs):
    return ExtractionConfig(**kwargs)


@pytest.mark.unit
class TestJsonLd:
    def test_product_from_jsonld(self, product_html):
        extractor = StructuredExtractor()
        with metric_delta("adaptivecrawl_structured_items_total", 1, {"schema": "product", "accepted": "true"}):
            result = extractor.extract_sync(content_for(product_html), extraction())

        assert len(result.items) == 1
        item = result.items[0]
        assert item.schema == "product"
        assert item.extraction_method == "pattern"
        assert item.fields["title"] == "Super Widget"
        assert item.fields["price"] == 19.99
        assert item.fields["brand"] == "Acme"
        assert item.fields["sku"] == "SW-1"
        assert item.quality_score == 0.8
        assert result.discarded == 0

    def test_graph_nodes(self):
        result = StructuredExtractor().extract_sync(content_for(GRAPH_ARTICLE), extraction(quality_threshold=0.0))
        article = next(i for i in result.items if i.schema == "article")
        assert article.fields["title"] == "Graph Post"
        assert article.fields["author"] == "Ann"
        assert article.fields["publish_date"] == "2024-01-02T00:00:00"
        assert article.fields["tags"] == ["python", "crawling"]

    def test_invalid_jsonld_is_ignored(self):
        html = '<html><head><script type="application/ld+json">{not json</script></head><body></body></html>'
        result = StructuredExtractor().extract_sync(content_for(html), extraction(data_types=["product"]))
        assert result.items == []


@pytest.mark.unit
class TestSelectors:
    def test_detected_product_schema(self):
        result = StructuredExtractor().extract_sync(content_for(SELECTOR_PRODUCT), extraction(quality_threshold=0.5))

        item = result.items[0]
        assert item.schema == "product"
        assert item.extraction_method == "selector"
        assert item.fields == {"title": "Gadget", "price": 1299.5, "sku": "G-1", "brand": "Acme"}
        assert item.quality_score == 0.67

    def test_quality_threshold_discards(self):
        result = StructuredExtractor().extract_sync(content_for(SELECTOR_PRODUCT), extraction(quality_threshold=0.7))
        assert result.items == []
        assert result.extracted_total == 1
        assert result.discarded == 1

    def test_heuristic_fields(self):
        result = StructuredExtractor().extract_sync(content_for(CONTACT_TEXT), extraction(quality_threshold=0.5))

        item = result.items[0]
        assert item.schema == "contact"
        assert item.extraction_method == "heuristic"
        assert item.fields == {"email": "info@example.com", "phone": "(555) 123-4567"}
        assert item.quality_score == 0.57

    def test_data_types_restrict_schemas(self, product_html):
        result = StructuredExtractor().extract_sync(content_for(product_html), extraction(data_types=["article"]))
        assert result.items == []
        assert result.extracted_total == 0

    def test_custom_selectors(self, product_html):
        config = extraction(custom_selectors={"headline": "h1", "cost": ".price"})
        result = StructuredExtractor().extract_sync(content_for(product_html), config)

        custom = next(i for i in result.items if i.schema == "custom")
        assert custom.fields == {"headline": "Super Widget", "cost": "$19.99"}
        assert custom.quality_score == 1.0
        assert {i.schema for i in result.items} == {"product", "custom"}

    def test_custom_schema_by_name(self):
        extractor = StructuredExtractor()
        extractor.add_custom_schema(
            ExtractionSchema(name="recipe", fields={"dish": FieldSpec("text", ".dish", required=True)})
        )
        html = '<html><body><div class="dish">Soup</div></body></html>'
        result = extractor.extract_sync(content_for(html), extraction(data_types=["recipe"]))

        assert [(i.schema, i.fields) for i in result.items] == [("recipe", {"dish": "Soup"})]
        assert "recipe" in extractor.get_available_schemas()

    def test_disabled(self, product_html):
        result = StructuredExtractor().extract_sync(content_for(product_html), extraction(enable_structured_data=False))
        assert result.items == []

    @pytest.mark.asyncio
    async def test_async_extract(self, product_html):
        result = await StructuredExtractor().extract(content_for(product_html), extraction())
        assert result.items[0].schema == "product"


@pytest.mark.unit
class TestRegistry:
    def test_builtin_schemas(self):
        names = StructuredExtractor().get_available_schemas()
        assert names == ["product", "article", "contact", "event", "job", "generic"]

    def test_empty_schema_rejected(self):
        with pytest.raises(InvalidConfig):
            StructuredExtractor().add_custom_schema(ExtractionSchema(name="empty", fields={}))

    def test_custom_schema_replaces_builtin(self):
        extractor = StructuredExtractor()
        extractor.add_custom_schema(ExtractionSchema(name="product", fields={"title": FieldSpec("text", "h2")}))
        assert list(extractor.get_schema("product").fields) == ["title"]


@pytest.mark.unit
class TestQuality:
    def test_score_fields(self):
        schema = ExtractionSchema(
            name="s",
            fields={"a": FieldSpec(required=True), "b": FieldSpec(), "c": FieldSpec(), "d": FieldSpec()},
        )
        assert score_fields({"a": "x", "b": "y"}, schema) == 0.7
        assert score_fields({"b": "y"}, schema) == 0.15
        assert score_fields({}, schema) == 0.0

    def test_filter_is_idempotent(self):
        items = [
            StructuredDataItem(url=URL, schema="product", fields={}, quality_score=score)
            for score in (0.2, 0.7, 0.95)
        ]
        once = filter_by_quality(items, 0.7)
        assert [i.quality_score for i in once] == [0.7, 0.95]
        assert filter_by_quality(once, 0.7) == once


@pytest.mark.unit
class TestConvertValue:
    @pytest.mark.parametrize(
        "value,field_type,expected",
        [
            ("$1,299.99", "currency", 1299.99),
            ("12,50 EUR", "currency", 12.5),
            ("4.5 stars", "number", 4.5),
            ("/img/a.png", "url", "https://example.com/img/a.png"),
            ("javascript:void(0)", "url", None),
            ("mailto:Info@Example.com?subject=hi", "email", "info@example.com"),
            ("not-an-email", "email", None),
            ("tel:+1 555 123 4567", "phone", "+1 555 123 4567"),
            ("123", "phone", None),
            ("March 5, 2024", "date", "2024-03-05T00:00:00"),
            ("gibberish", "date", None),
            ("a, b, c", "array", ["a", "b", "c"]),
            ({"@type": "Brand", "name": "Acme"}, "text", "Acme"),
            (["first", "second"], "text", "first"),
            ("   ", "text", None),
            (None, "text", None),
        ],
    )
    def test_conversions(self, value, field_type, expected):
        assert convert_value(value, field_type, "https://example.com/p/") == expected
