"""
Extraction schemas: which fields to pull for a kind of page and where to find them.

Each field lists CSS selectors for the rendered page and dotted JSON-LD paths
for pages that embed schema.org data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Tuple

from adaptivecrawl.errors import InvalidConfig

FieldType = Literal["text", "number", "currency", "date", "url", "email", "phone", "array"]


@dataclass(frozen=True)
class FieldSpec:
    type: FieldType = "text"
    selector: Optional[str] = None
    attribute: Optional[str] = None
    required: bool = False
    multiple: bool = False
    jsonld: Tuple[str, ...] = ()


@dataclass
class ExtractionSchema:
    name: str
    fields: Dict[str, FieldSpec]
    version: str = "1.0"
    jsonld_types: Tuple[str, ...] = ()

    @property
    def required_fields(self) -> List[str]:
        return [name for name, spec in self.fields.items() if spec.required]

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "version": self.version,
            "jsonld_types": list(self.jsonld_types),
            "fields": {
                name: {
                    "type": spec.type,
                    "selector": spec.selector,
                    "attribute": spec.attribute,
                    "required": spec.required,
                    "multiple": spec.multiple,
                }
                for name, spec in self.fields.items()
            },
        }


PRODUCT = ExtractionSchema(
    name="product",
    jsonld_types=("Product",),
    fields={
        "title": FieldSpec("text", "h1, .product-title, [data-product-name]", required=True, jsonld=("name",)),
        "price": FieldSpec("currency", ".price, .product-price, [data-price]", jsonld=("offers.price", "offers.lowPrice")),
        "description": FieldSpec("text", ".description, .product-description", jsonld=("description",)),
        "image": FieldSpec("url", "img.product-image, .product-img img", attribute="src", jsonld=("image.url", "image")),
        "rating": FieldSpec("number", ".rating, .stars", jsonld=("aggregateRating.ratingValue",)),
        "availability": FieldSpec("text", ".stock, .availability", jsonld=("offers.availability",)),
        "sku": FieldSpec("text", ".sku, [data-sku]", jsonld=("sku",)),
        "brand": FieldSpec("text", ".brand, .manufacturer", jsonld=("brand.name", "brand")),
        "category": FieldSpec("text", ".breadcrumb, .category", jsonld=("category",)),
    },
)

ARTICLE = ExtractionSchema(
    name="article",
    jsonld_types=("Article", "NewsArticle", "BlogPosting", "TechArticle", "Report"),
    fields={
        "title": FieldSpec("text", "h1, .article-title, .post-title", required=True, jsonld=("headline", "name")),
        "author": FieldSpec("text", '.author, .byline, [rel="author"]', jsonld=("author.name", "author")),
        "publish_date": FieldSpec("date", ".date, .publish-date, time", attribute="datetime", jsonld=("datePublished",)),
        "content": FieldSpec("text", ".article-content, .post-content, .entry-content", jsonld=("articleBody",)),
        "excerpt": FieldSpec("text", ".excerpt, .summary", jsonld=("description",)),
        "tags": FieldSpec("array", ".tags a, .tag", multiple=True, jsonld=("keywords",)),
        "category": FieldSpec("text", ".category, .section", jsonld=("articleSection",)),
        "read_time": FieldSpec("text", ".read-time, .reading-time", jsonld=("timeRequired",)),
    },
)

CONTACT = ExtractionSchema(
    name="contact",
    jsonld_types=("Organization", "LocalBusiness", "Person", "ContactPoint", "Corporation"),
    fields={
        "name": FieldSpec("text", ".name, .contact-name, h1", jsonld=("name",)),
        "email": FieldSpec("email", 'a[href^="mailto:"], .email', jsonld=("email", "contactPoint.email")),
        "phone": FieldSpec("phone", 'a[href^="tel:"], .phone', jsonld=("telephone", "contactPoint.telephone")),
        "address": FieldSpec("text", ".address, .location", jsonld=("address.streetAddress", "address")),
        "website": FieldSpec("url", 'a[href^="http"], .website', attribute="href", jsonld=("url",)),
        "description": FieldSpec("text", ".description, .bio", jsonld=("description",)),
        "social_media": FieldSpec(
            "array",
            'a[href*="facebook"], a[href*="twitter"], a[href*="linkedin"]',
            attribute="href",
            multiple=True,
            jsonld=("sameAs",),
        ),
    },
)

EVENT = ExtractionSchema(
    name="event",
    jsonld_types=("Event", "MusicEvent", "BusinessEvent", "SportsEvent", "EducationEvent"),
    fields={
        "title": FieldSpec("text", "h1, .event-title", required=True, jsonld=("name",)),
        "date": FieldSpec("date", ".date, .event-date, time", jsonld=("startDate",)),
        "location": FieldSpec("text", ".location, .venue", jsonld=("location.name", "location")),
        "description": FieldSpec("text", ".description, .event-description", jsonld=("description",)),
        "price": FieldSpec("currency", ".price, .ticket-price", jsonld=("offers.price",)),
        "organizer": FieldSpec("text", ".organizer, .host", jsonld=("organizer.name", "organizer")),
    },
)

JOB = ExtractionSchema(
    name="job",
    jsonld_types=("JobPosting",),
    fields={
        "title": FieldSpec("text", "h1, .job-title", required=True, jsonld=("title", "name")),
        "company": FieldSpec("text", ".company, .employer", jsonld=("hiringOrganization.name", "hiringOrganization")),
        "location": FieldSpec(
            "text", ".location, .job-location", jsonld=("jobLocation.address.addressLocality", "jobLocation.name")
        ),
        "description": FieldSpec("text", ".description, .job-description", jsonld=("description",)),
        "salary": FieldSpec("currency", ".salary, .pay", jsonld=("baseSalary.value.value", "baseSalary.value")),
        "employment_type": FieldSpec("text", ".employment-type, .job-type", jsonld=("employmentType",)),
        "post_date": FieldSpec("date", ".post-date, .posted", jsonld=("datePosted",)),
        "requirements": FieldSpec("text", ".requirements, .qualifications", jsonld=("qualifications",)),
    },
)

GENERIC = ExtractionSchema(
    name="generic",
    fields={
        "title": FieldSpec("text", "h1, h2, .title", required=True),
        "content": FieldSpec("text", "p, .content, .text"),
        "links": FieldSpec("array", "a", attribute="href", multiple=True),
        "images": FieldSpec("array", "img", attribute="src", multiple=True),
    },
)

DETECTION_ORDER = ("product", "article", "contact", "event", "job")


class SchemaRegistry:
    """Named schemas; built-ins can be replaced by custom ones of the same name."""

    def __init__(self) -> None:
        self._schemas: Dict[str, ExtractionSchema] = {
            s.name: s for s in (PRODUCT, ARTICLE, CONTACT, EVENT, JOB, GENERIC)
        }

    def get_available_schemas(self) -> List[str]:
        return list(self._schemas)

    def get_schema(self, name: str) -> Optional[ExtractionSchema]:
        return self._schemas.get(name)

    def add_custom_schema(self, schema: ExtractionSchema) -> None:
        if not schema.fields:
            raise InvalidConfig(f"Schema {schema.name!r} has no fields")
        self._schemas[schema.name] = schema

    def for_jsonld_type(self, type_name: str) -> Optional[ExtractionSchema]:
        for schema in self._schemas.values():
            if type_name in schema.jsonld_types:
                return schema
        return None


def selectors_schema(name: str, selectors: Dict[str, str]) -> ExtractionSchema:
    """Ad-hoc text schema from a ``field -> selector`` mapping."""
    return ExtractionSchema(name=name, fields={k: FieldSpec("text", v) for k, v in selectors.items()})


__all__ = [
    "DETECTION_ORDER",
    "ExtractionSchema",
    "FieldSpec",
    "FieldType",
    "SchemaRegistry",
    "selectors_schema",
    "GENERIC",
]
