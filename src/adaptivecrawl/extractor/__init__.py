"""Page content and structured data extraction."""

from adaptivecrawl.extractor.content_extractor import ContentExtractor, completeness_score, is_substantial, quality_score
from adaptivecrawl.extractor.schemas import ExtractionSchema, FieldSpec, SchemaRegistry
from adaptivecrawl.extractor.structured_extractor import (
    StructuredExtraction,
    StructuredExtractor,
    convert_value,
    filter_by_quality,
)

__all__ = [
    "ContentExtractor",
    "ExtractionSchema",
    "FieldSpec",
    "SchemaRegistry",
    "StructuredExtraction",
    "StructuredExtractor",
    "completeness_score",
    "convert_value",
    "filter_by_quality",
    "is_substantial",
    "quality_score",
]
