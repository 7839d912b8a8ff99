"""
Response parsing - turns unreliable LLM output into schema-valid data.

Provides:
- Schema nodes and schema_from_dict for describing expected payloads
- ResponseValidator: path-qualified schema validation
- ResponseParser: json parsing with ordered fallback strategies
- ResponseParsingService: chart, analysis and generic parsers
"""

from vizom.parsing.schema import (
    ArraySchema,
    BooleanSchema,
    NumberSchema,
    ObjectSchema,
    Schema,
    StringSchema,
    schema_from_dict,
)
from vizom.parsing.types import (
    FallbackStrategy,
    ParseError,
    ParseMetadata,
    ParseResult,
    RecoveryContext,
)
from vizom.parsing.validator import ResponseValidator, ValidationResult
from vizom.parsing.strategies import default_strategies
from vizom.parsing.parser import ResponseParser
from vizom.parsing.charts import (
    ANALYSIS_SCHEMA,
    CHART_SCHEMA,
    ResponseParsingService,
)

__all__ = [
    # Schema
    "ArraySchema",
    "BooleanSchema",
    "NumberSchema",
    "ObjectSchema",
    "Schema",
    "StringSchema",
    "schema_from_dict",
    # Results
    "FallbackStrategy",
    "ParseError",
    "ParseMetadata",
    "ParseResult",
    "RecoveryContext",
    # Validation
    "ResponseValidator",
    "ValidationResult",
    # Parsing
    "default_strategies",
    "ResponseParser",
    "ANALYSIS_SCHEMA",
    "CHART_SCHEMA",
    "ResponseParsingService",
]
