"""
Schemas and parsers for the chart generation and data analysis use cases.
"""

import json
from datetime import datetime, timezone
from typing import Any

from vizom.parsing.parser import ResponseParser
from vizom.parsing.schema import (
    ArraySchema,
    NumberSchema,
    ObjectSchema,
    StringSchema,
)
from vizom.parsing.strategies import default_strategies
from vizom.parsing.types import ParseResult

MAX_RESPONSE_CHARS = 50_000

CHART_SCHEMA = ObjectSchema(
    properties={
        "config": ObjectSchema(
            properties={
                "type": StringSchema(),
                "data": ObjectSchema(
                    properties={
                        "labels": ArraySchema(items=StringSchema()),
                        "datasets": ArraySchema(),
                    },
                    required=("labels", "datasets"),
                ),
                "options": ObjectSchema(),
            },
            required=("type", "data", "options"),
        ),
        "metadata": ObjectSchema(
            properties={
                "chartType": StringSchema(),
                "dataPoints": NumberSchema(),
                "recommendations": ArraySchema(items=StringSchema()),
                "generatedAt": StringSchema(pattern=r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}"),
            },
            required=("chartType", "generatedAt"),
        ),
    },
    required=("config", "metadata"),
    additional_properties=False,
)

ANALYSIS_SCHEMA = ObjectSchema(
    properties={
        "summary": ObjectSchema(),
        "insights": ArraySchema(items=StringSchema()),
        "recommendations": ArraySchema(items=StringSchema()),
        "visualizations": ArraySchema(items=StringSchema()),
    },
    required=("summary", "insights", "recommendations", "visualizations"),
    additional_properties=False,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def chart_defaults() -> dict[str, Any]:
    """Sections backfilled when a chart response is only partly usable."""
    return {
        "config": {"type": "bar", "data": {"labels": [], "datasets": []}, "options": {}},
        "metadata": {
            "chartType": "unknown",
            "dataPoints": 0,
            "recommendations": [],
            "generatedAt": _now_iso(),
        },
    }


def minimal_chart() -> dict[str, Any]:
    """Placeholder chart returned when nothing could be recovered."""
    return {
        "config": {
            "type": "bar",
            "data": {"labels": ["Error"], "datasets": [{"data": [0]}]},
            "options": {"responsive": True},
        },
        "metadata": {
            "chartType": "fallback",
            "dataPoints": 1,
            "recommendations": ["API response could not be parsed"],
            "generatedAt": _now_iso(),
        },
    }


def analysis_defaults() -> dict[str, Any]:
    return {"summary": {}, "insights": [], "recommendations": [], "visualizations": []}


def minimal_analysis() -> dict[str, Any]:
    return {
        "summary": {},
        "insights": ["Analysis completed"],
        "recommendations": ["Review data quality"],
        "visualizations": [],
    }


class ResponseParsingService:
    """
    One parser per use case, each with its own fallback structures.

    Usage:
        parsing = ResponseParsingService()
        result = await parsing.parse_chart_response(content)
        chart = result.raise_for_error()
    """

    def __init__(self, debug: bool = False):
        self.chart_parser = ResponseParser(
            default_strategies(chart_defaults, minimal_chart), debug=debug
        )
        self.analysis_parser = ResponseParser(
            default_strategies(analysis_defaults, minimal_analysis), debug=debug
        )
        # No fabricated output for free-form responses
        self.generic_parser = ResponseParser(default_strategies(), debug=debug)

    async def parse_chart_response(self, response: str) -> ParseResult:
        """Parse a chart generation response."""
        return await self.chart_parser.parse(response, CHART_SCHEMA, "chart generation")

    async def parse_analysis_response(self, response: str) -> ParseResult:
        """Parse a data analysis response."""
        return await self.analysis_parser.parse(response, ANALYSIS_SCHEMA, "data analysis")

    async def parse_generic_response(self, response: str) -> ParseResult:
        """Parse any JSON response without a schema."""
        return await self.generic_parser.parse(response, None, "generic response")

    @staticmethod
    def validate_response_structure(response: str) -> dict[str, Any]:
        """
        Quick diagnostics for a raw response, without any recovery.

        Returns:
            Dict with is_valid_json, has_valid_structure, likely_chart_config
            and a list of issues
        """
        issues: list[str] = []
        is_valid_json = False
        has_valid_structure = False
        likely_chart_config = False

        try:
            parsed = json.loads(response)
        except ValueError as e:
            issues.append(f"Invalid JSON: {e}")
        else:
            is_valid_json = True
            if isinstance(parsed, dict):
                config = parsed.get("config")
                if isinstance(config, dict) and "data" in config and "options" in config:
                    likely_chart_config = True
                if any(parsed.get(key) for key in ("config", "metadata", "summary")):
                    has_valid_structure = True

        if "```" in response:
            issues.append("Response contains markdown code blocks")
        if "AI:" in response:
            issues.append("Response contains AI conversation markers")
        if len(response) > MAX_RESPONSE_CHARS:
            issues.append("Response is unusually long")

        return {
            "is_valid_json": is_valid_json,
            "has_valid_structure": has_valid_structure,
            "likely_chart_config": likely_chart_config,
            "issues": issues,
        }
