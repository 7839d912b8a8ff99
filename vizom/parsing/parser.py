"""
ResponseParser - JSON parsing with schema validation and ordered fallbacks.

Flow:
1. json.loads the raw text
2. Validate against the schema (if any); valid data returns immediately
3. Otherwise try the fallback strategies in ascending priority, re-validating
   every candidate they produce
4. When nothing yields valid data, return a failed ParseResult carrying the
   attempted strategies and suggestions
"""

import json
import time
from typing import Any, Iterable, Mapping

from loguru import logger

from vizom.parsing.schema import Schema, as_schema
from vizom.parsing.strategies import default_strategies
from vizom.parsing.types import (
    FallbackStrategy,
    ParseError,
    ParseMetadata,
    ParseResult,
    RecoveryContext,
)
from vizom.parsing.validator import ResponseValidator, ValidationResult
from vizom.services.errors import ErrorCode

FALLBACK_CONFIDENCE_FACTOR = 0.8
LONG_RESPONSE_CHARS = 10_000

PARSE_ERROR_SUGGESTIONS = [
    "Check if response is valid JSON",
    "Try cleaning up the response",
]


class ResponseParser:
    """
    Parses raw model output into validated data.

    Usage:
        parser = ResponseParser(default_strategies(minimal_fallback=make_empty_chart))
        result = await parser.parse(text, schema, "chart generation")
        if result.success:
            render(result.data)
    """

    def __init__(
        self,
        strategies: Iterable[FallbackStrategy] | None = None,
        validator: ResponseValidator | None = None,
        debug: bool = False,
    ):
        if strategies is None:
            strategies = default_strategies()
        self.strategies = sorted(strategies, key=lambda s: s.priority)
        self.validator = validator or ResponseValidator()
        self._debug = debug

    async def parse(
        self,
        response: str,
        schema: Schema | Mapping[str, Any] | None = None,
        context: str = "API response",
    ) -> ParseResult:
        """
        Parse and validate a response, falling back to recovery strategies.

        Never raises for malformed input; check ParseResult.success.
        """
        start = time.perf_counter()
        schema = as_schema(schema)
        metadata = ParseMetadata(response_length=len(response))
        attempted_fixes: list[str] = []

        try:
            data = json.loads(response)
        except (ValueError, RecursionError) as e:
            last_error = ParseError(
                code=ErrorCode.JSON_PARSE_ERROR.value,
                message=f"JSON parsing failed: {e}",
                original_response=response,
                attempted_fixes=attempted_fixes,
                suggestions=list(PARSE_ERROR_SUGGESTIONS),
            )
            recovery = RecoveryContext(schema=schema)
        else:
            validation = self._validate(data, schema)
            metadata.validation_passed = validation.is_valid
            metadata.confidence = self.calculate_confidence(response, validation)

            if validation.is_valid:
                metadata.parse_time = time.perf_counter() - start
                return ParseResult(success=True, data=data, metadata=metadata)

            last_error = self._validation_error(response, validation, attempted_fixes)
            recovery = RecoveryContext(schema=schema, candidate=data)

        for strategy in self.strategies:
            if not strategy.can_handle(last_error, response):
                continue

            attempted_fixes.append(strategy.name)
            self._log(f"{context}: trying '{strategy.name}'")

            try:
                candidate = await strategy.execute(response, recovery)
            except Exception as e:
                logger.warning(f"Fallback strategy '{strategy.name}' failed for {context}: {e}")
                continue

            validation = self._validate(candidate, schema)
            if validation.is_valid:
                metadata.parse_time = time.perf_counter() - start
                metadata.validation_passed = True
                metadata.fallback_used = True
                metadata.strategy = strategy.name
                metadata.confidence = (
                    self.calculate_confidence(response, validation) * FALLBACK_CONFIDENCE_FACTOR
                )
                logger.warning(
                    f"Parsed {context} using fallback '{strategy.name}' "
                    f"(confidence {metadata.confidence:.2f})"
                )
                return ParseResult(success=True, data=candidate, metadata=metadata)

            # Later strategies work from the closest parsed candidate
            last_error = self._validation_error(response, validation, attempted_fixes)
            recovery = RecoveryContext(schema=schema, candidate=candidate)

        metadata.parse_time = time.perf_counter() - start
        metadata.confidence = 0.0
        return ParseResult(success=False, error=last_error, metadata=metadata)

    def _validate(self, data: Any, schema: Schema | None) -> ValidationResult:
        if schema is None:
            return ValidationResult()
        return self.validator.validate(data, schema)

    def _validation_error(
        self, response: str, validation: ValidationResult, attempted_fixes: list[str]
    ) -> ParseError:
        return ParseError(
            code=ErrorCode.VALIDATION_FAILED.value,
            message=f"JSON validation failed: {', '.join(validation.errors)}",
            original_response=response,
            attempted_fixes=attempted_fixes,
            suggestions=self.generate_suggestions(validation.errors),
        )

    @staticmethod
    def calculate_confidence(response: str, validation: ValidationResult) -> float:
        """Heuristic trust in a result, from 1.0 down to 0.0."""
        confidence = 1.0
        confidence -= len(validation.errors) * 0.2
        confidence -= len(validation.warnings) * 0.1

        if "```" in response:
            confidence -= 0.1
        if "AI:" in response:
            confidence -= 0.1
        if len(response) > LONG_RESPONSE_CHARS:
            confidence -= 0.1

        return max(0.0, min(1.0, confidence))

    @staticmethod
    def generate_suggestions(errors: list[str]) -> list[str]:
        """Remediation hints derived from validation messages."""
        suggestions: dict[str, None] = {}
        for error in errors:
            if "missing" in error:
                suggestions["Ensure all required properties are included"] = None
            if "Expected" in error or "type" in error:
                suggestions["Check data types for all properties"] = None
            if "pattern" in error:
                suggestions["Verify string formats match required patterns"] = None
            if "not allowed" in error:
                suggestions["Remove properties that are not part of the schema"] = None
        return list(suggestions)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResponseParser] {message}")
