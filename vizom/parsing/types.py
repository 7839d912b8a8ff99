"""
Parsing result types.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

from vizom.parsing.schema import Schema
from vizom.services.errors import ErrorCode, ResponseParseError

T = TypeVar("T")

# Marks "no parsed value yet"; None is a valid JSON value
UNSET: Any = object()


@dataclass
class ParseError:
    """Why a response could not be turned into valid data."""

    code: str  # JSON_PARSE_ERROR or VALIDATION_FAILED
    message: str
    original_response: str
    attempted_fixes: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "attempted_fixes": self.attempted_fixes,
            "suggestions": self.suggestions,
        }


@dataclass
class ParseMetadata:
    parse_time: float = 0.0  # Seconds
    response_length: int = 0
    validation_passed: bool = False
    fallback_used: bool = False
    confidence: float = 0.0  # 0.0 - 1.0
    strategy: str | None = None  # Fallback strategy that produced the data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "parse_time": round(self.parse_time, 4),
            "response_length": self.response_length,
            "validation_passed": self.validation_passed,
            "fallback_used": self.fallback_used,
            "confidence": round(self.confidence, 3),
            "strategy": self.strategy,
        }


@dataclass
class ParseResult(Generic[T]):
    """Tagged result of parsing one response."""

    success: bool
    metadata: ParseMetadata
    data: T | None = None
    error: ParseError | None = None

    def raise_for_error(self) -> T:
        """
        Return the parsed data.

        Raises:
            ResponseParseError: If parsing failed after every fallback
        """
        if self.success:
            return self.data
        error = self.error
        raise ResponseParseError(
            error.message if error else "Response could not be parsed",
            error.code if error else ErrorCode.JSON_PARSE_ERROR,
            retryable=False,
            details=error.to_dict() if error else None,
        )


@dataclass(frozen=True)
class RecoveryContext:
    """What a fallback strategy knows besides the raw response."""

    schema: Schema | None = None
    candidate: Any = UNSET  # Latest parsed value that failed validation


@dataclass(frozen=True)
class FallbackStrategy:
    """
    A named recovery routine.

    Strategies run in ascending priority; can_handle decides from the last
    error whether the strategy applies, execute returns candidate data or
    raises; a raising strategy is skipped.
    """

    name: str
    priority: int
    can_handle: Callable[[ParseError, str], bool]
    execute: Callable[[str, RecoveryContext], Awaitable[Any]]
