"""
Built-in fallback strategies for malformed LLM responses.

Priority order:
1. Clean and Retry - strip control characters and trailing commas, normalize quotes
2. Extract JSON from Markdown - first fenced block or first balanced {...} region
3. Partial JSON Recovery - quote bare keys, escape stray quotes, close truncated JSON
4. Schema-Based Reconstruction - keep the valid parts, backfill required sections
5. Minimal Fallback - fabricated minimal structure, only when a factory is given
"""

import copy
import json
import re
from typing import Any, Callable

from loguru import logger

from vizom.parsing.schema import (
    ArraySchema,
    BooleanSchema,
    NumberSchema,
    ObjectSchema,
    Schema,
    StringSchema,
)
from vizom.parsing.types import UNSET, FallbackStrategy, ParseError, RecoveryContext
from vizom.parsing.validator import ResponseValidator
from vizom.services.errors import ErrorCode

_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001f\u007f-\u009f]")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)\s*:")
_STRING_TOKEN_RE = re.compile(r'("(?:\\.|[^"\\])*")')
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

_validator = ResponseValidator()


def _is_parse_error(error: ParseError, response: str) -> bool:
    return error.code == ErrorCode.JSON_PARSE_ERROR


def _is_validation_error(error: ParseError, response: str) -> bool:
    return error.code == ErrorCode.VALIDATION_FAILED


def _looks_like_markdown(error: ParseError, response: str) -> bool:
    return "```" in response or "json" in response.lower() or "{" in response


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def clean_json_text(text: str) -> str:
    """Remove control characters and trailing commas, normalize quotes."""
    cleaned = _CONTROL_CHARS_RE.sub("", text).translate(_SMART_QUOTES)
    cleaned = strip_trailing_commas(cleaned)
    if '"' not in cleaned:
        # Single-quoted pseudo JSON
        cleaned = cleaned.replace("'", '"')
    return cleaned.strip()


def find_balanced_object(text: str) -> str | None:
    """
    Return the earliest-starting {...} region whose braces balance.

    Single pass over the text, honoring strings inside open regions.
    """
    start = text.find("{")
    if start == -1:
        return None

    opened: list[int] = []
    best: tuple[int, int] | None = None
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            if opened:
                in_string = True
        elif char == "{":
            opened.append(index)
        elif char == "}" and opened:
            begin = opened.pop()
            if best is None or begin < best[0]:
                best = (begin, index)
            if not opened:
                # Nothing later can start before this region
                break

    if best is None:
        return None
    return text[best[0] : best[1] + 1]


def extract_json_text(text: str) -> str | None:
    """Pull JSON text out of a response wrapped in prose or markdown."""
    match = _FENCE_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1)
    return find_balanced_object(text)


def escape_stray_quotes(text: str) -> str:
    """
    Escape double quotes that sit inside string values.

    A quote closes a string only if the next non-space character can
    follow a JSON string (one of , : } ] or the end of input).
    """
    out: list[str] = []
    in_string = False
    escaped = False
    length = len(text)

    for index, char in enumerate(text):
        if not in_string:
            out.append(char)
            if char == '"':
                in_string = True
            continue

        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            rest = index + 1
            while rest < length and text[rest] in " \t\r\n":
                rest += 1
            if rest < length and text[rest] not in ",:}]":
                out.append('\\"')
                continue
            in_string = False
        out.append(char)

    return "".join(out)


def close_truncated_json(text: str) -> str:
    """Terminate an unfinished string and close every open bracket."""
    stack: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    if not stack and not in_string:
        return text

    fixed = text + '"' if in_string else text
    fixed = fixed.rstrip()
    if fixed.endswith(","):
        fixed = fixed[:-1]
    elif fixed.endswith(":"):
        fixed += " null"
    return fixed + "".join(reversed(stack))


def quote_bare_keys(text: str) -> str:
    """Quote unquoted property names, leaving string contents alone."""
    parts = _STRING_TOKEN_RE.split(text)
    # Odd indices are string literals
    for index in range(0, len(parts), 2):
        parts[index] = _BARE_KEY_RE.sub(r'\1"\2":', parts[index])
    return "".join(parts)


def repair_json_text(text: str) -> str:
    """Best-effort repair of almost-JSON produced by a language model."""
    fixed = extract_json_text(text) or text.strip()
    fixed = escape_stray_quotes(fixed)
    fixed = quote_bare_keys(fixed)
    fixed = close_truncated_json(fixed)
    return strip_trailing_commas(fixed)


def synthesize(schema: Schema | None) -> Any:
    """Smallest value that satisfies a schema's structural constraints."""
    if isinstance(schema, ObjectSchema):
        return {
            name: synthesize(schema.properties.get(name)) for name in schema.required
        }
    if isinstance(schema, ArraySchema):
        count = schema.min_length or 0
        return [synthesize(schema.items) for _ in range(count)]
    if isinstance(schema, StringSchema):
        return " " * (schema.min_length or 0)
    if isinstance(schema, NumberSchema):
        return schema.minimum if schema.minimum is not None else 0
    if isinstance(schema, BooleanSchema):
        return False
    return None


def reconstruct(value: Any, schema: Schema, defaults: Any = UNSET) -> Any:
    """
    Salvage the valid parts of value.

    Valid values are returned as is. Objects keep their valid declared
    properties, lose undeclared ones when additional properties are not
    allowed, and get missing required properties from defaults or from
    synthesize(). Arrays keep their valid items. Anything else falls back
    to defaults, or UNSET when there are none.
    """
    if _validator.validate(value, schema).is_valid:
        return value

    if isinstance(schema, ObjectSchema) and isinstance(value, dict):
        section_defaults = defaults if isinstance(defaults, dict) else {}
        result: dict[str, Any] = {}

        for name, item in value.items():
            child = schema.properties.get(name)
            if child is None:
                if schema.additional_properties:
                    result[name] = item
                continue
            salvaged = reconstruct(item, child, section_defaults.get(name, UNSET))
            if salvaged is not UNSET:
                result[name] = salvaged

        for name in schema.required:
            if name not in result:
                if name in section_defaults:
                    result[name] = copy.deepcopy(section_defaults[name])
                else:
                    result[name] = synthesize(schema.properties.get(name))
        return result

    if isinstance(schema, ArraySchema) and isinstance(value, list) and schema.items:
        kept = [item for item in value if _validator.validate(item, schema.items).is_valid]
        if _validator.validate(kept, schema).is_valid:
            return kept

    return UNSET if defaults is UNSET else copy.deepcopy(defaults)


def default_strategies(
    reconstruction_defaults: Callable[[], dict[str, Any]] | None = None,
    minimal_fallback: Callable[[], Any] | None = None,
) -> list[FallbackStrategy]:
    """
    Build the built-in strategies for one use case.

    Args:
        reconstruction_defaults: Factory for the sections backfilled by
            Schema-Based Reconstruction
        minimal_fallback: Factory for the last-resort structure; without
            it no output is ever fabricated
    """

    async def clean_and_retry(response: str, context: RecoveryContext) -> Any:
        return json.loads(clean_json_text(response))

    async def extract_from_markdown(response: str, context: RecoveryContext) -> Any:
        extracted = extract_json_text(response)
        if extracted is None:
            raise ValueError("No JSON block found in response")
        return json.loads(extracted)

    async def partial_recovery(response: str, context: RecoveryContext) -> Any:
        return json.loads(repair_json_text(clean_json_text(response)))

    async def schema_reconstruction(response: str, context: RecoveryContext) -> Any:
        if context.schema is None:
            raise ValueError("Reconstruction needs a schema")

        partial = context.candidate
        if partial is UNSET:
            partial = json.loads(response)

        defaults = reconstruction_defaults() if reconstruction_defaults else {}
        rebuilt = reconstruct(partial, context.schema, defaults)
        if rebuilt is UNSET:
            raise ValueError("Nothing to reconstruct from")
        if isinstance(rebuilt, dict):
            logger.debug(f"Reconstructed response sections: {sorted(rebuilt)}")
        return rebuilt

    strategies = [
        FallbackStrategy("Clean and Retry", 1, _is_parse_error, clean_and_retry),
        FallbackStrategy(
            "Extract JSON from Markdown", 2, _looks_like_markdown, extract_from_markdown
        ),
        FallbackStrategy("Partial JSON Recovery", 3, _is_parse_error, partial_recovery),
        FallbackStrategy(
            "Schema-Based Reconstruction", 4, _is_validation_error, schema_reconstruction
        ),
    ]

    if minimal_fallback is not None:

        async def minimal(response: str, context: RecoveryContext) -> Any:
            return minimal_fallback()

        strategies.append(FallbackStrategy("Minimal Fallback", 5, lambda e, r: True, minimal))

    return strategies
