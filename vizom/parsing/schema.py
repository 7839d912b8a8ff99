"""
Validation schemas for parsed API payloads.

A schema is one of five immutable node types. Object and array nodes nest
child schemas, so a schema is a tree that is built once and only read
afterwards.

Usage:
    schema = ObjectSchema(
        properties={"name": StringSchema(min_length=1), "count": NumberSchema(minimum=0)},
        required=("name",),
        additional_properties=False,
    )

    # Or from the JSON-style form
    schema = schema_from_dict({"type": "array", "items": {"type": "string"}})
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union


@dataclass(frozen=True)
class ObjectSchema:
    """JSON object with named properties."""

    type: ClassVar[str] = "object"

    properties: Mapping[str, "Schema"] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_properties: bool = True

    def __post_init__(self):
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))


@dataclass(frozen=True)
class ArraySchema:
    """JSON array, optionally with a schema for every item."""

    type: ClassVar[str] = "array"

    items: "Schema | None" = None
    min_length: int | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class StringSchema:
    type: ClassVar[str] = "string"

    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None  # Searched, not anchored unless the pattern says so
    compiled: "re.Pattern[str] | None" = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.pattern is None:
            return
        try:
            object.__setattr__(self, "compiled", re.compile(self.pattern))
        except re.error as e:
            raise ValueError(f"Invalid string pattern {self.pattern!r}: {e}") from e


@dataclass(frozen=True)
class NumberSchema:
    type: ClassVar[str] = "number"

    minimum: float | None = None
    maximum: float | None = None


@dataclass(frozen=True)
class BooleanSchema:
    type: ClassVar[str] = "boolean"


Schema = Union[ObjectSchema, ArraySchema, StringSchema, NumberSchema, BooleanSchema]

SCHEMA_TYPES = (ObjectSchema, ArraySchema, StringSchema, NumberSchema, BooleanSchema)


def schema_from_dict(data: Mapping[str, Any]) -> Schema:
    """
    Build a schema tree from its JSON-style form.

    Keys follow the camelCase names used in JSON schema documents
    (minLength, additionalProperties, ...).

    Raises:
        ValueError: If a node has a missing or unknown type
    """
    schema_type = data.get("type")

    if schema_type == "object":
        return ObjectSchema(
            properties={
                name: schema_from_dict(child)
                for name, child in (data.get("properties") or {}).items()
            },
            required=tuple(data.get("required") or ()),
            additional_properties=data.get("additionalProperties", True),
        )
    if schema_type == "array":
        items = data.get("items")
        return ArraySchema(
            items=schema_from_dict(items) if items is not None else None,
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
        )
    if schema_type == "string":
        return StringSchema(
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
            pattern=data.get("pattern"),
        )
    if schema_type == "number":
        return NumberSchema(minimum=data.get("minimum"), maximum=data.get("maximum"))
    if schema_type == "boolean":
        return BooleanSchema()

    raise ValueError(f"Unknown schema type: {schema_type!r}")


def as_schema(schema: "Schema | Mapping[str, Any] | None") -> Schema | None:
    """Accept either a schema node or its JSON-style form."""
    if schema is None or isinstance(schema, SCHEMA_TYPES):
        return schema
    return schema_from_dict(schema)
