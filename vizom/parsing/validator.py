"""
ResponseValidator - Recursive type checking of parsed JSON against a schema.

Validation never raises and never mutates its inputs: every mismatch becomes
a path-qualified message such as

    config.data.labels[0]: Expected string, got number
"""

from dataclasses import dataclass, field
from typing import Any

from vizom.parsing.schema import (
    ArraySchema,
    BooleanSchema,
    NumberSchema,
    ObjectSchema,
    Schema,
    StringSchema,
)

ROOT_PATH = "root"


@dataclass
class ValidationResult:
    """Outcome of validating one value."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def json_type_name(value: Any) -> str:
    """Name of a Python value's JSON type."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def child_path(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


class ResponseValidator:
    """
    Validates parsed JSON values.

    Usage:
        result = ResponseValidator().validate(data, schema)
        if not result.is_valid:
            logger.warning(", ".join(result.errors))
    """

    def validate(self, data: Any, schema: Schema) -> ValidationResult:
        """Validate data against schema, collecting every violation."""
        result = ValidationResult()
        self._validate_value(data, schema, "", result)
        return result

    def _validate_value(
        self, value: Any, schema: Schema, path: str, result: ValidationResult
    ) -> None:
        if isinstance(schema, ObjectSchema):
            self._validate_object(value, schema, path, result)
        elif isinstance(schema, ArraySchema):
            self._validate_array(value, schema, path, result)
        elif isinstance(schema, StringSchema):
            self._validate_string(value, schema, path, result)
        elif isinstance(schema, NumberSchema):
            self._validate_number(value, schema, path, result)
        elif isinstance(schema, BooleanSchema):
            if not isinstance(value, bool):
                self._type_error(path, "boolean", value, result)

    def _validate_object(
        self, value: Any, schema: ObjectSchema, path: str, result: ValidationResult
    ) -> None:
        if not isinstance(value, dict):
            self._type_error(path, "object", value, result)
            return

        for name in schema.required:
            if name not in value:
                result.errors.append(f"{child_path(path, name)}: Required property missing")

        for name, child in schema.properties.items():
            if name in value:
                self._validate_value(value[name], child, child_path(path, name), result)

        if not schema.additional_properties:
            for name in value:
                if name not in schema.properties:
                    result.errors.append(
                        f"{child_path(path, name)}: Additional property not allowed"
                    )

    def _validate_array(
        self, value: Any, schema: ArraySchema, path: str, result: ValidationResult
    ) -> None:
        if not isinstance(value, list):
            self._type_error(path, "array", value, result)
            return

        label = path or ROOT_PATH
        if schema.min_length is not None and len(value) < schema.min_length:
            result.errors.append(
                f"{label}: Array length {len(value)} is less than minimum {schema.min_length}"
            )
        if schema.max_length is not None and len(value) > schema.max_length:
            result.errors.append(
                f"{label}: Array length {len(value)} exceeds maximum {schema.max_length}"
            )

        if schema.items is None:
            return
        if not value:
            result.warnings.append(f"{label}: Array is empty")
        for index, item in enumerate(value):
            self._validate_value(item, schema.items, f"{path}[{index}]", result)

    def _validate_string(
        self, value: Any, schema: StringSchema, path: str, result: ValidationResult
    ) -> None:
        if not isinstance(value, str):
            self._type_error(path, "string", value, result)
            return

        label = path or ROOT_PATH
        if schema.min_length is not None and len(value) < schema.min_length:
            result.errors.append(
                f"{label}: String length {len(value)} is less than minimum {schema.min_length}"
            )
        if schema.max_length is not None and len(value) > schema.max_length:
            result.errors.append(
                f"{label}: String length {len(value)} exceeds maximum {schema.max_length}"
            )
        if schema.compiled is not None and not schema.compiled.search(value):
            result.errors.append(f"{label}: String does not match required pattern")

    def _validate_number(
        self, value: Any, schema: NumberSchema, path: str, result: ValidationResult
    ) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self._type_error(path, "number", value, result)
            return

        label = path or ROOT_PATH
        if schema.minimum is not None and value < schema.minimum:
            result.errors.append(f"{label}: Number {value} is less than minimum {schema.minimum}")
        if schema.maximum is not None and value > schema.maximum:
            result.errors.append(f"{label}: Number {value} exceeds maximum {schema.maximum}")

    @staticmethod
    def _type_error(path: str, expected: str, value: Any, result: ValidationResult) -> None:
        result.errors.append(
            f"{path or ROOT_PATH}: Expected {expected}, got {json_type_name(value)}"
        )
