# strand_sdk/generation/schema.py
# SPDX-License-Identifier: Apache-2.0
"""
Structured-data schema tree.

Every node is a frozen dataclass belonging to exactly one construct kind.
Unsupported shapes (non-scalar consts, unknown string formats, tuples
without items, unions without options, ...) raise ``SchemaCompileError``
when the node is built, so a schema that exists is always encodable.

Example
-------
    Person = ObjectSchema(
        properties={
            "name": StringSchema(min_length=1),
            "email": StringSchema(format="email"),
            "tags": ArraySchema(items=StringSchema(), max_items=5),
        },
        required=["name"],
        description="A person record",
    )

``ObjectSchema`` defaults ``required`` to every declared property.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from strand_sdk.generation.generation_base import SchemaCompileError

SUPPORTED_STRING_FORMATS = frozenset(
    {"email", "ipv4", "ipv6", "uri", "date-time", "date", "time", "uuid"}
)


class _Unset:
    """Marker for an absent ``default`` / ``const`` (``None`` is a valid JSON value)."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

_SCALAR_TYPES = (str, int, float, bool, type(None))


def is_scalar(value: Any) -> bool:
    return isinstance(value, _SCALAR_TYPES)


# =============================================================================
# Base node
# =============================================================================

@dataclass(frozen=True, kw_only=True)
class Schema:
    """Annotations shared by every node kind."""
    description: Optional[str] = None
    default: Any = UNSET
    const: Any = UNSET

    def __post_init__(self) -> None:
        if self.const is not UNSET and not is_scalar(self.const):
            raise SchemaCompileError(
                "only scalar values are supported as a constant/literal value",
                keyword="const",
            )
        if self.description is not None and not isinstance(self.description, str):
            raise SchemaCompileError("'description' must be a string", keyword="description")


def _check_non_negative(value: Optional[int], keyword: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SchemaCompileError(f"'{keyword}' must be a non-negative integer (got: {value!r})", keyword=keyword)


def _check_bounds(low: Optional[int], high: Optional[int], low_kw: str, high_kw: str) -> None:
    _check_non_negative(low, low_kw)
    _check_non_negative(high, high_kw)
    if low is not None and high is not None and low > high:
        raise SchemaCompileError(f"'{low_kw}' must not exceed '{high_kw}'", keyword=low_kw)


# =============================================================================
# Scalars
# =============================================================================

@dataclass(frozen=True, kw_only=True)
class AnySchema(Schema):
    """Accepts any JSON value."""

    def __post_init__(self) -> None:
        super().__post_init__()
        # An untyped ``{"const": ...}`` decodes to the typed node for its value.
        if self.const is not UNSET:
            raise SchemaCompileError(
                "a constant needs a typed schema "
                "(NullSchema, BooleanSchema, NumberSchema, IntegerSchema or StringSchema)",
                keyword="const",
            )


@dataclass(frozen=True, kw_only=True)
class NullSchema(Schema):
    pass


@dataclass(frozen=True, kw_only=True)
class BooleanSchema(Schema):
    pass


@dataclass(frozen=True, kw_only=True)
class NumberSchema(Schema):
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: Optional[float] = None
    exclusive_maximum: Optional[float] = None
    multiple_of: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.multiple_of is not None and self.multiple_of <= 0:
            raise SchemaCompileError("'multipleOf' must be greater than 0", keyword="multipleOf")


@dataclass(frozen=True, kw_only=True)
class IntegerSchema(NumberSchema):
    pass


@dataclass(frozen=True, kw_only=True)
class StringSchema(Schema):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    format: Optional[str] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_bounds(self.min_length, self.max_length, "minLength", "maxLength")
        if self.format is not None and self.format not in SUPPORTED_STRING_FORMATS:
            raise SchemaCompileError(
                f"'{self.format}' is not supported as a string format "
                f"(expected one of: {', '.join(sorted(SUPPORTED_STRING_FORMATS))})",
                keyword="format",
            )
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise SchemaCompileError(f"invalid 'pattern': {exc}", keyword="pattern") from exc


@dataclass(frozen=True, kw_only=True)
class EnumSchema(Schema):
    """A closed set of strings."""
    values: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "values", tuple(self.values))
        if not self.values:
            raise SchemaCompileError("an enum needs at least one value", keyword="enum")
        if not all(isinstance(v, str) for v in self.values):
            raise SchemaCompileError("only string values are supported in an enum", keyword="enum")


# =============================================================================
# Containers
# =============================================================================

@dataclass(frozen=True, kw_only=True)
class ArraySchema(Schema):
    """Homogeneous list. ``items=None`` accepts any element."""
    items: Optional[Schema] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_bounds(self.min_items, self.max_items, "minItems", "maxItems")


@dataclass(frozen=True, kw_only=True)
class TupleSchema(Schema):
    """Fixed-length list with one schema per position."""
    items: Tuple[Schema, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "items", tuple(self.items))
        if not self.items:
            raise SchemaCompileError("a tuple needs at least one item schema", keyword="items")


@dataclass(frozen=True, kw_only=True)
class ObjectSchema(Schema):
    """
    Closed object: only the enumerated properties are allowed.

    ``required=None`` means every property is required.
    """
    properties: Mapping[str, Schema] = field(default_factory=dict)
    required: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "properties", dict(self.properties))
        if self.required is None:
            object.__setattr__(self, "required", tuple(self.properties))
        else:
            object.__setattr__(self, "required", tuple(self.required))
        unknown = [name for name in self.required if name not in self.properties]
        if unknown:
            raise SchemaCompileError(
                f"'required' names undeclared properties: {', '.join(unknown)}",
                keyword="required",
            )


@dataclass(frozen=True, kw_only=True)
class RecordSchema(Schema):
    """Open object: arbitrary keys, every value matching ``values``."""
    values: Schema = field(default_factory=AnySchema)


@dataclass(frozen=True, kw_only=True)
class UnionSchema(Schema):
    """Matches when any option matches (``anyOf``)."""
    options: Tuple[Schema, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "options", tuple(self.options))
        if not self.options:
            raise SchemaCompileError("a union needs at least one option", keyword="anyOf")


@dataclass(frozen=True, kw_only=True)
class IntersectionSchema(Schema):
    """Matches when every part matches (``allOf``)."""
    parts: Tuple[Schema, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "parts", tuple(self.parts))
        if not self.parts:
            raise SchemaCompileError("an intersection needs at least one part", keyword="allOf")


__all__ = [
    "SUPPORTED_STRING_FORMATS",
    "UNSET",
    "is_scalar",
    "Schema",
    "AnySchema",
    "NullSchema",
    "BooleanSchema",
    "NumberSchema",
    "IntegerSchema",
    "StringSchema",
    "EnumSchema",
    "ArraySchema",
    "TupleSchema",
    "ObjectSchema",
    "RecordSchema",
    "UnionSchema",
    "IntersectionSchema",
]
