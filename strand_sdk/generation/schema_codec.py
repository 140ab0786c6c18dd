# strand_sdk/generation/schema_codec.py
# SPDX-License-Identifier: Apache-2.0
"""
Schema codec: internal schema tree <-> JSON Schema (draft-07) wire dialect.

Operations
----------
encode(schema) -> dict
    Lossless for every node kind in ``strand_sdk.generation.schema``.
    The root carries ``$schema``; closed objects carry
    ``additionalProperties: false``; tuples carry ``items`` as a list with
    ``minItems == maxItems == len(items)``.

decode(wire) -> Schema
    Strict inverse of ``encode``. Anything outside the supported subset
    raises ``SchemaCompileError`` naming the keyword and the JSON pointer
    of the node that carries it.

validate(schema, text) -> data
    Parses ``text`` as JSON and checks it with ``jsonschema`` against the
    encoded schema. Violations raise ``ResultValidateError`` carrying the
    raw text, the parsed value and one ``ValidationIssue`` per violation.
    Schema defaults are filled into the returned value.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, List, Mapping, Tuple, Type

from jsonschema import Draft7Validator, FormatChecker

from strand_sdk.generation.generation_base import (
    ResultValidateError,
    SchemaCompileError,
    ValidationIssue,
)
from strand_sdk.generation.schema import (
    UNSET,
    AnySchema,
    ArraySchema,
    BooleanSchema,
    EnumSchema,
    IntegerSchema,
    IntersectionSchema,
    NullSchema,
    NumberSchema,
    ObjectSchema,
    RecordSchema,
    Schema,
    StringSchema,
    TupleSchema,
    UnionSchema,
    is_scalar,
)

DRAFT_07_URI = "http://json-schema.org/draft-07/schema#"

# Keywords rejected wherever they appear.
_REJECTED_KEYWORDS: Dict[str, str] = {
    "$ref": "'$ref' is not supported (inline the referenced schema instead)",
    "$defs": "'$defs' is not supported (inline the referenced schema instead)",
    "definitions": "'definitions' is not supported (inline the referenced schema instead)",
    "oneOf": "'oneOf' is not supported (only 'anyOf' is supported)",
    "if": "conditional keyword 'if' is not supported",
    "then": "conditional keyword 'then' is not supported",
    "else": "conditional keyword 'else' is not supported",
    "not": "'not' is not supported",
}

_NUMERIC_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("minimum", "minimum"),
    ("maximum", "maximum"),
    ("exclusiveMinimum", "exclusive_minimum"),
    ("exclusiveMaximum", "exclusive_maximum"),
    ("multipleOf", "multiple_of"),
)

_STRING_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("minLength", "min_length"),
    ("maxLength", "max_length"),
    ("pattern", "pattern"),
    ("format", "format"),
)

_ARRAY_REJECTED = ("uniqueItems", "contains", "additionalItems")

_RECORD_REJECTED = (
    "properties",
    "required",
    "maxProperties",
    "minProperties",
    "patternProperties",
    "dependencies",
    "propertyNames",
)

_CLOSED_OBJECT_REJECTED = (
    "maxProperties",
    "minProperties",
    "patternProperties",
    "dependencies",
    "propertyNames",
)


# =============================================================================
# encode
# =============================================================================

def encode(schema: Schema) -> Dict[str, Any]:
    """Encode ``schema`` as a draft-07 JSON schema document."""
    wire: Dict[str, Any] = {"$schema": DRAFT_07_URI}
    wire.update(_encode_node(schema))
    return wire


def _encode_node(node: Schema) -> Dict[str, Any]:
    out: Dict[str, Any]
    if isinstance(node, AnySchema):
        out = {}
    elif isinstance(node, NullSchema):
        out = {"type": "null"}
    elif isinstance(node, BooleanSchema):
        out = {"type": "boolean"}
    elif isinstance(node, NumberSchema):
        out = {"type": "integer" if isinstance(node, IntegerSchema) else "number"}
        for wire_key, attr in _NUMERIC_KEYWORDS:
            value = getattr(node, attr)
            if value is not None:
                out[wire_key] = value
    elif isinstance(node, StringSchema):
        out = {"type": "string"}
        for wire_key, attr in _STRING_KEYWORDS:
            value = getattr(node, attr)
            if value is not None:
                out[wire_key] = value
    elif isinstance(node, EnumSchema):
        out = {"type": "string", "enum": list(node.values)}
    elif isinstance(node, ArraySchema):
        out = {"type": "array"}
        if node.items is not None:
            out["items"] = _encode_node(node.items)
        if node.min_items is not None:
            out["minItems"] = node.min_items
        if node.max_items is not None:
            out["maxItems"] = node.max_items
    elif isinstance(node, TupleSchema):
        out = {
            "type": "array",
            "items": [_encode_node(item) for item in node.items],
            "minItems": len(node.items),
            "maxItems": len(node.items),
        }
    elif isinstance(node, ObjectSchema):
        out = {
            "type": "object",
            "properties": {name: _encode_node(prop) for name, prop in node.properties.items()},
        }
        if node.required:
            out["required"] = list(node.required)
        out["additionalProperties"] = False
    elif isinstance(node, RecordSchema):
        out = {"type": "object", "additionalProperties": _encode_node(node.values)}
    elif isinstance(node, UnionSchema):
        out = {"anyOf": [_encode_node(option) for option in node.options]}
    elif isinstance(node, IntersectionSchema):
        out = {"allOf": [_encode_node(part) for part in node.parts]}
    else:
        raise SchemaCompileError(f"unsupported schema node: {type(node).__name__}")

    if node.const is not UNSET:
        out["const"] = node.const
    if node.description is not None:
        out["description"] = node.description
    if node.default is not UNSET:
        out["default"] = copy.deepcopy(node.default)
    return out


# =============================================================================
# decode
# =============================================================================

def decode(wire: Mapping[str, Any]) -> Schema:
    """Decode a draft-07 JSON schema document into a schema tree."""
    if not isinstance(wire, Mapping):
        raise SchemaCompileError("a JSON schema must be an object", path="#")
    node = dict(wire)
    node.pop("$schema", None)
    return _decode_node(node, "#")


def _build(cls: Type[Schema], path: str, **kwargs: Any) -> Schema:
    # Node constructors do not know where they sit in the tree.
    try:
        return cls(**kwargs)
    except SchemaCompileError as exc:
        raise SchemaCompileError(exc.message, keyword=exc.keyword, path=path) from exc


def _reject_leftovers(rest: Mapping[str, Any], path: str, where: str) -> None:
    if rest:
        key = next(iter(rest))
        raise SchemaCompileError(f"'{key}' is not supported in {where}", keyword=key, path=path)


def _pop_annotations(rest: Dict[str, Any], path: str) -> Dict[str, Any]:
    annotations: Dict[str, Any] = {}
    if "description" in rest:
        annotations["description"] = rest.pop("description")
    if "default" in rest:
        annotations["default"] = rest.pop("default")
    if "const" in rest:
        value = rest.pop("const")
        if not is_scalar(value):
            raise SchemaCompileError(
                "an array or object value is not supported as a constant/literal value",
                keyword="const",
                path=path,
            )
        annotations["const"] = value
    return annotations


def _infer_type(rest: Mapping[str, Any], annotations: Mapping[str, Any]) -> str:
    if "enum" in rest:
        return "string"
    if any(key in rest for key in ("properties", "additionalProperties", "required")):
        return "object"
    if "items" in rest:
        return "array"
    if "const" in annotations:
        value = annotations["const"]
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, int):
            return "integer"
        if isinstance(value, float):
            return "number"
        return "string"
    return "any"


def _decode_node(node: Any, path: str) -> Schema:
    if not isinstance(node, Mapping):
        raise SchemaCompileError("a schema node must be a JSON object", path=path)
    for keyword, message in _REJECTED_KEYWORDS.items():
        if keyword in node:
            raise SchemaCompileError(message, keyword=keyword, path=path)

    rest = dict(node)
    annotations = _pop_annotations(rest, path)

    if "anyOf" in rest:
        options = rest.pop("anyOf")
        _reject_leftovers(rest, path, "a union ('anyOf')")
        return _build(
            UnionSchema,
            path,
            options=[_decode_node(o, f"{path}/anyOf/{i}") for i, o in enumerate(options)],
            **annotations,
        )
    if "allOf" in rest:
        parts = rest.pop("allOf")
        _reject_leftovers(rest, path, "an intersection ('allOf')")
        return _build(
            IntersectionSchema,
            path,
            parts=[_decode_node(p, f"{path}/allOf/{i}") for i, p in enumerate(parts)],
            **annotations,
        )

    kind = rest.pop("type", None)
    if isinstance(kind, list):
        if rest:
            key = next(iter(rest))
            raise SchemaCompileError(
                f"'{key}' is not supported alongside a list of types",
                keyword=key,
                path=path,
            )
        return _build(
            UnionSchema,
            path,
            options=[_decode_typed(t, {}, f"{path}/type/{i}", {}) for i, t in enumerate(kind)],
            **annotations,
        )
    if kind is None:
        kind = _infer_type(rest, annotations)
    return _decode_typed(kind, rest, path, annotations)


def _decode_typed(kind: Any, rest: Dict[str, Any], path: str, annotations: Dict[str, Any]) -> Schema:
    if kind == "any":
        _reject_leftovers(rest, path, "an unconstrained schema")
        return _build(AnySchema, path, **annotations)
    if kind == "null":
        _reject_leftovers(rest, path, "a null schema")
        return _build(NullSchema, path, **annotations)
    if kind == "boolean":
        _reject_leftovers(rest, path, "a boolean schema")
        return _build(BooleanSchema, path, **annotations)
    if kind in ("integer", "number"):
        constraints = {attr: rest.pop(key) for key, attr in _NUMERIC_KEYWORDS if key in rest}
        _reject_leftovers(rest, path, f"an {kind} schema" if kind == "integer" else "a number schema")
        cls = IntegerSchema if kind == "integer" else NumberSchema
        return _build(cls, path, **constraints, **annotations)
    if kind == "string":
        if "enum" in rest:
            values = rest.pop("enum")
            _reject_leftovers(rest, path, "an enum schema")
            if not isinstance(values, list):
                raise SchemaCompileError("'enum' must be a list", keyword="enum", path=path)
            return _build(EnumSchema, path, values=values, **annotations)
        constraints = {attr: rest.pop(key) for key, attr in _STRING_KEYWORDS if key in rest}
        _reject_leftovers(rest, path, "a string schema")
        return _build(StringSchema, path, **constraints, **annotations)
    if kind == "array":
        return _decode_array(rest, path, annotations)
    if kind == "object":
        return _decode_object(rest, path, annotations)
    raise SchemaCompileError(f"type {kind!r} is not supported", keyword="type", path=path)


def _decode_array(rest: Dict[str, Any], path: str, annotations: Dict[str, Any]) -> Schema:
    items = rest.pop("items", None)
    min_items = rest.pop("minItems", None)
    max_items = rest.pop("maxItems", None)

    if isinstance(items, list):
        for keyword in _ARRAY_REJECTED:
            if keyword in rest:
                raise SchemaCompileError(
                    f"'{keyword}' is not supported in a tuple array",
                    keyword=keyword,
                    path=path,
                )
        for keyword, value in (("minItems", min_items), ("maxItems", max_items)):
            if value is not None and value != len(items):
                raise SchemaCompileError(
                    f"'{keyword}' must equal the number of tuple items ({len(items)}), got {value}",
                    keyword=keyword,
                    path=path,
                )
        _reject_leftovers(rest, path, "a tuple array")
        return _build(
            TupleSchema,
            path,
            items=[_decode_node(item, f"{path}/items/{i}") for i, item in enumerate(items)],
            **annotations,
        )

    for keyword in _ARRAY_REJECTED:
        if keyword in rest:
            raise SchemaCompileError(
                f"'{keyword}' is not supported in an array",
                keyword=keyword,
                path=path,
            )
    _reject_leftovers(rest, path, "an array schema")
    return _build(
        ArraySchema,
        path,
        items=None if items is None else _decode_node(items, f"{path}/items"),
        min_items=min_items,
        max_items=max_items,
        **annotations,
    )


def _decode_object(rest: Dict[str, Any], path: str, annotations: Dict[str, Any]) -> Schema:
    additional = rest.pop("additionalProperties", UNSET)
    is_record = isinstance(additional, Mapping) or additional is True or (
        additional is UNSET and "properties" not in rest and "required" not in rest
    )

    if is_record:
        for keyword in _RECORD_REJECTED:
            if keyword in rest:
                raise SchemaCompileError(
                    f"'{keyword}' is not supported in an object with 'additionalProperties' "
                    "(i.e. a record type)",
                    keyword=keyword,
                    path=path,
                )
        _reject_leftovers(rest, path, "a record schema")
        if isinstance(additional, Mapping):
            values = _decode_node(additional, f"{path}/additionalProperties")
        else:
            values = AnySchema()
        return _build(RecordSchema, path, values=values, **annotations)

    if additional is not False and additional is not UNSET:
        raise SchemaCompileError(
            "'additionalProperties' must be false or a schema",
            keyword="additionalProperties",
            path=path,
        )
    for keyword in _CLOSED_OBJECT_REJECTED:
        if keyword in rest:
            raise SchemaCompileError(
                f"'{keyword}' is not supported in an object (expected either statically "
                "defined 'properties' or open-ended 'additionalProperties')",
                keyword=keyword,
                path=path,
            )
    properties = rest.pop("properties", {})
    required = rest.pop("required", [])
    _reject_leftovers(rest, path, "an object schema")
    if not isinstance(properties, Mapping):
        raise SchemaCompileError("'properties' must be an object", keyword="properties", path=path)
    if not isinstance(required, list):
        raise SchemaCompileError("'required' must be a list", keyword="required", path=path)
    return _build(
        ObjectSchema,
        path,
        properties={
            name: _decode_node(prop, f"{path}/properties/{name}")
            for name, prop in properties.items()
        },
        required=tuple(required),
        **annotations,
    )


# =============================================================================
# validate
# =============================================================================

def validate(schema: Schema, text: str) -> Any:
    """Parse ``text`` and check it against ``schema``; return the data with defaults applied."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ResultValidateError(
            f"generated text is not valid JSON: {exc}",
            text=text,
            data=None,
            issues=[ValidationIssue(path=(), kind="invalid_json", message=str(exc))],
        ) from exc

    validator = Draft7Validator(encode(schema), format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(data), key=lambda e: e.json_path)
    if errors:
        issues: List[ValidationIssue] = [
            ValidationIssue(path=tuple(e.absolute_path), kind=str(e.validator), message=e.message)
            for e in errors
        ]
        raise ResultValidateError(
            f"generated data does not match the schema ({len(issues)} issue(s))",
            text=text,
            data=data,
            issues=issues,
        )
    return apply_defaults(schema, data)


def apply_defaults(schema: Schema, value: Any) -> Any:
    """Fill declared defaults into missing object properties, recursively."""
    if isinstance(schema, ObjectSchema) and isinstance(value, dict):
        out = dict(value)
        for name, prop in schema.properties.items():
            if name in out:
                out[name] = apply_defaults(prop, out[name])
            elif prop.default is not UNSET:
                out[name] = copy.deepcopy(prop.default)
        return out
    if isinstance(schema, RecordSchema) and isinstance(value, dict):
        return {key: apply_defaults(schema.values, item) for key, item in value.items()}
    if isinstance(schema, ArraySchema) and schema.items is not None and isinstance(value, list):
        return [apply_defaults(schema.items, item) for item in value]
    if isinstance(schema, TupleSchema) and isinstance(value, list):
        return [apply_defaults(node, item) for node, item in zip(schema.items, value)]
    if isinstance(schema, IntersectionSchema):
        for part in schema.parts:
            value = apply_defaults(part, value)
        return value
    return value


__all__ = [
    "DRAFT_07_URI",
    "encode",
    "decode",
    "validate",
    "apply_defaults",
]
