# SPDX-License-Identifier: Apache-2.0
"""
Generation: Schema codec encode/decode.

Covers:
  • Wire output for representative constructs (draft-07, closed objects, tuples)
  • decode(encode(x)) == x for every supported construct kind
  • Unsupported wire keywords raise SchemaCompileError with keyword and path
  • Invalid trees are rejected when the node is built
  • Constants need a typed node; untyped wire constants decode to one
"""

import pytest

from strand_sdk.generation import (
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
    SchemaCompileError,
    StringSchema,
    TupleSchema,
    UnionSchema,
    decode,
    encode,
)
from strand_sdk.generation.schema_codec import DRAFT_07_URI

pytestmark = pytest.mark.asyncio


def _wrap(node, **extra):
    """Wrap a node in a top-level object, as generation schemas are."""
    return ObjectSchema(properties={"value": node}, **extra)


ROUND_TRIP_CASES = {
    "any": AnySchema(),
    "any-described": AnySchema(description="Anything at all"),
    "null": NullSchema(),
    "boolean": BooleanSchema(),
    "integer": IntegerSchema(),
    "number": NumberSchema(),
    "number-constraints": NumberSchema(minimum=0, maximum=10, multiple_of=0.5),
    "integer-exclusive": IntegerSchema(exclusive_minimum=0, exclusive_maximum=100),
    "string": StringSchema(),
    "string-lengths": StringSchema(min_length=1, max_length=20),
    "string-pattern": StringSchema(pattern=r"^[a-z]+$"),
    **{f"format-{fmt}": StringSchema(format=fmt) for fmt in (
        "email", "ipv4", "ipv6", "uri", "date-time", "date", "time", "uuid"
    )},
    "enum": EnumSchema(values=("red", "green", "blue")),
    "array-any": ArraySchema(),
    "array-items": ArraySchema(items=StringSchema()),
    "array-bounds": ArraySchema(items=IntegerSchema(), min_items=1, max_items=3),
    "tuple": TupleSchema(items=(StringSchema(), NumberSchema(), BooleanSchema())),
    "object-nested": ObjectSchema(
        properties={
            "name": StringSchema(),
            "address": ObjectSchema(properties={"city": StringSchema(), "zip": StringSchema()}, required=("city",)),
        }
    ),
    "object-none-required": ObjectSchema(properties={"a": StringSchema()}, required=()),
    "record": RecordSchema(values=NumberSchema()),
    "record-any": RecordSchema(),
    "union": UnionSchema(options=(StringSchema(), NullSchema())),
    "intersection": IntersectionSchema(
        parts=(
            ObjectSchema(properties={"a": StringSchema()}),
            ObjectSchema(properties={"b": NumberSchema()}),
        )
    ),
    "description": StringSchema(description="A human name"),
    "const-boolean": BooleanSchema(const=True),
    "const-number": NumberSchema(const=3.5),
    "const-string": StringSchema(const="fixed"),
    "const-null": NullSchema(const=None),
    "const-integer": IntegerSchema(const=1),
    "default-string": StringSchema(default="anonymous"),
    "default-array": ArraySchema(items=IntegerSchema(), default=[1, 2]),
}


@pytest.mark.parametrize("node", ROUND_TRIP_CASES.values(), ids=list(ROUND_TRIP_CASES))
async def test_decode_encode_round_trip(node):
    schema = _wrap(node, description="wrapper")
    assert decode(encode(schema)) == schema


async def test_encode_closed_object():
    schema = ObjectSchema(
        properties={"say": StringSchema(), "times": IntegerSchema(minimum=1)},
        required=("say",),
        description="What to say",
    )
    assert encode(schema) == {
        "$schema": DRAFT_07_URI,
        "type": "object",
        "properties": {
            "say": {"type": "string"},
            "times": {"type": "integer", "minimum": 1},
        },
        "required": ["say"],
        "additionalProperties": False,
        "description": "What to say",
    }


async def test_encode_tuple_record_and_union():
    schema = ObjectSchema(
        properties={
            "point": TupleSchema(items=(NumberSchema(), NumberSchema())),
            "labels": RecordSchema(values=StringSchema()),
            "maybe": UnionSchema(options=(StringSchema(), NullSchema())),
        }
    )
    wire = encode(schema)
    assert wire["properties"]["point"] == {
        "type": "array",
        "items": [{"type": "number"}, {"type": "number"}],
        "minItems": 2,
        "maxItems": 2,
    }
    assert wire["properties"]["labels"] == {"type": "object", "additionalProperties": {"type": "string"}}
    assert wire["properties"]["maybe"] == {"anyOf": [{"type": "string"}, {"type": "null"}]}


async def test_required_defaults_to_every_property():
    schema = ObjectSchema(properties={"a": StringSchema(), "b": StringSchema()})
    assert schema.required == ("a", "b")
    assert encode(schema)["required"] == ["a", "b"]


async def test_decode_type_list_as_union():
    schema = decode({"type": "object", "properties": {"v": {"type": ["string", "null"]}}, "required": ["v"]})
    assert schema.properties["v"] == UnionSchema(options=(StringSchema(), NullSchema()))


async def test_decode_untyped_const_infers_kind():
    schema = decode({"type": "object", "properties": {"flag": {"const": True}, "n": {"const": 2}}})
    assert schema.properties["flag"] == BooleanSchema(const=True)
    assert schema.properties["n"] == IntegerSchema(const=2)


REJECTED_WIRE = [
    ({"if": {}}, "if", "#/properties/value"),
    ({"then": {}}, "then", "#/properties/value"),
    ({"else": {}}, "else", "#/properties/value"),
    ({"not": {}}, "not", "#/properties/value"),
    ({"oneOf": [{"type": "string"}]}, "oneOf", "#/properties/value"),
    ({"$ref": "#/definitions/x"}, "$ref", "#/properties/value"),
    ({"type": "string", "format": "bogus"}, "format", "#/properties/value"),
    ({"type": "array", "items": {}, "uniqueItems": True}, "uniqueItems", "#/properties/value"),
    ({"type": "array", "items": {}, "contains": {}}, "contains", "#/properties/value"),
    ({"type": "array", "items": [{}], "uniqueItems": True}, "uniqueItems", "#/properties/value"),
    ({"type": "array", "items": [{}], "contains": {}}, "contains", "#/properties/value"),
    ({"type": "array", "items": [{}, {}], "minItems": 1}, "minItems", "#/properties/value"),
    ({"type": "array", "items": [{}, {}], "maxItems": 3}, "maxItems", "#/properties/value"),
    ({"type": "array", "const": [1]}, "const", "#/properties/value"),
    ({"type": "object", "properties": {}, "const": {"a": 1}}, "const", "#/properties/value"),
]

_KEYWORD_SAMPLE_VALUES = {
    "maxProperties": 1,
    "minProperties": 1,
    "required": [],
    "properties": {},
    "patternProperties": {},
    "dependencies": {},
    "propertyNames": {},
}

for keyword, value in _KEYWORD_SAMPLE_VALUES.items():
    REJECTED_WIRE.append(
        ({"type": "object", "additionalProperties": {"type": "string"}, keyword: value}, keyword, "#/properties/value")
    )
    if keyword not in ("required", "properties"):
        REJECTED_WIRE.append(
            (
                {"type": "object", "properties": {"a": {}}, "additionalProperties": False, keyword: value},
                keyword,
                "#/properties/value",
            )
        )


@pytest.mark.parametrize("node, keyword, path", REJECTED_WIRE, ids=[f"{k}-{i}" for i, (_, k, _) in enumerate(REJECTED_WIRE)])
async def test_unsupported_wire_constructs_are_rejected(node, keyword, path):
    wire = {"type": "object", "properties": {"value": node}}

    with pytest.raises(SchemaCompileError) as exc_info:
        decode(wire)

    assert exc_info.value.keyword == keyword
    assert exc_info.value.path == path
    assert exc_info.value.code == "SCHEMA_COMPILE"


async def test_one_of_error_points_to_any_of():
    with pytest.raises(SchemaCompileError, match="only 'anyOf' is supported"):
        decode({"oneOf": [{"type": "string"}]})


async def test_record_error_message_names_the_record_shape():
    with pytest.raises(SchemaCompileError, match=r"\(i\.e\. a record type\)"):
        decode({"type": "object", "additionalProperties": {}, "properties": {"a": {}}})


async def test_nested_paths_are_reported():
    wire = {
        "type": "object",
        "properties": {
            "items": {"type": "array", "items": {"anyOf": [{"type": "string"}, {"oneOf": []}]}},
        },
    }
    with pytest.raises(SchemaCompileError) as exc_info:
        decode(wire)
    assert exc_info.value.path == "#/properties/items/items/anyOf/1"


@pytest.mark.parametrize(
    "build, keyword",
    [
        (lambda: StringSchema(format="bogus"), "format"),
        (lambda: StringSchema(pattern="("), "pattern"),
        (lambda: StringSchema(min_length=5, max_length=2), "minLength"),
        (lambda: ArraySchema(min_items=-1), "minItems"),
        (lambda: TupleSchema(items=()), "items"),
        (lambda: UnionSchema(options=()), "anyOf"),
        (lambda: EnumSchema(values=("a", 1)), "enum"),
        (lambda: StringSchema(const=["not", "scalar"]), "const"),
        (lambda: ObjectSchema(properties={"a": StringSchema()}, required=("b",)), "required"),
        (lambda: NumberSchema(multiple_of=0), "multipleOf"),
    ],
)
async def test_invalid_trees_are_rejected_at_build_time(build, keyword):
    with pytest.raises(SchemaCompileError) as exc_info:
        build()
    assert exc_info.value.keyword == keyword


@pytest.mark.parametrize("value", [None, "x", 1])
async def test_any_schema_rejects_a_constant(value):
    with pytest.raises(SchemaCompileError, match="a constant needs a typed schema") as exc_info:
        AnySchema(const=value)
    assert exc_info.value.keyword == "const"


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, NullSchema(const=None)),
        ("x", StringSchema(const="x")),
        (1, IntegerSchema(const=1)),
    ],
)
async def test_untyped_constant_round_trips_through_its_typed_node(value, expected):
    decoded = decode({"type": "object", "properties": {"value": {"const": value}}})

    assert decoded.properties["value"] == expected
    assert decode(encode(decoded)) == decoded
