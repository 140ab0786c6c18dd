# strand_sdk/generation/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Generation Protocol V1 - Public API

This module provides the public interface for text and structured-data
generation. All public types are re-exported here for clean imports.
Backend adapters (e.g. ``strand_sdk.generation.openai_adapter``) are
imported from their own modules.
"""

from strand_sdk.generation.generation_base import (
    # Protocol version
    GENERATION_PROTOCOL_VERSION,
    GENERATION_PROTOCOL_ID,
    STRUCTURED_DATA_TOOL_NAME,

    # Error types
    GenerationError,
    SchemaCompileError,
    InvalidInput,
    CapabilityError,
    ResultLimitError,
    ResultValidateError,
    ValidationIssue,
    ProtocolViolation,
    StreamAbandoned,
    BackendError,

    # Data model
    ImageData,
    ToolCallRecord,
    Message,
    SamplingOptions,
    SAMPLING_DEFAULTS,
    ToolDescriptor,
    BuiltinTool,
    WebSearchTool,
    ToolCall,
    Chunk,
    Final,
    StreamEvent,

    # Protocol interface
    GenerationAdapterV1,
)
from strand_sdk.generation.schema import (
    UNSET,
    Schema,
    AnySchema,
    NullSchema,
    BooleanSchema,
    NumberSchema,
    IntegerSchema,
    StringSchema,
    EnumSchema,
    ArraySchema,
    TupleSchema,
    ObjectSchema,
    RecordSchema,
    UnionSchema,
    IntersectionSchema,
)
from strand_sdk.generation.schema_codec import encode, decode, validate
from strand_sdk.generation.stream import EventStream, StreamState
from strand_sdk.generation.pipeline import (
    GenerationClient,
    GenerationMode,
    GenerationRequest,
    resolve_sampling,
)
from strand_sdk.generation.cache import CacheHit, CacheMiss, ResultCache, fingerprint

__version__ = "1.0.0"

__all__ = [
    # Protocol version
    "GENERATION_PROTOCOL_VERSION",
    "GENERATION_PROTOCOL_ID",
    "STRUCTURED_DATA_TOOL_NAME",

    # Error types
    "GenerationError",
    "SchemaCompileError",
    "InvalidInput",
    "CapabilityError",
    "ResultLimitError",
    "ResultValidateError",
    "ValidationIssue",
    "ProtocolViolation",
    "StreamAbandoned",
    "BackendError",

    # Data model
    "ImageData",
    "ToolCallRecord",
    "Message",
    "SamplingOptions",
    "SAMPLING_DEFAULTS",
    "ToolDescriptor",
    "BuiltinTool",
    "WebSearchTool",
    "ToolCall",
    "Chunk",
    "Final",
    "StreamEvent",

    # Protocol interface
    "GenerationAdapterV1",

    # Schema
    "UNSET",
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
    "encode",
    "decode",
    "validate",

    # Streaming
    "EventStream",
    "StreamState",

    # Pipeline
    "GenerationClient",
    "GenerationMode",
    "GenerationRequest",
    "resolve_sampling",

    # Cache
    "CacheHit",
    "CacheMiss",
    "ResultCache",
    "fingerprint",

    "__version__",
]
