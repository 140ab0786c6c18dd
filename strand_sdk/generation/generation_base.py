# strand_sdk/generation/generation_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Strand SDK: Generation Protocol V1 (public contract)

Purpose
-------
A stable, backend-neutral contract for generating free text, structured
data, or tool calls from a large-language-model backend:

- Normalized error taxonomy (machine-actionable codes)
- Immutable request data model (messages, sampling, tool descriptors)
- Stream event model (``Chunk`` / ``Final``)
- Adapter boundary (``GenerationAdapterV1``) implemented once per backend

Design Philosophy
-----------------
- Adapters implement the protocol structurally; there is no shared base
  class to inherit from.
- Adapters own every backend wire type. Nothing backend-specific crosses
  the five boundary operations.
- Async-first: raw events and stream events are async iterators.

Deliberate Non-Goals
--------------------
- No retries, backoff, rate limiting or multi-backend fan-out.
- No credential management (adapters accept pre-built clients).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    ClassVar,
    Generic,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    Union,
    runtime_checkable,
)

GENERATION_PROTOCOL_VERSION = "1.0.0"
GENERATION_PROTOCOL_ID = "generation/v1.0"

# Tool name used when a schema is forced through the tool-call mechanism.
STRUCTURED_DATA_TOOL_NAME = "structured_data"

ROLE_USER = "user"
ROLE_MODEL = "model"
ROLE_SYSTEM = "system"
_ALLOWED_ROLES = frozenset({ROLE_USER, ROLE_MODEL, ROLE_SYSTEM})


# =============================================================================
# Normalized Errors
# =============================================================================

class GenerationError(Exception):
    """
    Base exception for all generation errors.

    Attributes:
        message:
            Human-readable description (safe for logs).
        code:
            Upper-snake-case machine code.
        details:
            Additional JSON-safe context.
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.details:
            base += f" details={self.details}"
        return base


class SchemaCompileError(GenerationError):
    """
    A schema uses a construct outside the supported set.

    Raised while the schema is being built or decoded, never at generation
    time. ``keyword`` names the offending keyword, ``path`` is a JSON
    pointer to the node that carries it.
    """
    def __init__(self, message: str, *, keyword: Optional[str] = None, path: str = "#", **kwargs: Any):
        kwargs.setdefault("code", "SCHEMA_COMPILE")
        details = dict(kwargs.pop("details", None) or {})
        if keyword is not None:
            details.setdefault("keyword", keyword)
        details.setdefault("path", path)
        super().__init__(message, details=details, **kwargs)
        self.keyword = keyword
        self.path = path


class InvalidInput(GenerationError):
    """
    Malformed request before any backend call.

    Examples:
        - A message with zero or several content variants
        - Sampling values outside their allowed range
        - A non-object top-level schema
    """
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_INPUT")
        super().__init__(message, **kwargs)


class CapabilityError(GenerationError):
    """A requested sampling/schema feature is unsupported by the selected backend or model."""
    def __init__(self, message: str, *, missing_capability: str = "", **kwargs: Any):
        kwargs.setdefault("code", "CAPABILITY")
        super().__init__(message, **kwargs)
        self.missing_capability = missing_capability


class ResultLimitError(GenerationError):
    """Output was truncated by ``max_output_tokens`` before the contract was satisfied."""
    def __init__(self, message: str, *, text: str = "", **kwargs: Any):
        kwargs.setdefault("code", "RESULT_LIMIT")
        super().__init__(message, **kwargs)
        self.text = text


@dataclass(frozen=True)
class ValidationIssue:
    """One constraint violation found while validating generated data."""
    path: Tuple[Union[str, int], ...]
    kind: str
    message: str


class ResultValidateError(GenerationError):
    """
    Generated text failed schema validation.

    Carries the raw ``text``, the best-effort parsed ``data`` (``None`` when
    the text was not even valid JSON) and the structured ``issues``.
    """
    def __init__(
        self,
        message: str,
        *,
        text: str = "",
        data: Any = None,
        issues: Sequence[ValidationIssue] = (),
        **kwargs: Any,
    ):
        kwargs.setdefault("code", "RESULT_VALIDATE")
        super().__init__(message, **kwargs)
        self.text = text
        self.data = data
        self.issues = tuple(issues)


class ProtocolViolation(GenerationError):
    """The adapter produced an event stream that ended without a Final event."""
    def __init__(self, message: str = "event stream ended without a final event", **kwargs: Any):
        kwargs.setdefault("code", "PROTOCOL_VIOLATION")
        super().__init__(message, **kwargs)


class StreamAbandoned(GenerationError):
    """The consumer driving a stream stopped reading before it finished."""
    def __init__(self, message: str = "the driving consumer stopped reading before the stream finished", **kwargs: Any):
        kwargs.setdefault("code", "STREAM_ABANDONED")
        super().__init__(message, **kwargs)


class BackendError(GenerationError):
    """
    A backend call failed; ``code`` carries the normalized reason.

    Codes: AUTH_ERROR, RESOURCE_EXHAUSTED, TRANSIENT_NETWORK,
    DEADLINE_EXCEEDED, BAD_REQUEST, NOT_SUPPORTED, UNAVAILABLE.
    """
    def __init__(self, message: str, *, retry_after_ms: Optional[int] = None, **kwargs: Any):
        kwargs.setdefault("code", "UNAVAILABLE")
        super().__init__(message, **kwargs)
        self.retry_after_ms = retry_after_ms

    def __str__(self) -> str:
        base = super().__str__()
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        return base


# =============================================================================
# Request data model
# =============================================================================

@dataclass(frozen=True)
class ImageData:
    """Inline image content (base64 payload plus its MIME type)."""
    mime_type: str
    base64_data: str


@dataclass(frozen=True)
class ToolCallRecord:
    """A past tool call and its result, replayed to the model as context."""
    name: str
    args: Mapping[str, Any]
    result: Mapping[str, Any]


@dataclass(frozen=True)
class Message:
    """
    One conversational turn.

    Exactly one of ``text``, ``image_data`` or ``tool_call`` must be set.
    """
    role: str
    text: Optional[str] = None
    image_data: Optional[ImageData] = None
    tool_call: Optional[ToolCallRecord] = None

    def __post_init__(self) -> None:
        if self.role not in _ALLOWED_ROLES:
            raise InvalidInput(f"unknown message role: {self.role!r}")
        present = [
            name
            for name, value in (
                ("text", self.text),
                ("image_data", self.image_data),
                ("tool_call", self.tool_call),
            )
            if value is not None
        ]
        if len(present) != 1:
            raise InvalidInput(
                "a message must have exactly one content variant",
                details={"present": present},
            )
        if self.text is not None and not isinstance(self.text, str):
            raise InvalidInput("message text must be a string")


@dataclass(frozen=True)
class SamplingOptions:
    """
    Sampling parameters for one layer (library, client, or call).

    ``None`` means "not set at this layer"; resolution merges layers field
    by field with the most specific layer winning.
    """
    max_output_tokens: Optional[float] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    force_schema_constrained_tokens: Optional[bool] = None


SAMPLING_DEFAULTS = SamplingOptions(
    max_output_tokens=4096,
    temperature=0.5,
    top_p=0.95,
    force_schema_constrained_tokens=False,
)

SchemaT = TypeVar("SchemaT")


@dataclass(frozen=True)
class ToolDescriptor(Generic[SchemaT]):
    """A callable tool offered to the model. ``parameters`` is a schema (internal or raw)."""
    name: str
    description: str
    parameters: SchemaT


@dataclass(frozen=True)
class BuiltinTool:
    """
    A tool the backend runs on its own, offered next to function tools.

    The model never hands a call to a built-in tool back to the caller;
    the backend folds its output into the generated text.
    """
    type: ClassVar[str] = ""


@dataclass(frozen=True)
class WebSearchTool(BuiltinTool):
    """Lets the backend search the web while generating."""
    type: ClassVar[str] = "web_search"


# =============================================================================
# Stream events
# =============================================================================

@dataclass(frozen=True)
class ToolCall:
    """A tool invocation chosen by the model."""
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """An incremental piece of generated text."""
    text: str


@dataclass(frozen=True)
class Final:
    """
    Terminal event of a well-formed stream.

    ``data`` is ``None`` for free text, the validated value for structured
    data, or a ``ToolCall`` when the model chose a tool.
    ``additional_data`` holds further simultaneous tool calls for backends
    that issue several at once; it is ``None`` everywhere else.
    """
    text: str
    data: Any = None
    additional_data: Optional[Tuple[Any, ...]] = None


StreamEvent = Union[Chunk, Final]


# =============================================================================
# Adapter boundary
# =============================================================================

RawMessageT = TypeVar("RawMessageT")
RawSchemaT = TypeVar("RawSchemaT")
RawToolT = TypeVar("RawToolT")
RawEventT = TypeVar("RawEventT")


@runtime_checkable
class GenerationAdapterV1(Protocol[RawMessageT, RawSchemaT, RawToolT, RawEventT]):
    """
    Adapter boundary, implemented once per backend.

    The four type parameters are the backend's own message, schema, tool
    and raw-event shapes. ``generate_raw_events`` and the transforms return
    async iterators; calling them must not start any I/O, which begins
    only when the returned iterator is pulled.
    """

    adapter_version: str

    def transform_to_raw_messages(self, messages: Sequence[Message]) -> List[RawMessageT]:
        ...

    def transform_to_raw_schema(self, schema: Any) -> RawSchemaT:
        ...

    def transform_to_raw_tool(self, tool: Union[ToolDescriptor[RawSchemaT], BuiltinTool]) -> RawToolT:
        """Map a function tool, or a built-in tool the backend runs itself."""
        ...

    def generate_raw_events(
        self,
        *,
        messages: List[RawMessageT],
        sampling: SamplingOptions,
        tools: Mapping[str, RawToolT],
        force_tool: Optional[str] = None,
    ) -> AsyncIterator[RawEventT]:
        ...

    def transform_natural_language_from_raw_events(
        self, raw_events: AsyncIterator[RawEventT]
    ) -> AsyncIterator[StreamEvent]:
        ...

    def transform_structured_data_from_raw_events(
        self, schema: Any, raw_events: AsyncIterator[RawEventT]
    ) -> AsyncIterator[StreamEvent]:
        ...

    def transform_with_optional_tools_from_raw_events(
        self, tools: Mapping[str, Any], raw_events: AsyncIterator[RawEventT]
    ) -> AsyncIterator[StreamEvent]:
        ...


__all__ = [
    "GENERATION_PROTOCOL_VERSION",
    "GENERATION_PROTOCOL_ID",
    "STRUCTURED_DATA_TOOL_NAME",
    "ROLE_USER",
    "ROLE_MODEL",
    "ROLE_SYSTEM",
    # errors
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
    # data model
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
    "GenerationAdapterV1",
]
