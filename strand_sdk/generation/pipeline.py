# strand_sdk/generation/pipeline.py
# SPDX-License-Identifier: Apache-2.0
"""
Generation pipeline: the public call surface.

``GenerationClient`` turns a prompt (plus optional system prompt, extra
messages and sampling overrides) into an ``EventStream`` by driving an
adapter through the ``GenerationAdapterV1`` boundary:

1. assemble messages (system prompt, user prompt, extra messages);
2. resolve sampling (library defaults <- client <- call), validate, coerce;
3. build tool descriptors (``structured_data`` forced, or one per tool);
4. ``adapter.generate_raw_events(...)``;
5. the mode's ``transform_*_from_raw_events``;
6. wrap in ``EventStream``.

Steps 1-5 run synchronously inside the ``generate_*`` call, so invalid
input raises before any stream exists. No backend I/O happens until the
stream is iterated.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from strand_sdk.generation.generation_base import (
    ROLE_SYSTEM,
    ROLE_USER,
    SAMPLING_DEFAULTS,
    STRUCTURED_DATA_TOOL_NAME,
    BuiltinTool,
    GenerationAdapterV1,
    InvalidInput,
    Message,
    SamplingOptions,
    ToolDescriptor,
)
from strand_sdk.generation.schema import ObjectSchema, Schema
from strand_sdk.generation.stream import EventStream

LOG = logging.getLogger(__name__)

# Several backends read a literal 0 as "unset" rather than "greedy".
_SMALLEST_POSITIVE_FLOAT = math.ulp(0.0)


class GenerationMode(enum.Enum):
    NATURAL_LANGUAGE = "natural_language"
    STRUCTURED_DATA = "structured_data"
    OPTIONAL_TOOLS = "optional_tools"


@dataclass(frozen=True)
class GenerationRequest:
    """One generation call, tagged by mode."""
    mode: GenerationMode
    messages: Sequence[Message]
    sampling: SamplingOptions
    schema: Optional[ObjectSchema] = None
    tools: Mapping[str, Union[ObjectSchema, BuiltinTool]] = field(default_factory=dict)


# =============================================================================
# Sampling resolution
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def resolve_sampling(*layers: Optional[SamplingOptions]) -> SamplingOptions:
    """
    Merge sampling layers field by field (later layers win), then validate.

    ``resolve_sampling(client_layer, call_layer)`` starts from
    ``SAMPLING_DEFAULTS``. The result has every field set.

    Raises:
        InvalidInput: a field is out of range, naming the field and value.
    """
    merged: Dict[str, Any] = {}
    for layer in (SAMPLING_DEFAULTS, *layers):
        if layer is None:
            continue
        for f in fields(SamplingOptions):
            value = getattr(layer, f.name)
            if value is not None:
                merged[f.name] = value

    max_output_tokens = merged["max_output_tokens"]
    temperature = merged["temperature"]
    top_p = merged["top_p"]

    for name, value in (
        ("max_output_tokens", max_output_tokens),
        ("temperature", temperature),
        ("top_p", top_p),
    ):
        if not _is_number(value) or not math.isfinite(value):
            raise InvalidInput(f"{name} must be a finite number (got: {value!r})")

    max_output_tokens = _round_half_up(max_output_tokens)
    if max_output_tokens < 1:
        raise InvalidInput(f"max_output_tokens must be at least 1 (got: {max_output_tokens})")
    if temperature < 0:
        raise InvalidInput(f"temperature must be no less than 0 (got: {temperature})")
    if top_p < 0:
        raise InvalidInput(f"top_p must be no less than 0 (got: {top_p})")
    if top_p > 1:
        raise InvalidInput(f"top_p must be no greater than 1 (got: {top_p})")

    if temperature == 0:
        temperature = _SMALLEST_POSITIVE_FLOAT
    if top_p == 0:
        top_p = _SMALLEST_POSITIVE_FLOAT

    return SamplingOptions(
        max_output_tokens=max_output_tokens,
        temperature=temperature,
        top_p=top_p,
        force_schema_constrained_tokens=bool(merged["force_schema_constrained_tokens"]),
    )


# =============================================================================
# Client
# =============================================================================

class GenerationClient:
    """
    Uniform generation surface over any ``GenerationAdapterV1``.

    Parameters
    ----------
    adapter:
        Backend adapter (or a ``ResultCache`` wrapping one).
    system_prompt:
        Default system prompt; a call-level ``system_prompt`` replaces it.
    sampling:
        Client-level sampling overrides, layered over the library defaults.
    """

    def __init__(
        self,
        adapter: GenerationAdapterV1,
        *,
        system_prompt: Optional[str] = None,
        sampling: Optional[SamplingOptions] = None,
    ) -> None:
        if not isinstance(adapter, GenerationAdapterV1):
            raise InvalidInput(
                f"{type(adapter).__name__} does not implement the generation adapter protocol"
            )
        self.adapter = adapter
        self.system_prompt = system_prompt
        self.sampling = sampling or SamplingOptions()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def generate_natural_language(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        extra_messages: Sequence[Message] = (),
        sampling: Optional[SamplingOptions] = None,
    ) -> EventStream:
        """Stream free text. ``Final.data`` is ``None``."""
        request = self._build_request(
            GenerationMode.NATURAL_LANGUAGE, prompt, system_prompt, extra_messages, sampling
        )
        return self._run(request)

    def generate_structured_data(
        self,
        prompt: str,
        schema: ObjectSchema,
        *,
        system_prompt: Optional[str] = None,
        extra_messages: Sequence[Message] = (),
        sampling: Optional[SamplingOptions] = None,
    ) -> EventStream:
        """Stream JSON text forced to match ``schema``. ``Final.data`` is the validated value."""
        _require_object_schema("schema", schema)
        request = self._build_request(
            GenerationMode.STRUCTURED_DATA, prompt, system_prompt, extra_messages, sampling
        )
        return self._run(replace(request, schema=schema))

    def generate_with_optional_tools(
        self,
        prompt: str,
        tools: Mapping[str, Union[ObjectSchema, BuiltinTool]],
        *,
        system_prompt: Optional[str] = None,
        extra_messages: Sequence[Message] = (),
        sampling: Optional[SamplingOptions] = None,
    ) -> EventStream:
        """
        Stream text or a tool call.

        ``Final.data`` is ``None`` when the model answered in free text,
        otherwise a ``ToolCall``. Backends able to issue several calls at
        once put the remaining calls in ``Final.additional_data``. A
        ``BuiltinTool`` entry (such as ``WebSearchTool()``) is run by the
        backend itself and never comes back as a ``ToolCall``.
        """
        for name, tool in tools.items():
            if not isinstance(tool, BuiltinTool):
                _require_object_schema(f"tool {name!r}", tool)
        request = self._build_request(
            GenerationMode.OPTIONAL_TOOLS, prompt, system_prompt, extra_messages, sampling
        )
        return self._run(replace(request, tools=dict(tools)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_request(
        self,
        mode: GenerationMode,
        prompt: str,
        system_prompt: Optional[str],
        extra_messages: Sequence[Message],
        sampling: Optional[SamplingOptions],
    ) -> GenerationRequest:
        if not isinstance(prompt, str):
            raise InvalidInput(f"prompt must be a string (got: {type(prompt).__name__})")
        messages: List[Message] = []
        effective_system = system_prompt if system_prompt is not None else self.system_prompt
        if effective_system:
            messages.append(Message(role=ROLE_SYSTEM, text=effective_system))
        messages.append(Message(role=ROLE_USER, text=prompt))
        for extra in extra_messages:
            if not isinstance(extra, Message):
                raise InvalidInput(f"extra messages must be Message instances (got: {type(extra).__name__})")
            messages.append(extra)

        return GenerationRequest(
            mode=mode,
            messages=tuple(messages),
            sampling=resolve_sampling(self.sampling, sampling),
        )

    def _raw_tool(self, name: str, schema: Union[Schema, BuiltinTool]) -> Any:
        if isinstance(schema, BuiltinTool):
            return self.adapter.transform_to_raw_tool(schema)
        descriptor = ToolDescriptor(
            name=name,
            description=schema.description or "",
            parameters=self.adapter.transform_to_raw_schema(schema),
        )
        return self.adapter.transform_to_raw_tool(descriptor)

    def _run(self, request: GenerationRequest) -> EventStream:
        adapter = self.adapter
        raw_messages = adapter.transform_to_raw_messages(list(request.messages))

        force_tool: Optional[str] = None
        if request.mode is GenerationMode.STRUCTURED_DATA:
            if request.schema is None:
                raise InvalidInput("structured data generation requires a schema")
            raw_tools = {STRUCTURED_DATA_TOOL_NAME: self._raw_tool(STRUCTURED_DATA_TOOL_NAME, request.schema)}
            force_tool = STRUCTURED_DATA_TOOL_NAME
        elif request.mode is GenerationMode.OPTIONAL_TOOLS:
            raw_tools = {name: self._raw_tool(name, tool) for name, tool in request.tools.items()}
        else:
            raw_tools = {}

        LOG.debug(
            "generate %s: %d messages, %d tools, force_tool=%s",
            request.mode.value,
            len(raw_messages),
            len(raw_tools),
            force_tool,
        )
        raw_events = adapter.generate_raw_events(
            messages=raw_messages,
            sampling=request.sampling,
            tools=raw_tools,
            force_tool=force_tool,
        )

        if request.mode is GenerationMode.STRUCTURED_DATA:
            events = adapter.transform_structured_data_from_raw_events(request.schema, raw_events)
        elif request.mode is GenerationMode.OPTIONAL_TOOLS:
            events = adapter.transform_with_optional_tools_from_raw_events(request.tools, raw_events)
        else:
            events = adapter.transform_natural_language_from_raw_events(raw_events)
        return EventStream(events)


def _require_object_schema(what: str, schema: Any) -> None:
    if not isinstance(schema, ObjectSchema):
        raise InvalidInput(
            f"{what} must be an ObjectSchema (got: {type(schema).__name__})"
        )


__all__ = [
    "GenerationMode",
    "GenerationRequest",
    "GenerationClient",
    "resolve_sampling",
]
