# strand_sdk/mock/mock_generation_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
Mock generation adapter used in tests and examples.

Raw events are the library's own ``StreamEvent`` objects, so no backend
wire format is involved. Two modes:

- Scripted: ``queue_events([...])`` makes the next generation replay the
  given events verbatim (including a ``Final``, or deliberately without
  one).
- Canned: otherwise the adapter streams the next canned response (they
  rotate) word by word and the transforms synthesize the ``Final``;
  structured mode validates the text through the schema codec.

Every ``generate_raw_events`` call is recorded in ``calls``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Union

from strand_sdk.generation.generation_base import (
    BuiltinTool,
    Chunk,
    Final,
    Message,
    SamplingOptions,
    StreamEvent,
    ToolCall,
    ToolDescriptor,
)
from strand_sdk.generation.schema import Schema
from strand_sdk.generation.schema_codec import validate


# Marks the end of a canned response; the transforms synthesize the Final there.
_END_OF_CANNED = object()


def _split_words(text: str) -> List[str]:
    # keep the whitespace attached so the pieces concatenate back to ``text``
    return re.findall(r"\s*\S+|\s+$", text) or [text]


@dataclass
class RecordedCall:
    messages: List[Message]
    sampling: SamplingOptions
    tools: Dict[str, Union[ToolDescriptor[Schema], BuiltinTool]]
    force_tool: Optional[str]


@dataclass
class MockGenerationAdapter:
    """A deterministic adapter for tests and demos."""

    name: str = "mock-generation"
    canned_responses: Sequence[str] = ("Hello! How can I assist you today?",)
    calls: List[RecordedCall] = field(default_factory=list)
    adapter_version: str = "v1"

    def __post_init__(self) -> None:
        self._queued: List[List[StreamEvent]] = []
        self._next_canned = 0

    def queue_events(self, events: Sequence[StreamEvent]) -> None:
        """Replay ``events`` verbatim for the next generation."""
        self._queued.append(list(events))

    @property
    def last_call(self) -> Optional[RecordedCall]:
        return self.calls[-1] if self.calls else None

    # ------------------------------------------------------------------
    # Adapter boundary
    # ------------------------------------------------------------------

    def transform_to_raw_messages(self, messages: Sequence[Message]) -> List[Message]:
        return list(messages)

    def transform_to_raw_schema(self, schema: Schema) -> Schema:
        return schema

    def transform_to_raw_tool(
        self, tool: Union[ToolDescriptor[Schema], BuiltinTool]
    ) -> Union[ToolDescriptor[Schema], BuiltinTool]:
        return tool

    def generate_raw_events(
        self,
        *,
        messages: List[Message],
        sampling: SamplingOptions,
        tools: Mapping[str, Union[ToolDescriptor[Schema], BuiltinTool]],
        force_tool: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append(
            RecordedCall(
                messages=list(messages),
                sampling=sampling,
                tools=dict(tools),
                force_tool=force_tool,
            )
        )
        if self._queued:
            events = self._queued.pop(0)
        else:
            text = self.canned_responses[self._next_canned % len(self.canned_responses)]
            self._next_canned += 1
            events = [Chunk(text=piece) for piece in _split_words(text)]
            events.append(_END_OF_CANNED)
        return self._emit(events)

    async def _emit(self, events: List[Any]) -> AsyncIterator[Any]:
        for event in events:
            yield event

    async def _pass_through(
        self, raw_events: AsyncIterator[StreamEvent], schema: Optional[Schema] = None
    ) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []
        async for event in raw_events:
            if event is _END_OF_CANNED:
                text = "".join(parts)
                data: Any = validate(schema, text) if schema is not None else None
                yield Final(text=text, data=data)
                return
            yield event
            if isinstance(event, Chunk):
                parts.append(event.text)

    def transform_natural_language_from_raw_events(
        self, raw_events: AsyncIterator[StreamEvent]
    ) -> AsyncIterator[StreamEvent]:
        return self._pass_through(raw_events)

    def transform_structured_data_from_raw_events(
        self, schema: Schema, raw_events: AsyncIterator[StreamEvent]
    ) -> AsyncIterator[StreamEvent]:
        return self._pass_through(raw_events, schema)

    def transform_with_optional_tools_from_raw_events(
        self, tools: Mapping[str, Schema], raw_events: AsyncIterator[StreamEvent]
    ) -> AsyncIterator[StreamEvent]:
        return self._pass_through(raw_events)


def tool_call_final(name: str, args: Mapping[str, Any], *more: ToolCall) -> Final:
    """Build the ``Final`` a tool-calling backend would emit."""
    return Final(
        text="",
        data=ToolCall(name=name, args=dict(args)),
        additional_data=tuple(more) or None,
    )


__all__ = [
    "MockGenerationAdapter",
    "RecordedCall",
    "tool_call_final",
]
