# strand_sdk/generation/cache.py
# SPDX-License-Identifier: Apache-2.0
"""
Content-addressed transcript cache in front of a generation adapter.

``ResultCache`` implements ``GenerationAdapterV1`` itself, so it drops in
wherever an adapter is expected:

    cache = ResultCache(
        lambda: OpenAIAdapter(model="gpt-4o-2024-08-06"),
        cache_dir="tests/fixtures/llm-cache",
        cache_prefix="openai",
    )
    client = GenerationClient(cache)

Every request is reduced to a SHA-256 fingerprint of its semantically
relevant fields. A hit replays the stored transcript without ever
building the backend; a miss builds the backend (once per cache
instance), streams real events, and writes the transcript once a
``Final`` event has been seen. Failed generations are never written.

Storage format
--------------
One YAML file per fingerprint, ``<cache_dir>/<prefix>-<sha256>.yaml``,
holding the request echo (``messages``, ``sampling``, ``tools``,
``force_tool``) and the ``response`` events in order.

Fingerprint stability
---------------------
The byte sequence fed to the digest is an on-disk contract: changing the
field order, labels or number rendering invalidates every stored entry.
Only fields that are set and not ``False`` contribute, so an omitted
option and a disabled one share a key.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence, Union

import yaml

from strand_sdk.generation.generation_base import (
    BuiltinTool,
    Chunk,
    Final,
    GenerationAdapterV1,
    InvalidInput,
    Message,
    SamplingOptions,
    StreamEvent,
    ToolCall,
    ToolDescriptor,
)
from strand_sdk.generation.schema import Schema
from strand_sdk.generation.schema_codec import encode

LOG = logging.getLogger(__name__)

_CACHE_DIR_ENV = "STRAND_CACHE_DIR"
_DEFAULT_CACHE_DIR = ".strand-cache"
_CACHE_FILE_SUFFIX = ".yaml"

# (attribute, digest label) in digest order.
_SAMPLING_DIGEST_FIELDS = (
    ("max_output_tokens", "maxOutputTokens"),
    ("temperature", "temperature"),
    ("top_p", "topP"),
    ("force_schema_constrained_tokens", "forceSchemaConstrainedTokens"),
)

_EXPONENT_ZEROS = re.compile(r"e([+-])0*(\d)")


def _resolve_cache_dir(cache_dir: Optional[Union[str, os.PathLike]]) -> Path:
    if cache_dir is not None:
        return Path(cache_dir)
    return Path(os.environ.get(_CACHE_DIR_ENV) or _DEFAULT_CACHE_DIR)


# =============================================================================
# Fingerprint
# =============================================================================

def format_number(value: Union[int, float]) -> str:
    """Render a number the way ECMAScript ``Number.prototype.toString`` does."""
    if isinstance(value, int):
        return str(value)
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" in text:
        if 1e-6 <= abs(value) < 1e21:
            return format(Decimal(text), "f")
        return _EXPONENT_ZEROS.sub(r"e\1\2", text)
    return text


def _integral_floats_as_ints(value: Any) -> Any:
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return int(value)
        return value
    if isinstance(value, Mapping):
        return {key: _integral_floats_as_ints(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_integral_floats_as_ints(item) for item in value]
    return value


def compact_json(value: Any) -> str:
    """Compact JSON in which ``1.0`` and ``1`` render alike, as ``format_number`` does."""
    return json.dumps(_integral_floats_as_ints(value), separators=(",", ":"), ensure_ascii=False)


def fingerprint(
    *,
    messages: Sequence[Message],
    sampling: SamplingOptions,
    tools: Mapping[str, Union[ToolDescriptor[Schema], BuiltinTool]],
    force_tool: Optional[str] = None,
) -> str:
    """Hex SHA-256 over the request fields that influence generation."""
    digest = hashlib.sha256()

    def update(text: str) -> None:
        digest.update(text.encode("utf-8"))

    def may_update(label: str, value: Any) -> None:
        if value is None or value is False:
            return
        update(label)
        if value is True:
            return
        if isinstance(value, (int, float)):
            update(format_number(value))
        else:
            update(str(value))

    for attr, label in _SAMPLING_DIGEST_FIELDS:
        may_update(label, getattr(sampling, attr))

    for message in messages:
        may_update("role", message.role)
        may_update("text", message.text)
        if message.image_data is not None:
            may_update("imageDataMimeType", message.image_data.mime_type)
            may_update("imageDataBase64Data", message.image_data.base64_data)
        if message.tool_call is not None:
            may_update("toolName", message.tool_call.name)
            may_update("toolArgs", compact_json(dict(message.tool_call.args)))
            may_update("toolResult", compact_json(dict(message.tool_call.result)))

    for name, tool in tools.items():
        update(name)
        if isinstance(tool, BuiltinTool):
            may_update("builtin", tool.type)
            continue
        may_update("description", tool.description)
        update(compact_json(encode(tool.parameters)))

    if force_tool:
        update(force_tool)

    return digest.hexdigest()


# =============================================================================
# Transcript (de)serialization
# =============================================================================

def _message_echo(message: Message) -> Dict[str, Any]:
    echo: Dict[str, Any] = {"role": message.role}
    if message.text is not None:
        echo["text"] = message.text
    if message.image_data is not None:
        echo["image_data"] = {
            "mime_type": message.image_data.mime_type,
            "base64_data": message.image_data.base64_data,
        }
    if message.tool_call is not None:
        echo["tool_call"] = {
            "name": message.tool_call.name,
            "args": dict(message.tool_call.args),
            "result": dict(message.tool_call.result),
        }
    return echo


def _tool_echo(tool: Union[ToolDescriptor[Schema], BuiltinTool]) -> Dict[str, Any]:
    if isinstance(tool, BuiltinTool):
        return {"builtin": tool.type}
    return {"description": tool.description, "parameters": encode(tool.parameters)}


def _data_echo(data: Any) -> Any:
    if isinstance(data, ToolCall):
        return {"name": data.name, "args": dict(data.args)}
    return data


def _event_echo(event: StreamEvent) -> Dict[str, Any]:
    if isinstance(event, Chunk):
        return {"chunk": event.text}
    echo: Dict[str, Any] = {"finished": True, "text": event.text, "data": _data_echo(event.data)}
    if event.additional_data is not None:
        echo["additional_data"] = [_data_echo(item) for item in event.additional_data]
    return echo


def _tool_call_from_echo(echo: Any) -> ToolCall:
    return ToolCall(name=echo["name"], args=echo.get("args") or {})


def _event_from_echo(echo: Mapping[str, Any], *, tool_mode: bool) -> StreamEvent:
    if "chunk" in echo:
        return Chunk(text=echo["chunk"])
    data = echo.get("data")
    additional = echo.get("additional_data")
    if tool_mode:
        if data is not None:
            data = _tool_call_from_echo(data)
        if additional is not None:
            additional = tuple(_tool_call_from_echo(item) for item in additional)
    elif additional is not None:
        additional = tuple(additional)
    return Final(text=echo.get("text", ""), data=data, additional_data=additional)


# =============================================================================
# Hit / miss
# =============================================================================

class TranscriptSink:
    """Writes one transcript, together with its request echo, to ``path``."""

    def __init__(self, path: Path, request_echo: Mapping[str, Any]) -> None:
        self.path = path
        self.request_echo = dict(request_echo)

    async def persist(self, events: Sequence[StreamEvent]) -> None:
        record = dict(self.request_echo)
        record["response"] = [_event_echo(event) for event in events]
        text = yaml.safe_dump(record, sort_keys=False, allow_unicode=True)
        await asyncio.to_thread(self._write, text)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")


@dataclass(frozen=True)
class CacheHit:
    """A stored transcript exists for the request."""
    path: Path


@dataclass(frozen=True)
class CacheMiss:
    """No transcript yet: live backend events plus the sink that records them."""
    backend: Any
    raw_events: AsyncIterator[Any]
    sink: TranscriptSink


CacheLookup = Union[CacheHit, CacheMiss]


def _backend_tool(backend: GenerationAdapterV1, tool: Union[ToolDescriptor[Schema], BuiltinTool]) -> Any:
    if isinstance(tool, BuiltinTool):
        return backend.transform_to_raw_tool(tool)
    return backend.transform_to_raw_tool(
        ToolDescriptor(
            name=tool.name,
            description=tool.description,
            parameters=backend.transform_to_raw_schema(tool.parameters),
        )
    )


async def _aclose(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class ResultCache:
    """
    Adapter decorator that memoizes whole transcripts on disk.

    Parameters
    ----------
    adapter_factory:
        Zero-argument callable building the real adapter. Called at most
        once per cache instance, and only on the first miss.
    cache_dir:
        Directory for cache files; created on first write. Defaults to
        ``$STRAND_CACHE_DIR`` or ``.strand-cache``.
    cache_prefix:
        File-name prefix, typically naming the backend.
    """

    adapter_version = "v1"

    def __init__(
        self,
        adapter_factory: Callable[[], GenerationAdapterV1],
        *,
        cache_dir: Optional[Union[str, os.PathLike]] = None,
        cache_prefix: str = "strand",
    ) -> None:
        self.cache_dir = _resolve_cache_dir(cache_dir)
        self.cache_prefix = cache_prefix
        self._adapter_factory = adapter_factory
        self._adapter: Optional[GenerationAdapterV1] = None

    def path_for(self, digest: str) -> Path:
        return self.cache_dir / f"{self.cache_prefix}-{digest}{_CACHE_FILE_SUFFIX}"

    def _backend(self) -> GenerationAdapterV1:
        if self._adapter is None:
            LOG.debug("cache %s: constructing backend adapter", self.cache_prefix)
            self._adapter = self._adapter_factory()
        return self._adapter

    # ------------------------------------------------------------------
    # Adapter boundary: raw shapes are the library's own
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
    ) -> CacheLookup:
        digest = fingerprint(messages=messages, sampling=sampling, tools=tools, force_tool=force_tool)
        path = self.path_for(digest)
        if path.exists():
            LOG.debug("cache %s: hit %s", self.cache_prefix, path.name)
            return CacheHit(path=path)

        LOG.debug("cache %s: miss %s", self.cache_prefix, path.name)
        backend = self._backend()
        raw_tools = {name: _backend_tool(backend, tool) for name, tool in tools.items()}
        raw_events = backend.generate_raw_events(
            messages=backend.transform_to_raw_messages(messages),
            sampling=sampling,
            tools=raw_tools,
            force_tool=force_tool,
        )
        request_echo: Dict[str, Any] = {
            "messages": [_message_echo(m) for m in messages],
            "sampling": {
                "max_output_tokens": sampling.max_output_tokens,
                "temperature": sampling.temperature,
                "top_p": sampling.top_p,
                "force_schema_constrained_tokens": sampling.force_schema_constrained_tokens,
            },
            "tools": {name: _tool_echo(tool) for name, tool in tools.items()},
        }
        if force_tool is not None:
            request_echo["force_tool"] = force_tool
        return CacheMiss(backend=backend, raw_events=raw_events, sink=TranscriptSink(path, request_echo))

    def transform_natural_language_from_raw_events(self, raw_events: CacheLookup) -> AsyncIterator[StreamEvent]:
        match raw_events:
            case CacheHit(path=path):
                return self._replay(path, tool_mode=False)
            case CacheMiss(backend=backend, raw_events=live, sink=sink):
                return self._record(backend.transform_natural_language_from_raw_events(live), sink)
        raise InvalidInput(f"unexpected cache lookup: {type(raw_events).__name__}")

    def transform_structured_data_from_raw_events(
        self, schema: Schema, raw_events: CacheLookup
    ) -> AsyncIterator[StreamEvent]:
        match raw_events:
            case CacheHit(path=path):
                return self._replay(path, tool_mode=False)
            case CacheMiss(backend=backend, raw_events=live, sink=sink):
                return self._record(backend.transform_structured_data_from_raw_events(schema, live), sink)
        raise InvalidInput(f"unexpected cache lookup: {type(raw_events).__name__}")

    def transform_with_optional_tools_from_raw_events(
        self, tools: Mapping[str, Schema], raw_events: CacheLookup
    ) -> AsyncIterator[StreamEvent]:
        match raw_events:
            case CacheHit(path=path):
                return self._replay(path, tool_mode=True)
            case CacheMiss(backend=backend, raw_events=live, sink=sink):
                return self._record(backend.transform_with_optional_tools_from_raw_events(tools, live), sink)
        raise InvalidInput(f"unexpected cache lookup: {type(raw_events).__name__}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _replay(self, path: Path, *, tool_mode: bool) -> AsyncIterator[StreamEvent]:
        text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        record = yaml.safe_load(text) or {}
        for echo in record.get("response") or []:
            yield _event_from_echo(echo, tool_mode=tool_mode)

    async def _record(
        self, events: AsyncIterator[StreamEvent], sink: TranscriptSink
    ) -> AsyncIterator[StreamEvent]:
        seen: List[StreamEvent] = []
        try:
            async for event in events:
                seen.append(event)
                if isinstance(event, Final):
                    try:
                        await sink.persist(seen)
                    except (OSError, yaml.YAMLError):
                        LOG.warning("cache %s: failed to write %s", self.cache_prefix, sink.path, exc_info=True)
                    else:
                        LOG.debug("cache %s: wrote %d events to %s", self.cache_prefix, len(seen), sink.path.name)
                yield event
        finally:
            await _aclose(events)


__all__ = [
    "CacheHit",
    "CacheMiss",
    "CacheLookup",
    "TranscriptSink",
    "ResultCache",
    "fingerprint",
    "format_number",
    "compact_json",
]
