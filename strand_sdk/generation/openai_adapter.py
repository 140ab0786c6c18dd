# strand_sdk/generation/openai_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
OpenAI generation adapter.

Implements ``GenerationAdapterV1`` on top of the official ``openai``
Python client (``AsyncOpenAI``, Chat Completions streaming).

Goals
-----
- Map library messages, schemas and tools to Chat Completions shapes.
- Force a single function call for structured data.
- Turn streamed deltas into ``Chunk`` / ``Final`` events, validating
  tool arguments through the schema codec.
- Normalize provider errors into ``BackendError`` codes.

Usage
-----
    from strand_sdk.generation import GenerationClient
    from strand_sdk.generation.openai_adapter import OpenAIAdapter

    adapter = OpenAIAdapter(model="gpt-4o-2024-08-06", api_key="sk-...")
    client = GenerationClient(adapter)

    final = await client.generate_natural_language("Say hello!").result()
    print(final.text)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import openai
from openai import AsyncOpenAI

from strand_sdk.generation.generation_base import (
    ROLE_MODEL,
    BackendError,
    BuiltinTool,
    CapabilityError,
    Chunk,
    Final,
    GenerationError,
    Message,
    ResultLimitError,
    ResultValidateError,
    SamplingOptions,
    StreamEvent,
    ToolCall,
    ToolDescriptor,
    ValidationIssue,
    WebSearchTool,
)
from strand_sdk.generation.schema import Schema
from strand_sdk.generation.schema_codec import encode, validate

logger = logging.getLogger(__name__)

COMPATIBLE_MODELS: Tuple[str, ...] = (
    "gpt-4o",
    "gpt-4o-2024-05-13",
    "gpt-4o-2024-08-06",
    "gpt-4o-2024-11-20",
    "gpt-4o-mini",
    "gpt-4o-mini-2024-07-18",
    "gpt-4-turbo",
    "gpt-4-turbo-2024-04-09",
    "gpt-4.1",
    "gpt-4.1-mini",
    "gpt-4.1-nano",
    "gpt-3.5-turbo",
    "gpt-3.5-turbo-0125",
)

# Models that accept ``strict`` function schemas (schema-constrained tokens).
STRICT_SCHEMA_MODELS = frozenset(
    {
        "gpt-4o",
        "gpt-4o-2024-08-06",
        "gpt-4o-2024-11-20",
        "gpt-4o-mini",
        "gpt-4o-mini-2024-07-18",
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4.1-nano",
    }
)

_ROLE_MAP = {ROLE_MODEL: "assistant"}


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


async def _create_chat_stream(
    client: Any,
    request: Mapping[str, Any],
    *,
    force_tool: Optional[str],
    strict: bool,
) -> Any:
    """
    Start a streaming Chat Completions call.

    Injects the parameters this adapter controls into the request: a
    forced ``tool_choice`` (with parallel calls disabled) and ``strict``
    function schemas.
    """
    kwargs = dict(request)
    if strict and kwargs.get("tools"):
        kwargs["tools"] = [
            {**tool, "function": {**tool["function"], "strict": True}} for tool in kwargs["tools"]
        ]
    if force_tool is not None:
        kwargs["tool_choice"] = {"type": "function", "function": {"name": force_tool}}
        kwargs["parallel_tool_calls"] = False
    return await client.chat.completions.create(stream=True, **kwargs)


def _is_function_tool(tool: Mapping[str, Any]) -> bool:
    return tool.get("type") == "function"


def _first_choice(event: Any) -> Any:
    choices = getattr(event, "choices", None)
    if not choices:
        return None
    return choices[0]


class _ToolCallAccumulator:
    """Collects streamed tool-call deltas, keyed by call index."""

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, Any]] = {}
        self.chunks: List[str] = []

    def feed(self, delta: Any) -> List[str]:
        out: List[str] = []
        content = getattr(delta, "content", None)
        if content:
            out.append(content)
        for call in getattr(delta, "tool_calls", None) or []:
            index = getattr(call, "index", 0) or 0
            if index not in self._calls:
                if self._calls:
                    out.append("\n")
                self._calls[index] = {"name": "", "arguments": []}
            entry = self._calls[index]
            function = getattr(call, "function", None)
            name = getattr(function, "name", None)
            if name:
                entry["name"] += name
            arguments = getattr(function, "arguments", None)
            if arguments:
                entry["arguments"].append(arguments)
                out.append(arguments)
        self.chunks.extend(out)
        return out

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def calls(self) -> List[Tuple[str, str]]:
        return [
            (entry["name"], "".join(entry["arguments"]))
            for _, entry in sorted(self._calls.items())
        ]


def _non_strict_reason(wire: Any, path: str = "#") -> Optional[str]:
    """Why a wire schema cannot be sent with ``strict: true`` (None if it can)."""
    if isinstance(wire, list):
        for i, item in enumerate(wire):
            reason = _non_strict_reason(item, f"{path}/{i}")
            if reason:
                return reason
        return None
    if not isinstance(wire, Mapping):
        return None
    additional = wire.get("additionalProperties")
    if isinstance(additional, Mapping):
        return f"open-ended 'additionalProperties' at {path}"
    properties = wire.get("properties")
    if isinstance(properties, Mapping):
        missing = [name for name in properties if name not in (wire.get("required") or [])]
        if missing:
            return f"optional properties {missing} at {path}"
        for name, prop in properties.items():
            reason = _non_strict_reason(prop, f"{path}/properties/{name}")
            if reason:
                return reason
    for key in ("items", "anyOf", "allOf"):
        if key in wire:
            reason = _non_strict_reason(wire[key], f"{path}/{key}")
            if reason:
                return reason
    return None


class OpenAIAdapter:
    """
    Generation adapter backed by the OpenAI Chat Completions API.

    Parameters
    ----------
    model:
        Chat model id, e.g. ``"gpt-4o-2024-08-06"``.
    client:
        Pre-configured ``AsyncOpenAI`` instance. Recommended when you want
        to control retries, proxies, organization, etc.
    api_key, organization, base_url:
        Used to build a client when ``client`` is not given.
    """

    adapter_version = "v1"

    def __init__(
        self,
        *,
        model: str = "gpt-4o-2024-08-06",
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        organization: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key,
                organization=organization,
                base_url=base_url,
            )
        self._client = client
        self.model = model

    @staticmethod
    def is_supported_model(model: str) -> bool:
        return model in COMPATIBLE_MODELS

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_retry_after_ms(err: Any) -> Optional[int]:
        """Best-effort extraction of the Retry-After header from OpenAI errors."""
        response = getattr(err, "response", None)
        headers = getattr(response, "headers", None)
        if not headers:
            return None
        value = headers.get("retry-after")
        if value is None:
            return None
        try:
            seconds = int(str(value).strip())
        except ValueError:
            return None
        return max(0, seconds) * 1000

    def _translate_openai_error(self, err: Exception) -> GenerationError:
        """Map OpenAI client errors to ``BackendError`` codes."""
        if isinstance(err, GenerationError):
            return err
        if isinstance(err, openai.APITimeoutError):
            return BackendError("OpenAI API request timed out", code="DEADLINE_EXCEEDED")
        if isinstance(err, openai.APIConnectionError):
            return BackendError(str(err) or "OpenAI API connection error", code="TRANSIENT_NETWORK")
        if isinstance(err, openai.RateLimitError):
            return BackendError(
                "OpenAI rate limit exceeded",
                code="RESOURCE_EXHAUSTED",
                retry_after_ms=self._extract_retry_after_ms(err),
            )
        if isinstance(err, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return BackendError(str(err) or "OpenAI authentication/authorization error", code="AUTH_ERROR")
        if isinstance(err, openai.BadRequestError):
            return BackendError(str(err) or "OpenAI request is invalid", code="BAD_REQUEST")
        if isinstance(err, openai.NotFoundError):
            return BackendError(str(err) or "requested OpenAI resource not found", code="NOT_SUPPORTED")
        if isinstance(err, openai.APIStatusError):
            status = int(getattr(err, "status_code", 0) or 0)
            if 500 <= status <= 599:
                return BackendError(
                    "OpenAI service is temporarily unavailable",
                    code="UNAVAILABLE",
                    retry_after_ms=self._extract_retry_after_ms(err),
                )
            return BackendError(str(err) or f"OpenAI error (status={status})", code="UNAVAILABLE")
        return BackendError(str(err) or "OpenAI API error", code="UNAVAILABLE")

    # ------------------------------------------------------------------
    # Adapter boundary: request side
    # ------------------------------------------------------------------

    def transform_to_raw_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for index, message in enumerate(messages):
            role = _ROLE_MAP.get(message.role, message.role)
            if message.text is not None:
                out.append({"role": role, "content": message.text})
            elif message.image_data is not None:
                image = message.image_data
                out.append(
                    {
                        "role": role,
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{image.mime_type};base64,{image.base64_data}"},
                            }
                        ],
                    }
                )
            elif message.tool_call is not None:
                call_id = f"call_{index}"
                out.append(
                    {
                        "role": "assistant",
                        "tool_calls": [
                            {
                                "id": call_id,
                                "type": "function",
                                "function": {
                                    "name": message.tool_call.name,
                                    "arguments": _compact_json(dict(message.tool_call.args)),
                                },
                            }
                        ],
                    }
                )
                out.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "content": _compact_json(dict(message.tool_call.result)),
                    }
                )
        return out

    def transform_to_raw_schema(self, schema: Schema) -> Dict[str, Any]:
        wire = encode(schema)
        wire.pop("$schema", None)
        return wire

    def transform_to_raw_tool(self, tool: Union[ToolDescriptor[Dict[str, Any]], BuiltinTool]) -> Dict[str, Any]:
        if isinstance(tool, BuiltinTool):
            return {"type": tool.type}
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }

    def _check_strict(self, tools: Mapping[str, Dict[str, Any]]) -> None:
        if self.model not in STRICT_SCHEMA_MODELS:
            raise CapabilityError(
                f"model {self.model!r} does not support schema-constrained tokens",
                missing_capability="strict function schemas",
            )
        for name, tool in tools.items():
            if not _is_function_tool(tool):
                continue
            reason = _non_strict_reason(tool["function"]["parameters"])
            if reason:
                raise CapabilityError(
                    f"tool {name!r} cannot use schema-constrained tokens: {reason}",
                    missing_capability="strict function schemas with optional or open-ended properties",
                )

    async def generate_raw_events(
        self,
        *,
        messages: List[Dict[str, Any]],
        sampling: SamplingOptions,
        tools: Mapping[str, Dict[str, Any]],
        force_tool: Optional[str] = None,
    ) -> AsyncIterator[Any]:
        strict = bool(sampling.force_schema_constrained_tokens)
        if strict:
            self._check_strict(tools)

        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": sampling.max_output_tokens,
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
        }
        function_tools = []
        for tool in tools.values():
            kind = tool.get("type")
            if kind == "function":
                function_tools.append(tool)
            elif kind == WebSearchTool.type:
                # Chat Completions takes web search as a request option, not a tool entry.
                request["web_search_options"] = {}
            else:
                raise CapabilityError(
                    f"OpenAI Chat Completions has no built-in tool {kind!r}",
                    missing_capability=f"built-in tool {kind}",
                )
        if function_tools:
            request["tools"] = function_tools

        try:
            stream = await _create_chat_stream(self._client, request, force_tool=force_tool, strict=strict)
        except Exception as exc:  # noqa: BLE001
            raise self._translate_openai_error(exc) from exc

        try:
            async for event in stream:
                yield event
        except openai.OpenAIError as exc:
            raise self._translate_openai_error(exc) from exc

    # ------------------------------------------------------------------
    # Adapter boundary: response side
    # ------------------------------------------------------------------

    async def transform_natural_language_from_raw_events(
        self, raw_events: AsyncIterator[Any]
    ) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []
        async for event in raw_events:
            choice = _first_choice(event)
            if choice is None:
                continue
            delta = getattr(choice, "delta", None)
            text = getattr(delta, "content", None) if delta is not None else None
            if text:
                parts.append(text)
                yield Chunk(text=text)
            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason is not None:
                full = "".join(parts)
                if finish_reason == "length":
                    raise ResultLimitError("output was truncated by max_output_tokens", text=full)
                yield Final(text=full)
                return

    async def transform_structured_data_from_raw_events(
        self, schema: Schema, raw_events: AsyncIterator[Any]
    ) -> AsyncIterator[StreamEvent]:
        calls = _ToolCallAccumulator()
        async for event in raw_events:
            choice = _first_choice(event)
            if choice is None:
                continue
            delta = getattr(choice, "delta", None)
            if delta is not None:
                for text in calls.feed(delta):
                    yield Chunk(text=text)
            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason is not None:
                if finish_reason == "length":
                    raise ResultLimitError(
                        "structured data was truncated by max_output_tokens", text=calls.text
                    )
                received = calls.calls()
                if not received:
                    raise ResultValidateError(
                        "the model did not call the structured data tool",
                        text=calls.text,
                        issues=[ValidationIssue(path=(), kind="missing_tool_call", message="no tool call in response")],
                    )
                _, arguments = received[0]
                yield Final(text=calls.text, data=validate(schema, arguments))
                return

    async def transform_with_optional_tools_from_raw_events(
        self, tools: Mapping[str, Schema], raw_events: AsyncIterator[Any]
    ) -> AsyncIterator[StreamEvent]:
        calls = _ToolCallAccumulator()
        async for event in raw_events:
            choice = _first_choice(event)
            if choice is None:
                continue
            delta = getattr(choice, "delta", None)
            if delta is not None:
                for text in calls.feed(delta):
                    yield Chunk(text=text)
            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason is None:
                continue
            if finish_reason == "length":
                raise ResultLimitError("output was truncated by max_output_tokens", text=calls.text)

            results: List[ToolCall] = []
            for name, arguments in calls.calls():
                schema = tools.get(name)
                if not isinstance(schema, Schema):
                    raise ResultValidateError(
                        f"the model called {name!r}, which is not in the tool set",
                        text=calls.text,
                        issues=[ValidationIssue(path=(), kind="unknown_tool", message=f"unknown tool {name!r}")],
                    )
                results.append(ToolCall(name=name, args=validate(schema, arguments)))

            if not results:
                yield Final(text=calls.text)
            else:
                yield Final(
                    text=calls.text,
                    data=results[0],
                    additional_data=tuple(results[1:]) or None,
                )
            return

    # ------------------------------------------------------------------
    # Resource cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close underlying client resources if supported.

        Called automatically when used as:

            async with OpenAIAdapter(...) as adapter:
                ...
        """
        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception:  # noqa: BLE001
            logger.debug("OpenAIAdapter close() failed", exc_info=True)

    async def __aenter__(self) -> "OpenAIAdapter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = [
    "COMPATIBLE_MODELS",
    "STRICT_SCHEMA_MODELS",
    "OpenAIAdapter",
]
