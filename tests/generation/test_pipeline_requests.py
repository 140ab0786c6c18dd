# SPDX-License-Identifier: Apache-2.0
"""
Generation: Pipeline message assembly, tool wiring and end-to-end scenarios.

Covers:
  • Messages are system prompt, user prompt, then extra messages verbatim
  • Call-level system prompt replaces the client-level one
  • An empty system prompt sends no system message
  • Structured data forces a single "structured_data" tool built from the schema
  • Optional tools build one descriptor per schema, none forced
  • Built-in tools pass through next to function tools
  • Non-object schemas and non-adapters are rejected with InvalidInput
  • "Say hello!" scenarios for free text and structured data
  • Tool-call results, including several simultaneous calls
"""

import pytest

from strand_sdk.generation import (
    STRUCTURED_DATA_TOOL_NAME,
    ArraySchema,
    Chunk,
    Final,
    GenerationClient,
    GenerationMode,
    GenerationRequest,
    ImageData,
    InvalidInput,
    Message,
    NumberSchema,
    ObjectSchema,
    ResultValidateError,
    StringSchema,
    ToolCall,
    ToolCallRecord,
    WebSearchTool,
    resolve_sampling,
)
from strand_sdk.mock.mock_generation_adapter import MockGenerationAdapter, tool_call_final
from tests.utils.event_helpers import collect, say_hello_events

pytestmark = pytest.mark.asyncio


async def test_message_order_system_user_extra(mock_adapter):
    client = GenerationClient(mock_adapter, system_prompt="Be terse.")
    extra = [
        Message(role="model", text="Earlier answer"),
        Message(role="user", image_data=ImageData(mime_type="image/png", base64_data="iVBORw0KGgo=")),
        Message(
            role="model",
            tool_call=ToolCallRecord(name="lookup", args={"q": "x"}, result={"answer": 42}),
        ),
    ]

    await client.generate_natural_language("Say hello!", extra_messages=extra).result()

    messages = mock_adapter.last_call.messages
    assert messages[0] == Message(role="system", text="Be terse.")
    assert messages[1] == Message(role="user", text="Say hello!")
    assert messages[2:] == extra


async def test_call_level_system_prompt_replaces_client_level(mock_adapter):
    client = GenerationClient(mock_adapter, system_prompt="Be terse.")

    await client.generate_natural_language("hi", system_prompt="Be verbose.").result()

    assert mock_adapter.last_call.messages[0] == Message(role="system", text="Be verbose.")
    assert len(mock_adapter.last_call.messages) == 2


async def test_no_system_prompt_means_user_prompt_first(client, mock_adapter):
    await client.generate_natural_language("hi").result()
    assert mock_adapter.last_call.messages == [Message(role="user", text="hi")]


async def test_empty_system_prompt_sends_no_system_message(mock_adapter):
    await GenerationClient(mock_adapter, system_prompt="").generate_natural_language("hi").result()
    assert mock_adapter.last_call.messages == [Message(role="user", text="hi")]

    client = GenerationClient(mock_adapter, system_prompt="Be terse.")
    await client.generate_natural_language("hi", system_prompt="").result()
    assert mock_adapter.last_call.messages == [Message(role="user", text="hi")]


async def test_message_requires_exactly_one_content_variant():
    with pytest.raises(InvalidInput, match="exactly one content variant"):
        Message(role="user")
    with pytest.raises(InvalidInput, match="exactly one content variant"):
        Message(role="user", text="a", image_data=ImageData(mime_type="image/png", base64_data=""))
    with pytest.raises(InvalidInput, match="unknown message role"):
        Message(role="assistant", text="a")


async def test_say_hello_natural_language(client):
    stream = client.generate_natural_language("Say hello!")

    events = await collect(stream)
    chunks = [e for e in events if isinstance(e, Chunk)]
    final = events[-1]

    assert len(chunks) > 1
    assert "".join(c.text for c in chunks) == "Hello! How can I assist you today?"
    assert isinstance(final, Final)
    assert final.text == "Hello! How can I assist you today?"
    assert final.data is None


async def test_say_hello_structured_data(mock_adapter, say_schema):
    mock_adapter.queue_events(say_hello_events())
    client = GenerationClient(mock_adapter)

    final = await client.generate_structured_data("Say hello!", say_schema).result()

    assert final.data == {"say": "hello"}
    assert final.text == '{"say":"hello"}'

    call = mock_adapter.last_call
    assert call.force_tool == STRUCTURED_DATA_TOOL_NAME
    assert list(call.tools) == [STRUCTURED_DATA_TOOL_NAME]
    tool = call.tools[STRUCTURED_DATA_TOOL_NAME]
    assert tool.name == STRUCTURED_DATA_TOOL_NAME
    assert tool.description == ""
    assert tool.parameters == say_schema


async def test_structured_data_tool_description_comes_from_schema(mock_adapter):
    schema = ObjectSchema(properties={"say": StringSchema()}, description="Say something")
    mock_adapter.queue_events(say_hello_events())

    await GenerationClient(mock_adapter).generate_structured_data("Say hello!", schema).result()

    assert mock_adapter.last_call.tools[STRUCTURED_DATA_TOOL_NAME].description == "Say something"


async def test_structured_data_is_validated_by_the_codec(say_schema):
    adapter = MockGenerationAdapter(canned_responses=['{"say": 5}'])
    client = GenerationClient(adapter)

    with pytest.raises(ResultValidateError) as exc_info:
        await client.generate_structured_data("Say hello!", say_schema).result()

    error = exc_info.value
    assert error.text == '{"say": 5}'
    assert error.data == {"say": 5}
    assert [(issue.path, issue.kind) for issue in error.issues] == [(("say",), "type")]


async def test_optional_tools_build_one_descriptor_each_none_forced(mock_adapter):
    tools = {
        "get_weather": ObjectSchema(
            properties={"city": StringSchema()},
            description="Look up the weather",
        ),
        "list_files": ObjectSchema(properties={"paths": ArraySchema(items=StringSchema())}),
    }

    final = await GenerationClient(mock_adapter).generate_with_optional_tools("What's up?", tools).result()

    call = mock_adapter.last_call
    assert call.force_tool is None
    assert list(call.tools) == ["get_weather", "list_files"]
    assert call.tools["get_weather"].description == "Look up the weather"
    assert call.tools["list_files"].description == ""
    assert final.data is None


async def test_builtin_tools_pass_through_next_to_function_tools(mock_adapter):
    tools = {
        "search": WebSearchTool(),
        "divide": ObjectSchema(properties={"dividend": NumberSchema(), "divisor": NumberSchema()}),
    }
    mock_adapter.queue_events([tool_call_final("divide", {"dividend": 14, "divisor": 0.79})])

    final = await GenerationClient(mock_adapter).generate_with_optional_tools("Divide it", tools).result()

    call = mock_adapter.last_call
    assert list(call.tools) == ["search", "divide"]
    assert call.tools["search"] == WebSearchTool()
    assert call.tools["divide"].name == "divide"
    assert final.data == ToolCall(name="divide", args={"dividend": 14, "divisor": 0.79})


async def test_optional_tools_tool_call_result(mock_adapter):
    tools = {"get_weather": ObjectSchema(properties={"city": StringSchema()})}
    mock_adapter.queue_events([tool_call_final("get_weather", {"city": "Oslo"})])

    final = await GenerationClient(mock_adapter).generate_with_optional_tools("Weather?", tools).result()

    assert final.data == ToolCall(name="get_weather", args={"city": "Oslo"})
    assert final.additional_data is None


async def test_optional_tools_simultaneous_calls_in_additional_data(mock_adapter):
    tools = {"get_weather": ObjectSchema(properties={"city": StringSchema()})}
    mock_adapter.queue_events(
        [
            tool_call_final(
                "get_weather",
                {"city": "Oslo"},
                ToolCall(name="get_weather", args={"city": "Lima"}),
            )
        ]
    )

    final = await GenerationClient(mock_adapter).generate_with_optional_tools("Weather?", tools).result()

    assert final.data.args == {"city": "Oslo"}
    assert final.additional_data == (ToolCall(name="get_weather", args={"city": "Lima"}),)


async def test_top_level_schema_must_be_an_object(client):
    with pytest.raises(InvalidInput, match="must be an ObjectSchema"):
        client.generate_structured_data("x", StringSchema())
    with pytest.raises(InvalidInput, match="tool 'bad' must be an ObjectSchema"):
        client.generate_with_optional_tools("x", {"bad": ArraySchema()})


async def test_prompt_must_be_a_string(client):
    with pytest.raises(InvalidInput, match="prompt must be a string"):
        client.generate_natural_language(42)


async def test_client_rejects_objects_that_are_not_adapters():
    with pytest.raises(InvalidInput, match="does not implement the generation adapter protocol"):
        GenerationClient(object())


async def test_no_backend_work_until_the_stream_is_iterated(mock_adapter):
    client = GenerationClient(mock_adapter)
    stream = client.generate_natural_language("hi")

    # generate_raw_events is recorded synchronously; the events themselves are lazy.
    assert len(mock_adapter.calls) == 1
    assert stream.events == []
    assert (await stream.result()).text == "Hello! How can I assist you today?"


async def test_structured_data_request_without_a_schema_is_invalid(mock_adapter):
    client = GenerationClient(mock_adapter)
    request = GenerationRequest(
        mode=GenerationMode.STRUCTURED_DATA,
        messages=(Message(role="user", text="hi"),),
        sampling=resolve_sampling(),
    )

    with pytest.raises(InvalidInput, match="requires a schema"):
        client._run(request)
    assert mock_adapter.calls == []
