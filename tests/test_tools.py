"""Tests for the tool registry, the built-in tools and the ToolCallDispatcher."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.bot.tools import (
    END_CALL_DELAY,
    ToolCallDispatcher,
    ToolContext,
    ToolDefinition,
    ToolRegistry,
    build_default_registry,
    end_call_tool,
    weather_tool,
)
from app.config.constants import APOLOGY_MESSAGES, GOODBYE_MESSAGES
from app.exceptions import EngineTransportError
from app.services.weather_service import WeatherData, WeatherReport, WeatherService


async def slow_tool(arguments, context):
    await asyncio.sleep(10)
    return "too late"


async def greet_tool(arguments, context):
    return f"Hello {arguments['name']}"


def function_call(name, arguments="{}", call_id="call_abc"):
    return {
        "type": "response.function_call_arguments.done",
        "name": name,
        "arguments": arguments,
        "call_id": call_id,
    }


@pytest.fixture
def registry():
    return ToolRegistry([
        ToolDefinition(name="greet", description="Greet", parameters={"type": "object"}, executor=greet_tool),
        ToolDefinition(name="slow", description="Slow", parameters={"type": "object"}, executor=slow_tool),
    ])


@pytest.fixture
def sent():
    return []


@pytest.fixture
def dispatcher(registry, sent):
    async def send(event):
        sent.append(json.loads(event.model_dump_json()))

    return ToolCallDispatcher(registry, send, ToolContext(call_id="CA1", language="en"), timeout=0.05)


def test_registry_lookup_and_declarations(registry):
    assert registry.lookup("greet").name == "greet"
    assert registry.lookup("missing") is None
    assert [d.name for d in registry.declarations()] == ["greet", "slow"]
    assert len(registry) == 2


def test_registry_rejects_duplicates(registry):
    with pytest.raises(ValueError):
        registry.register(ToolDefinition(name="greet", description="", parameters={}, executor=greet_tool))


def test_default_registry_declares_weather_and_end_call():
    registry = build_default_registry(WeatherService(enabled=False))
    declarations = {d.name: d for d in registry.declarations()}
    assert set(declarations) == {"get_weather", "end_call"}
    assert declarations["get_weather"].parameters["required"] == ["location"]
    assert declarations["get_weather"].type == "function"


@pytest.mark.asyncio
async def test_dispatch_sends_output_and_response(dispatcher, sent):
    task = dispatcher.dispatch(function_call("greet", '{"name": "Ada"}'))
    await task

    assert sent == [
        {
            "type": "conversation.item.create",
            "item": {"type": "function_call_output", "call_id": "call_abc", "output": "Hello Ada"},
        },
        {"type": "response.create"},
    ]
    assert dispatcher.pending == {}


@pytest.mark.asyncio
async def test_dispatch_tracks_pending_call(dispatcher):
    task = dispatcher.dispatch(function_call("slow", call_id="call_slow"))
    assert "call_slow" in dispatcher.pending
    await task
    assert dispatcher.pending == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event",
    [
        function_call("unknown_tool"),
        function_call("greet", "not json"),
        function_call("greet", "[1, 2]"),
        function_call("greet", "{}"),
        function_call("slow"),
    ],
    ids=["unknown", "invalid-json", "not-an-object", "missing-argument", "timeout"],
)
async def test_failures_answered_with_apology(dispatcher, sent, event):
    await dispatcher.dispatch(event)

    assert sent[0]["item"]["output"] == APOLOGY_MESSAGES["en"]
    assert sent[1] == {"type": "response.create"}


@pytest.mark.asyncio
async def test_dispatch_ignores_malformed_event(dispatcher, sent):
    assert dispatcher.dispatch({"type": "response.function_call_arguments.done"}) is None
    assert sent == []


@pytest.mark.asyncio
async def test_send_failure_is_contained(registry):
    send = AsyncMock(side_effect=EngineTransportError("closed"))
    dispatcher = ToolCallDispatcher(registry, send, ToolContext(call_id="CA1"))

    await dispatcher.dispatch(function_call("greet", '{"name": "Ada"}'))

    send.assert_awaited_once()
    assert dispatcher.pending == {}


@pytest.mark.asyncio
async def test_cancel_all(registry, sent):
    async def send(event):
        sent.append(event)

    dispatcher = ToolCallDispatcher(registry, send, ToolContext(call_id="CA1"), timeout=10)
    dispatcher.dispatch(function_call("slow"))
    await asyncio.sleep(0)

    await dispatcher.cancel_all()

    assert dispatcher.pending == {}
    assert sent == []


@pytest.mark.asyncio
async def test_end_call_tool_schedules_hangup():
    end_call = MagicMock()
    tool = end_call_tool()

    result = await tool.executor({}, ToolContext(call_id="CA1", language="de", end_call=end_call))

    end_call.assert_called_once_with(END_CALL_DELAY)
    assert result == GOODBYE_MESSAGES["de"]


@pytest.mark.asyncio
async def test_weather_tool_formats_report():
    service = MagicMock(spec=WeatherService)
    service.get_weather = AsyncMock(
        return_value=WeatherReport(
            success=True,
            data=WeatherData(location="Berlin", temperature=12, description="Partly cloudy"),
        )
    )
    service.format_for_speech = WeatherService.format_for_speech
    tool = weather_tool(service)

    result = await tool.executor({"location": "Berlin"}, ToolContext(call_id="CA1", language="en"))

    service.get_weather.assert_awaited_once_with("Berlin")
    assert result == "The weather in Berlin is currently 12 degrees Celsius with partly cloudy."


@pytest.mark.asyncio
async def test_weather_tool_requires_location():
    service = MagicMock(spec=WeatherService)
    service.get_weather = AsyncMock()
    tool = weather_tool(service)

    result = await tool.executor({}, ToolContext(call_id="CA1", language="en"))

    service.get_weather.assert_not_awaited()
    assert "location" in result


def test_weather_tool_trigger():
    tool = weather_tool(WeatherService(enabled=False))
    assert tool.trigger("What's the weather in London?") == {"location": "London"}
    assert tool.trigger("I'd like to book a table") is None
