"""
Tool catalog and function-call dispatch for realtime calls.

Tools are plain records (name, parameter schema, executor, optional keyword
trigger) held in a ``ToolRegistry`` and looked up by name. The
``ToolCallDispatcher`` runs the engine's mid-stream function calls as
independent tasks and always answers with a ``function_call_output`` item:
either the tool's text or an apology in the call's language. A failing tool
never reaches the bridge as an error.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, ValidationError

from app.config.constants import APOLOGY_MESSAGES, GOODBYE_MESSAGES, LOGGER_NAME, localized
from app.exceptions import BridgeError
from app.models.openai_schemas import (
    ConversationItemCreateEvent,
    FunctionCallArgumentsDone,
    FunctionCallOutputItem,
    FunctionDeclaration,
    ResponseCreateEvent,
)
from app.models.session import PendingToolCall
from app.services.weather_service import WeatherService

logger = logging.getLogger(LOGGER_NAME)

# Seconds between the goodbye and hanging up, so the caller hears it
END_CALL_DELAY = 5.0


@dataclass
class ToolContext:
    """Call-scoped information handed to tool executors."""

    call_id: str
    room_id: Optional[str] = None
    language: str = "de"
    end_call: Optional[Callable[[float], None]] = None


ToolExecutor = Callable[[Dict[str, Any], ToolContext], Awaitable[str]]
ToolTrigger = Callable[[str], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    """
    A callable tool.

    Attributes:
        name: Function name the engine uses
        description: What the tool does, shown to the model
        parameters: JSON schema of the arguments
        executor: Coroutine function producing the spoken result
        trigger: Optional keyword classifier used by the turn-based path;
            returns the arguments when an utterance should invoke the tool
    """

    name: str
    description: str
    parameters: Dict[str, Any]
    executor: ToolExecutor
    trigger: Optional[ToolTrigger] = field(default=None, compare=False)

    def declaration(self) -> FunctionDeclaration:
        return FunctionDeclaration(name=self.name, description=self.description, parameters=self.parameters)


class ToolRegistry:
    """Tools keyed by name; unknown names resolve to None."""

    def __init__(self, tools: Optional[List[ToolDefinition]] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def lookup(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def declarations(self) -> List[FunctionDeclaration]:
        return [tool.declaration() for tool in self._tools.values()]

    def __iter__(self):
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


INVALID_LOCATION_MESSAGES = {
    "de": "Entschuldigung, ich benötige einen gültigen Ortsnamen für die Wetterabfrage.",
    "en": "Sorry, I need a valid location name to look up the weather.",
}


def weather_tool(weather_service: WeatherService) -> ToolDefinition:
    """The ``get_weather`` tool backed by a weather service."""

    async def execute(arguments: Dict[str, Any], context: ToolContext) -> str:
        location = arguments.get("location")
        if not location or not isinstance(location, str):
            return localized(INVALID_LOCATION_MESSAGES, context.language)
        logger.info(f"Weather request for {location} (call {context.call_id})")
        report = await weather_service.get_weather(location)
        return weather_service.format_for_speech(report, context.language)

    def trigger(utterance: str) -> Optional[Dict[str, Any]]:
        if not WeatherService.is_weather_query(utterance):
            return None
        return {"location": WeatherService.extract_location(utterance)}

    return ToolDefinition(
        name="get_weather",
        description="Get current weather information for any location. Supports German and international cities.",
        parameters={
            "type": "object",
            "properties": {
                "location": {
                    "type": "string",
                    "description": 'City or place name (e.g. "Berlin", "München", "Hamburg", "London")',
                }
            },
            "required": ["location"],
        },
        executor=execute,
        trigger=trigger,
    )


def end_call_tool() -> ToolDefinition:
    """The ``end_call`` tool: say goodbye, then hang up shortly after."""

    async def execute(arguments: Dict[str, Any], context: ToolContext) -> str:
        if context.end_call is not None:
            logger.info(f"Ending call {context.call_id} in {END_CALL_DELAY}s")
            context.end_call(END_CALL_DELAY)
        return localized(GOODBYE_MESSAGES, context.language)

    return ToolDefinition(
        name="end_call",
        description="End the call once the caller says goodbye or has no further questions.",
        parameters={"type": "object", "properties": {}},
        executor=execute,
    )


def build_default_registry(weather_service: WeatherService) -> ToolRegistry:
    return ToolRegistry([weather_tool(weather_service), end_call_tool()])


class ToolCallDispatcher:
    """
    Runs function calls requested by the engine without blocking the audio relay.

    Each call is tracked by its correlation identifier until its output has
    been submitted back to the engine or the tool timed out.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        send: Callable[[BaseModel], Awaitable[None]],
        context: ToolContext,
        timeout: float = 8.0,
    ):
        self.registry = registry
        self.context = context
        self.timeout = timeout
        self.pending: Dict[str, PendingToolCall] = {}
        self._send = send
        self._tasks: Set[asyncio.Task] = set()

    @property
    def apology(self) -> str:
        return localized(APOLOGY_MESSAGES, self.context.language)

    def dispatch(self, event: Dict[str, Any]) -> Optional[asyncio.Task]:
        """
        Start handling a ``response.function_call_arguments.done`` event.

        Returns:
            The task running the tool, or None if the event was malformed
        """
        try:
            request = FunctionCallArgumentsDone(**event)
        except ValidationError as e:
            logger.warning(f"Dropping malformed function call event for call {self.context.call_id}: {e}")
            return None

        correlation_id = request.call_id or uuid.uuid4().hex
        pending = PendingToolCall(
            correlation_id=correlation_id,
            call_id=self.context.call_id,
            tool_name=request.name,
            arguments=request.arguments,
        )
        self.pending[correlation_id] = pending
        logger.info(f"Function call {request.name} ({correlation_id}) for call {self.context.call_id}")

        task = asyncio.create_task(self._run(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, pending: PendingToolCall) -> None:
        try:
            output = await self.execute(pending)
            await self._send(
                ConversationItemCreateEvent(
                    item=FunctionCallOutputItem(call_id=pending.correlation_id, output=output)
                )
            )
            await self._send(ResponseCreateEvent())
            elapsed = time.monotonic() - pending.started_at
            logger.info(f"Function result for {pending.tool_name} ({pending.correlation_id}) sent after {elapsed:.2f}s")
        except BridgeError as e:
            logger.warning(
                f"Could not deliver result of {pending.tool_name} for call {pending.call_id}: {e}"
            )
        finally:
            self.pending.pop(pending.correlation_id, None)

    async def execute(self, pending: PendingToolCall) -> str:
        """Run the tool and return its text, or the apology on any failure."""
        tool = self.registry.lookup(pending.tool_name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {pending.tool_name}")
            return self.apology

        try:
            arguments = json.loads(pending.arguments or "{}")
            if not isinstance(arguments, dict):
                raise ValueError("Function arguments must be a JSON object")
        except ValueError as e:
            logger.warning(f"Invalid arguments for {pending.tool_name}: {e}")
            return self.apology

        try:
            result = await asyncio.wait_for(tool.executor(arguments, self.context), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Tool {pending.tool_name} timed out after {self.timeout}s")
            return self.apology
        except Exception as e:
            logger.error(f"Tool {pending.tool_name} failed: {e}", exc_info=True)
            return self.apology
        return str(result)

    async def cancel_all(self) -> None:
        """Cancel in-flight tool calls and forget them."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.pending.clear()
