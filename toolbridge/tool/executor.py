from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from .connection import (
    Connection,
    ConnectionManager,
    TaskCreated,
    TaskError,
    TaskProgress,
    TaskResult,
    TaskStatus,
)
from .content import append_progress, as_dict, convert_tool_result, format_progress, to_error_message
from .errors import BridgeTimeoutError, ProtocolError, ToolExecutionError
from .types import RichOutput, ServerConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float, label: str) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise BridgeTimeoutError(f"{label} timed out after {timeout_seconds:g}s") from None


class ToolCallStrategy:
    """One way of driving a ``tools/call``; collects progress lines as it goes."""

    def __init__(
        self,
        connection: Connection,
        tool_name: str,
        arguments: Dict[str, Any],
        timeout_seconds: float,
    ) -> None:
        self.connection = connection
        self.tool_name = tool_name
        self.arguments = arguments
        self.timeout_seconds = timeout_seconds
        self.progress_lines: List[str] = []

    async def run(self) -> Optional[Any]:
        raise NotImplementedError


class SyncToolCall(ToolCallStrategy):
    async def _on_progress(
        self, progress: float, total: Optional[float], message: Optional[str]
    ) -> None:
        self.progress_lines.append(format_progress(progress, total, message))

    async def run(self) -> Optional[Any]:
        # A timeout only abandons the local wait; the server is not notified
        return await with_timeout(
            self.connection.session.call_tool(
                self.tool_name,
                arguments=self.arguments,
                progress_callback=self._on_progress,
            ),
            self.timeout_seconds,
            f"MCP tool {self.tool_name}",
        )


class TaskToolCall(ToolCallStrategy):
    async def run(self) -> Optional[Any]:
        cancel_event = asyncio.Event()
        timer = asyncio.get_running_loop().call_later(self.timeout_seconds, cancel_event.set)
        result = None
        try:
            stream = self.connection.stream_tool_call(self.tool_name, self.arguments, cancel_event)
            async with aclosing(stream):
                async for event in stream:
                    if isinstance(event, TaskCreated):
                        self.progress_lines.append(f"Task created: {event.task_id}")
                    elif isinstance(event, TaskStatus):
                        detail = f" - {event.message}" if event.message else ""
                        self.progress_lines.append(f"Task status: {event.status}{detail}")
                    elif isinstance(event, TaskProgress):
                        self.progress_lines.append(
                            format_progress(event.progress, event.total, event.message)
                        )
                    elif isinstance(event, TaskResult):
                        result = event.result
                    elif isinstance(event, TaskError):
                        raise event.error
        finally:
            timer.cancel()

        if result is None and cancel_event.is_set():
            raise BridgeTimeoutError(
                f"MCP tool {self.tool_name} timed out after {self.timeout_seconds:g}s"
            )
        return result


def finalize_result(tool_name: str, result: Optional[Any], progress_lines: List[str]) -> RichOutput:
    if result is None:
        raise ProtocolError(f"MCP tool {tool_name} did not return a result")

    output = convert_tool_result(result)
    if as_dict(result).get("isError"):
        raise ToolExecutionError(to_error_message(output))
    return append_progress(output, progress_lines)


class ToolExecutor:
    def __init__(self, connections: ConnectionManager) -> None:
        self.connections = connections

    @staticmethod
    def select_strategy(connection: Connection, tool_name: str) -> type[ToolCallStrategy]:
        if connection.is_tool_task(tool_name):
            return TaskToolCall
        return SyncToolCall

    async def execute(
        self,
        config: ServerConfig,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        timeout_seconds: float,
    ) -> RichOutput:
        connection = await self.connections.connect(config, timeout_seconds)
        strategy_cls = self.select_strategy(connection, tool_name)
        strategy = strategy_cls(connection, tool_name, dict(arguments or {}), timeout_seconds)
        logger.debug(
            "Calling MCP tool %s.%s via %s", config.name, tool_name, strategy_cls.__name__
        )
        result = await strategy.run()
        return finalize_result(tool_name, result, strategy.progress_lines)
