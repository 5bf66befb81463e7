"""
Live MCP connections, one per server name.

``McpConnection`` owns a ``ClientSession`` and the transport it runs on. The
transport and session context managers are entered and exited by a single
owner task per connection (anyio cancel scopes must be left by the task that
entered them), and callers talk to the session from their own tasks.

``ConnectionManager`` hands out connections lazily and collapses concurrent
demand for the same unconnected server into a single connect attempt.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Set

from mcp import ClientSession, types
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ConfigDict

from toolbridge.constants import CLIENT_NAME, CLIENT_VERSION

from .config_loader import build_headers, build_stdio_params, require_url
from .errors import BridgeTimeoutError, ConfigurationError
from .interactions import InteractionBridge
from .types import ServerConfig

logger = logging.getLogger(__name__)

TASK_TERMINAL_RESULT_STATUSES = ("completed", "failed", "input_required")
TASK_CANCEL_TIMEOUT_SECONDS = 5.0
DEFAULT_TASK_POLL_INTERVAL_SECONDS = 1.0


class TaskCreated(BaseModel):
    task_id: str


class TaskStatus(BaseModel):
    status: str
    message: Optional[str] = None


class TaskProgress(BaseModel):
    progress: float
    total: Optional[float] = None
    message: Optional[str] = None


class TaskResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: Any


class TaskError(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    error: Exception


TaskEvent = TaskCreated | TaskStatus | TaskProgress | TaskResult | TaskError


class Connection(Protocol):
    config: ServerConfig

    @property
    def session(self) -> Any: ...

    async def open(self, timeout: float) -> Any: ...

    async def close(self) -> None: ...

    async def list_tools(self) -> types.ListToolsResult: ...

    def is_tool_task(self, tool_name: str) -> bool: ...

    def stream_tool_call(
        self, tool_name: str, arguments: Dict[str, Any], cancel_event: asyncio.Event
    ) -> AsyncIterator[TaskEvent]: ...


def open_transport(server: ServerConfig):
    """Return the (not yet entered) transport context manager for ``server``.

    Raises ``ConfigurationError`` before any I/O when the config lacks the
    command or URL its transport needs.
    """
    if server.transport == "stdio":
        return stdio_client(build_stdio_params(server))

    url = require_url(server)
    headers = build_headers(server) or None
    if server.transport == "sse":
        return sse_client(url, headers=headers)
    if server.transport == "streamable_http":
        return streamablehttp_client(url, headers=headers)
    raise ConfigurationError(f"Unsupported transport '{server.transport}' for server '{server.name}'")


def _unwrap_exception_group(error: Exception) -> Exception:
    # anyio task groups wrap a single transport failure in an ExceptionGroup
    while len(getattr(error, "exceptions", ())) == 1 and isinstance(error.exceptions[0], Exception):
        error = error.exceptions[0]
    return error


def _tool_task_support(tool: Any) -> Optional[str]:
    execution = getattr(tool, "execution", None)
    return getattr(execution, "taskSupport", None)


class _StreamCancelled(Exception):
    pass


class McpConnection:
    def __init__(self, config: ServerConfig, callbacks: Optional[Dict[str, Any]] = None) -> None:
        self.config = config
        self._callbacks = callbacks or {}
        self._session: Optional[ClientSession] = None
        self._runner: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing: Optional[asyncio.Event] = None
        self._task_tools: Set[str] = set()
        self.server_capabilities: Optional[types.ServerCapabilities] = None

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"MCP server '{self.config.name}' is not connected")
        return self._session

    @property
    def is_open(self) -> bool:
        return self._session is not None

    async def open(self, timeout: float) -> "McpConnection":
        transport = open_transport(self.config)
        self._ready = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._runner = asyncio.create_task(
            self._run(transport), name=f"mcp-connection:{self.config.name}"
        )
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise BridgeTimeoutError(
                f"MCP connect ({self.config.name}) timed out after {timeout:g}s"
            ) from None
        except BaseException:
            await self.close()
            raise
        return self

    async def _run(self, transport) -> None:
        ready = self._ready
        try:
            async with AsyncExitStack() as stack:
                streams = await stack.enter_async_context(transport)
                read_stream, write_stream = streams[0], streams[1]
                session = await stack.enter_async_context(
                    ClientSession(
                        read_stream,
                        write_stream,
                        client_info=types.Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
                        **self._callbacks,
                    )
                )
                init_result = await session.initialize()
                self.server_capabilities = init_result.capabilities
                self._session = session
                ready.set_result(None)
                await self._closing.wait()
        except Exception as e:
            error = _unwrap_exception_group(e)
            # Handle exceptions with empty str() (EndOfStream, ClosedResourceError)
            if not str(error):
                error = RuntimeError(f"{type(error).__name__}: connection closed")
            if not ready.done():
                ready.set_exception(error)
            else:
                logger.warning("MCP connection to %s ended: %s", self.config.name, error)
        finally:
            self._session = None
            if not ready.done():
                ready.cancel()

    async def close(self) -> None:
        runner = self._runner
        if runner is None:
            return
        self._runner = None
        self._closing.set()
        if not self._ready.done():
            runner.cancel()
        await asyncio.wait({runner})
        if not runner.cancelled() and runner.exception() is not None:
            logger.warning("Error closing MCP connection %s: %s", self.config.name, runner.exception())

    async def list_tools(self) -> types.ListToolsResult:
        result = await self.session.list_tools()
        self._task_tools = {
            tool.name
            for tool in result.tools
            if _tool_task_support(tool) in ("required", "optional")
        }
        return result

    def _server_supports_tasks(self) -> bool:
        tasks = getattr(self.server_capabilities, "tasks", None)
        tool_requests = getattr(getattr(tasks, "requests", None), "tools", None)
        return getattr(tool_requests, "call", None) is not None

    def is_tool_task(self, tool_name: str) -> bool:
        if tool_name not in self._task_tools or not self._server_supports_tasks():
            return False
        experimental = getattr(self._session, "experimental", None)
        return hasattr(experimental, "call_tool_as_task")

    async def _until_cancelled(self, awaitable: Awaitable[Any], cancel_event: asyncio.Event) -> Any:
        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not operation.done():
                operation.cancel()
        if operation.done() and not operation.cancelled():
            return operation.result()
        raise _StreamCancelled()

    async def _cancel_task(self, task_id: str) -> None:
        try:
            await asyncio.wait_for(
                self.session.experimental.cancel_task(task_id), TASK_CANCEL_TIMEOUT_SECONDS
            )
        except Exception as e:
            logger.warning("Failed to cancel MCP task %s on %s: %s", task_id, self.config.name, e)

    async def stream_tool_call(
        self, tool_name: str, arguments: Dict[str, Any], cancel_event: asyncio.Event
    ) -> AsyncIterator[TaskEvent]:
        """Run ``tool_name`` as a task and yield its lifecycle events.

        The stream ends early, asking the server to cancel the task, once
        ``cancel_event`` is set.
        """
        tasks = self.session.experimental
        task_id: Optional[str] = None
        try:
            created = await self._until_cancelled(
                tasks.call_tool_as_task(tool_name, arguments), cancel_event
            )
            task_id = created.task.taskId
            yield TaskCreated(task_id=task_id)

            last_seen = None
            while True:
                task = await self._until_cancelled(tasks.get_task(task_id), cancel_event)
                seen = (task.status, getattr(task, "statusMessage", None))
                if seen != last_seen:
                    last_seen = seen
                    yield TaskStatus(status=seen[0], message=seen[1])

                if task.status in TASK_TERMINAL_RESULT_STATUSES:
                    result = await self._until_cancelled(
                        tasks.get_task_result(task_id, types.CallToolResult), cancel_event
                    )
                    yield TaskResult(result=result)
                    return
                if task.status == "cancelled":
                    yield TaskError(error=McpError(types.ErrorData(
                        code=types.INTERNAL_ERROR, message=f"MCP task {task_id} was cancelled"
                    )))
                    return

                interval_ms = getattr(task, "pollInterval", None)
                interval = interval_ms / 1000 if interval_ms else DEFAULT_TASK_POLL_INTERVAL_SECONDS
                await self._until_cancelled(asyncio.sleep(interval), cancel_event)
        except _StreamCancelled:
            if task_id is not None:
                await self._cancel_task(task_id)
        except McpError as e:
            yield TaskError(error=e)


ConnectionFactory = Callable[[ServerConfig], Connection]


class ConnectionManager:
    """
    Owns the live connections and in-flight connect attempts, both keyed by
    server name. This is the only component that opens transports.
    """

    def __init__(
        self,
        interactions: Optional[InteractionBridge] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self.interactions = interactions or InteractionBridge()
        self._connection_factory = connection_factory or self._default_factory
        self._connections: Dict[str, Connection] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    def _default_factory(self, config: ServerConfig) -> Connection:
        return McpConnection(config, self.interactions.session_callbacks(config.name))

    def get(self, server_name: str) -> Optional[Connection]:
        return self._connections.get(server_name)

    def is_connected(self, server_name: str) -> bool:
        return server_name in self._connections

    async def connect(self, config: ServerConfig, timeout: float) -> Connection:
        existing = self._connections.get(config.name)
        if existing is not None:
            return existing

        pending = self._pending.get(config.name)
        if pending is None:
            pending = asyncio.ensure_future(self._establish(config, timeout))
            pending.add_done_callback(_retrieve_exception)
            self._pending[config.name] = pending
        # Shielded so a cancelled caller does not abort the attempt others share
        return await asyncio.shield(pending)

    async def _establish(self, config: ServerConfig, timeout: float) -> Connection:
        try:
            connection = self._connection_factory(config)
            await connection.open(timeout)
            self._connections[config.name] = connection
            logger.info("Connected to MCP server %s (%s)", config.name, config.transport)
            return connection
        finally:
            self._pending.pop(config.name, None)

    async def close(self, server_name: str) -> None:
        connection = self._connections.pop(server_name, None)
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Ignoring close error for MCP server %s: %s", server_name, e)
        else:
            logger.info("Closed MCP server connection %s", server_name)

    async def close_all(self) -> None:
        for server_name in list(self._connections):
            await self.close(server_name)


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
