from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from toolbridge.constants import DEFAULT_CONNECT_TIMEOUT
from toolbridge.llm_client.model import ToolCall, ToolCallResult

from .catalog import CatalogBuilder, dedupe_tool_names
from .config_loader import load_tools_yaml
from .connection import ConnectionFactory, ConnectionManager
from .executor import ToolExecutor
from .interactions import InteractionBridge, InteractionHandlers
from .types import RefreshResult, RichOutput, ServerConfig, ServerStatus, ToolDefinition

logger = logging.getLogger(__name__)

ToolsChangedCallback = Callable[[List[ToolDefinition]], None]


def _normalize_server(server: ServerConfig) -> ServerConfig:
    if isinstance(server.enabled, bool):
        return server
    return dataclasses.replace(server, enabled=True if server.enabled is None else bool(server.enabled))


def _openai_parameters(schema: Any) -> Dict[str, Any]:
    # Function parameters must be an object schema
    if isinstance(schema, dict) and schema.get("type") == "object":
        return schema
    return {
        "type": "object",
        "properties": {
            "input": schema if isinstance(schema, dict) else {"type": "string"}
        },
        "required": ["input"],
        "additionalProperties": True,
    }


def _dump_output(output: RichOutput) -> str | dict | list[dict]:
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        return [block.model_dump() for block in output]
    return output.model_dump()


class ToolManager:
    """
    Registry of MCP servers and the merged tool set built from them.

    Connections are opened lazily and shared by catalog builds and tool calls.
    ``refresh`` rebuilds each enabled server's catalog one server at a time;
    a server that fails keeps its previous catalog.
    """

    def __init__(
        self,
        servers: Optional[List[ServerConfig]] = None,
        *,
        timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT,
        handlers: Optional[InteractionHandlers] = None,
        on_tools_changed: Optional[ToolsChangedCallback] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self._servers: List[ServerConfig] = []
        for server in servers or []:
            self.add_server(server)
        self.timeout_seconds = timeout_seconds
        self.on_tools_changed = on_tools_changed

        self.interactions = InteractionBridge(handlers)
        self.connections = ConnectionManager(self.interactions, connection_factory)
        self.executor = ToolExecutor(self.connections)
        self.catalog_builder = CatalogBuilder(self.connections, self.executor)

        self._tool_cache: Dict[str, List[ToolDefinition]] = {}
        self.tools: List[ToolDefinition] = []
        self._refreshed = False
        logger.info(
            "ToolManager initialized with servers: %s",
            [server.name for server in self._servers],
        )

    @classmethod
    def from_yaml(cls, config_path: Optional[str] = None, **kwargs: Any) -> "ToolManager":
        return cls(load_tools_yaml(config_path), **kwargs)

    def set_interaction_handlers(self, handlers: Optional[InteractionHandlers]) -> None:
        self.interactions.set_handlers(handlers)

    def list_servers(self) -> List[ServerConfig]:
        return list(self._servers)

    def get_server(self, name: str) -> Optional[ServerConfig]:
        for server in self._servers:
            if server.name == name:
                return server
        return None

    def add_server(self, config: ServerConfig) -> None:
        if self.get_server(config.name) is not None:
            raise ValueError(f"MCP server '{config.name}' already exists")
        self._servers.append(_normalize_server(config))

    async def remove_server(self, name: str) -> bool:
        remaining = [server for server in self._servers if server.name != name]
        if len(remaining) == len(self._servers):
            return False
        self._servers = remaining
        self._tool_cache.pop(name, None)
        await self.connections.close(name)
        logger.info("Removed MCP server %s", name)
        return True

    async def set_server_enabled(self, name: str, enabled: bool) -> ServerConfig:
        server = self.get_server(name)
        if server is None:
            raise KeyError(f"Unknown MCP server '{name}'")
        updated = dataclasses.replace(server, enabled=enabled)
        self._servers = [updated if s.name == name else s for s in self._servers]
        if not enabled:
            self._tool_cache.pop(name, None)
            await self.connections.close(name)
        return updated

    async def refresh(self, timeout: Optional[float] = None) -> RefreshResult:
        timeout_seconds = timeout if timeout is not None else self.timeout_seconds
        servers = [_normalize_server(server) for server in self._servers]
        active = [server for server in servers if server.enabled]
        active_names = {server.name for server in active}

        for cached_name in list(self._tool_cache):
            if cached_name not in active_names:
                del self._tool_cache[cached_name]

        statuses: List[ServerStatus] = []
        for server in active:
            try:
                tools = await self.catalog_builder.build(server, timeout_seconds)
            except Exception as e:
                logger.warning("Failed to refresh MCP server %s: %s", server.name, e)
                await self.connections.close(server.name)
                cached = self._tool_cache.get(server.name, [])
                statuses.append(ServerStatus(name=server.name, tool_count=len(cached), error=str(e)))
            else:
                self._tool_cache[server.name] = tools
                statuses.append(ServerStatus(name=server.name, tool_count=len(tools)))

        self.tools = dedupe_tool_names(
            [tool for server in active for tool in self._tool_cache.get(server.name, [])]
        )
        self._refreshed = True
        if self.on_tools_changed is not None:
            self.on_tools_changed(list(self.tools))
        return RefreshResult(servers=statuses, total_tools=len(self.tools))

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    async def list_openai_tools(self) -> List[Dict[str, Any]]:
        if not self._refreshed:
            await self.refresh()
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": _openai_parameters(tool.input_schema),
                },
            }
            for tool in self.tools
        ]

    async def call_openai_tool(self, tool_call: ToolCall) -> ToolCallResult:
        """
        Execute an OpenAI-style tool call against the merged tool set.

        Failures never raise; they come back as ``{"error": ...}`` JSON so the
        model can see them in the tool message.
        """
        fn_name = tool_call.name
        tool = self.get_tool(fn_name)
        if tool is None:
            content = json.dumps({"error": f"Unknown tool function: {fn_name}"})
            return ToolCallResult(id=tool_call.id, name=fn_name, result=content)

        args = tool_call.arguments
        if isinstance(args, str):
            try:
                args = json.loads(args or "{}")
            except ValueError:
                content = json.dumps({"error": f"Invalid JSON arguments for {fn_name}"})
                return ToolCallResult(id=tool_call.id, name=fn_name, result=content)
        if not isinstance(args, dict):
            args = {}

        try:
            output = await tool.execute(args)
        except Exception as e:
            logger.exception("Tool call failed for %s.%s", tool.server_name, tool.raw_name)
            content = json.dumps({"error": str(e)})
            return ToolCallResult(id=tool_call.id, name=fn_name, result=content)

        return ToolCallResult(id=tool_call.id, name=fn_name, result=_dump_output(output))

    async def close(self) -> None:
        await self.connections.close_all()
