"""
Per-server tool catalogs.

A catalog holds the server's own tools plus five synthetic tools every server
gets regardless of what it declares: resource listing, resource template
listing, resource reading, prompt listing and prompt rendering. All names go
through ``make_tool_name`` so native and synthetic tools share one namespace;
``dedupe_tool_names`` renames whichever entry claims a taken name second.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Set

from pydantic import AnyUrl

from toolbridge.constants import DEFAULT_TOOL_SCHEMA

from .connection import ConnectionManager
from .content import as_dict, format_sampling_content, to_image_content, to_text_content
from .errors import ToolInputError
from .executor import ToolExecutor, with_timeout
from .naming import make_tool_name, unique_tool_name
from .types import ContentBlock, RichOutput, ServerConfig, ToolDefinition

logger = logging.getLogger(__name__)


def build_tool_description(server_name: str, description: Optional[str]) -> str:
    base = (description or "").strip()
    suffix = f" {base}" if base else ""
    return f"[MCP:{server_name}]{suffix}".strip()


def _cursor_schema(description: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"cursor": {"type": "string", "description": description}},
    }


def _cursor_arg(args: Dict[str, Any]) -> Optional[str]:
    cursor = args.get("cursor")
    return cursor if isinstance(cursor, str) and cursor else None


def _described(line: str, mime_type: Optional[str], description: Optional[str]) -> str:
    mime = f" ({mime_type})" if isinstance(mime_type, str) else ""
    desc = f" - {description}" if isinstance(description, str) else ""
    return f"{line}{mime}{desc}"


def _with_cursor(lines: List[str], next_cursor: Optional[str]) -> str:
    if next_cursor:
        lines.append(f"Next cursor: {next_cursor}")
    return "\n".join(lines)


def dedupe_tool_names(
    tools: List[ToolDefinition], taken: Optional[Set[str]] = None
) -> List[ToolDefinition]:
    """
    Give every tool a distinct external name.

    The first tool to claim a name keeps it; later claimants are renamed to a
    hash-suffixed form derived from their own server and raw tool name.
    """
    seen: Set[str] = set() if taken is None else taken
    unique: List[ToolDefinition] = []
    for tool in tools:
        if tool.name in seen:
            name = unique_tool_name(tool.server_name, tool.raw_name, seen)
            logger.warning(
                "Tool name %s from MCP server %s is already taken; using %s",
                tool.name,
                tool.server_name,
                name,
            )
            tool = dataclasses.replace(tool, name=name)
        seen.add(tool.name)
        unique.append(tool)
    return unique


class CatalogBuilder:
    def __init__(self, connections: ConnectionManager, executor: ToolExecutor) -> None:
        self.connections = connections
        self.executor = executor

    async def build(self, server: ServerConfig, timeout_seconds: float) -> List[ToolDefinition]:
        connection = await self.connections.connect(server, timeout_seconds)
        response = await with_timeout(
            connection.list_tools(), timeout_seconds, f"MCP listTools ({server.name})"
        )
        server_tools = [
            self._native_tool(server, tool, timeout_seconds) for tool in response.tools
        ]
        logger.info("Loaded %d tools from MCP server %s", len(server_tools), server.name)
        return dedupe_tool_names(
            [
                *server_tools,
                *self.build_resource_tools(server, timeout_seconds),
                *self.build_prompt_tools(server, timeout_seconds),
            ]
        )

    def _native_tool(self, server: ServerConfig, tool: Any, timeout_seconds: float) -> ToolDefinition:
        raw_name = tool.name
        schema = tool.inputSchema if isinstance(tool.inputSchema, dict) else None

        async def execute(args: Dict[str, Any]) -> RichOutput:
            return await self.executor.execute(server, raw_name, args, timeout_seconds)

        return ToolDefinition(
            name=make_tool_name(server.name, raw_name),
            description=build_tool_description(server.name, tool.description),
            input_schema=schema or copy.deepcopy(DEFAULT_TOOL_SCHEMA),
            execute=execute,
            server_name=server.name,
            raw_name=raw_name,
        )

    def _synthetic_tool(
        self, server: ServerConfig, raw_name: str, description: str, schema: Dict[str, Any], execute
    ) -> ToolDefinition:
        return ToolDefinition(
            name=make_tool_name(server.name, raw_name),
            description=build_tool_description(server.name, description),
            input_schema=schema,
            execute=execute,
            server_name=server.name,
            raw_name=raw_name,
        )

    async def _session(self, server: ServerConfig, timeout_seconds: float):
        connection = await self.connections.connect(server, timeout_seconds)
        return connection.session

    def build_resource_tools(self, server: ServerConfig, timeout_seconds: float) -> List[ToolDefinition]:
        async def list_resources(args: Dict[str, Any]) -> RichOutput:
            session = await self._session(server, timeout_seconds)
            result = await with_timeout(
                session.list_resources(cursor=_cursor_arg(args)),
                timeout_seconds,
                f"MCP resources/list ({server.name})",
            )
            resources = result.resources or []
            if not resources:
                return "No resources available."
            lines = [
                _described(str(resource.uri), resource.mimeType, resource.description)
                for resource in resources
            ]
            return _with_cursor(lines, result.nextCursor)

        async def list_resource_templates(args: Dict[str, Any]) -> RichOutput:
            session = await self._session(server, timeout_seconds)
            result = await with_timeout(
                session.list_resource_templates(cursor=_cursor_arg(args)),
                timeout_seconds,
                f"MCP resources/templates/list ({server.name})",
            )
            templates = result.resourceTemplates or []
            if not templates:
                return "No resource templates available."
            lines = [
                _described(template.uriTemplate, template.mimeType, template.description)
                for template in templates
            ]
            return _with_cursor(lines, result.nextCursor)

        async def read_resource(args: Dict[str, Any]) -> RichOutput:
            uri = args.get("uri") if isinstance(args.get("uri"), str) else None
            if not uri:
                raise ToolInputError("uri is required")
            session = await self._session(server, timeout_seconds)
            result = await with_timeout(
                session.read_resource(AnyUrl(uri)),
                timeout_seconds,
                f"MCP resources/read ({server.name})",
            )
            contents = result.contents or []
            if not contents:
                return f"No contents returned for resource {uri}"

            blocks: List[ContentBlock] = []
            for content in contents:
                item = as_dict(content)
                resource_uri = item.get("uri") if isinstance(item.get("uri"), str) else uri
                mime_type = item.get("mimeType") or "application/octet-stream"
                if isinstance(item.get("text"), str):
                    blocks.append(to_text_content(item["text"]))
                elif isinstance(item.get("blob"), str):
                    blob = item["blob"]
                    if mime_type.startswith("image/"):
                        blocks.append(to_image_content(blob, mime_type))
                    else:
                        blocks.append(
                            to_text_content(
                                f"[binary {mime_type}] {resource_uri} ({len(blob)} base64 chars)"
                            )
                        )
            return blocks[0] if len(blocks) == 1 else blocks

        return [
            self._synthetic_tool(
                server,
                "resources_list",
                "List available resources",
                _cursor_schema("Pagination cursor from a previous resources list call"),
                list_resources,
            ),
            self._synthetic_tool(
                server,
                "resource_templates_list",
                "List resource templates",
                _cursor_schema("Pagination cursor from a previous resource templates list call"),
                list_resource_templates,
            ),
            self._synthetic_tool(
                server,
                "resource_read",
                "Read a resource by URI",
                {
                    "type": "object",
                    "properties": {
                        "uri": {"type": "string", "description": "Resource URI to read"}
                    },
                    "required": ["uri"],
                },
                read_resource,
            ),
        ]

    def build_prompt_tools(self, server: ServerConfig, timeout_seconds: float) -> List[ToolDefinition]:
        async def list_prompts(args: Dict[str, Any]) -> RichOutput:
            session = await self._session(server, timeout_seconds)
            result = await with_timeout(
                session.list_prompts(cursor=_cursor_arg(args)),
                timeout_seconds,
                f"MCP prompts/list ({server.name})",
            )
            prompts = result.prompts or []
            if not prompts:
                return "No prompts available."
            lines = []
            for prompt in prompts:
                args_summary = ""
                if isinstance(prompt.arguments, list):
                    args_summary = f" ({', '.join(arg.name for arg in prompt.arguments)})"
                description = f" - {prompt.description}" if isinstance(prompt.description, str) else ""
                lines.append(f"{prompt.name}{args_summary}{description}")
            return _with_cursor(lines, result.nextCursor)

        async def get_prompt(args: Dict[str, Any]) -> RichOutput:
            name = args.get("name") if isinstance(args.get("name"), str) else None
            if not name:
                raise ToolInputError("name is required")
            prompt_args = args.get("arguments")
            if isinstance(prompt_args, dict) and prompt_args:
                prompt_args = {str(k): str(v) for k, v in prompt_args.items()}
            else:
                prompt_args = None
            session = await self._session(server, timeout_seconds)
            result = await with_timeout(
                session.get_prompt(name, arguments=prompt_args),
                timeout_seconds,
                f"MCP prompts/get ({server.name})",
            )
            messages = result.messages or []
            if not messages:
                return f'Prompt "{name}" returned no messages.'
            return "\n".join(
                f"{message.role or 'assistant'}: {format_sampling_content(message.content)}"
                for message in messages
            )

        return [
            self._synthetic_tool(
                server,
                "prompts_list",
                "List prompt templates",
                _cursor_schema("Pagination cursor from a previous prompts list call"),
                list_prompts,
            ),
            self._synthetic_tool(
                server,
                "prompt_get",
                "Render a prompt by name",
                {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Prompt name"},
                        "arguments": {
                            "type": "object",
                            "description": "Arguments for the prompt template",
                            "additionalProperties": {"type": "string"},
                        },
                    },
                    "required": ["name"],
                },
                get_prompt,
            ),
        ]


async def build_catalog(
    connections: ConnectionManager,
    config: ServerConfig,
    timeout_seconds: float,
    executor: Optional[ToolExecutor] = None,
) -> List[ToolDefinition]:
    builder = CatalogBuilder(connections, executor or ToolExecutor(connections))
    return await builder.build(config, timeout_seconds)
