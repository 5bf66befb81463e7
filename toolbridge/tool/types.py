from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from toolbridge.llm_client.model import ImageContent, TextContent

Transport = Literal["stdio", "streamable_http", "sse"]

ContentBlock = Union[TextContent, ImageContent]
RichOutput = Union[str, ContentBlock, List[ContentBlock]]
ToolExecuteFn = Callable[[Dict[str, Any]], Awaitable[RichOutput]]


@dataclass(frozen=True)
class ServerConfig:
    name: str
    transport: Transport = "stdio"
    url: Optional[str] = None
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    auth_token: Optional[str] = None
    enabled: bool = True


@dataclass
class ToolDefinition:
    name: str
    description: str
    input_schema: Dict[str, Any]
    execute: ToolExecuteFn
    server_name: str = ""
    raw_name: str = ""


@dataclass
class ServerStatus:
    name: str
    tool_count: int
    error: Optional[str] = None


@dataclass
class RefreshResult:
    servers: List[ServerStatus]
    total_tools: int
