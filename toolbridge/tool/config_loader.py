from __future__ import annotations

import os
import shutil
import sys
from typing import Any, Dict, List, Mapping

import yaml
from mcp import StdioServerParameters

from toolbridge.constants import TOOL_DIR

from .errors import ConfigurationError
from .types import ServerConfig, Transport

TRANSPORT_ALIASES: Dict[str, Transport] = {
    "stdio": "stdio",
    "http": "streamable_http",
    "streamable_http": "streamable_http",
    "streamable-http": "streamable_http",
    "sse": "sse",
}


def _default_config_path() -> str:
    explicit = os.getenv("TOOL_CONFIG_PATH")
    if explicit:
        return explicit
    return str(TOOL_DIR / "tools.yaml")


def _interpolate_env(value: str) -> str:
    # format: ${env:VAR}
    if isinstance(value, str) and value.startswith("${env:") and value.endswith("}"):
        var_name = value[len("${env:") : -1]
        return os.environ.get(var_name, value)
    return value


def normalize_transport(value: Any) -> Transport:
    key = str(value or "stdio").strip().lower()
    transport = TRANSPORT_ALIASES.get(key)
    if transport is None:
        raise ValueError(f"Unknown MCP transport: {value!r}")
    return transport


def _string_map(value: Any, field_name: str, server_name: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' for server '{server_name}' must be a mapping of strings")
    return {str(k): str(_interpolate_env(v)) for k, v in value.items()}


def server_config_from_dict(item: Mapping[str, Any], index: int = 0) -> ServerConfig:
    """Build a ServerConfig from one ``servers`` entry of the YAML document.

    Both ``auth_token`` and ``authToken`` are accepted for the bearer token.
    An absent ``enabled`` flag means the server is enabled.
    """
    if not isinstance(item, Mapping):
        raise ValueError(f"Server entry at index {index} must be a mapping")

    name = item.get("name")
    if not name:
        raise ValueError(f"Server entry at index {index} requires 'name'")
    name = str(name)

    transport = normalize_transport(item.get("transport"))
    args = item.get("args", [])
    if not isinstance(args, list):
        raise ValueError(f"'args' for server '{name}' must be a list of strings")

    auth_token = item.get("auth_token", item.get("authToken"))
    enabled = item.get("enabled")

    url = item.get("url")
    command = item.get("command")
    return ServerConfig(
        name=name,
        transport=transport,
        url=str(_interpolate_env(url)) if url else None,
        command=str(command) if command else None,
        args=[str(_interpolate_env(a)) for a in args],
        env=_string_map(item.get("env"), "env", name),
        headers=_string_map(item.get("headers"), "headers", name),
        auth_token=str(_interpolate_env(auth_token)) if auth_token else None,
        enabled=True if enabled is None else bool(enabled),
    )


def load_tools_yaml(config_path: str | None = None) -> List[ServerConfig]:
    path = config_path or _default_config_path()
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping object")

    servers = data.get("servers")
    if not isinstance(servers, list):
        raise ValueError("Config must contain 'servers' as a list")

    server_configs: List[ServerConfig] = []
    seen = set()
    for i, item in enumerate(servers):
        config = server_config_from_dict(item, i)
        if config.name in seen:
            raise ValueError(f"Duplicate server name '{config.name}' at index {i}")
        seen.add(config.name)
        server_configs.append(config)

    return server_configs


def build_headers(server: ServerConfig) -> Dict[str, str]:
    headers = dict(server.headers or {})
    has_auth_header = any(key.lower() == "authorization" for key in headers)
    if server.auth_token and not has_auth_header:
        headers["Authorization"] = f"Bearer {server.auth_token}"
    return headers


def build_stdio_params(server: ServerConfig) -> StdioServerParameters:
    if not server.command:
        raise ConfigurationError(f"Missing command for stdio MCP server '{server.name}'")

    # Resolve the python executable to the current interpreter when requested
    # so child MCP processes run inside the same environment
    command = server.command
    if command in ("python", "python3"):
        command = sys.executable

    cmd_exists = shutil.which(command) is not None
    if not cmd_exists and os.path.sep in command:
        cmd_exists = os.path.exists(command)
    if not cmd_exists:
        raise ConfigurationError(
            f"Executable for server '{server.name}' not found: {command}"
        )

    # Child processes inherit the current environment plus per-server overrides
    merged_env = dict(os.environ)
    if server.env:
        merged_env.update(server.env)
    return StdioServerParameters(command=command, args=list(server.args), env=merged_env)


def require_url(server: ServerConfig) -> str:
    url = (server.url or "").strip()
    if not url:
        raise ConfigurationError(f"Missing URL for MCP server '{server.name}'")
    return url
