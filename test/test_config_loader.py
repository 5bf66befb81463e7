import sys

import pytest

from toolbridge.tool.config_loader import (
    build_headers,
    build_stdio_params,
    load_tools_yaml,
    normalize_transport,
    require_url,
    server_config_from_dict,
)
from toolbridge.tool.errors import ConfigurationError
from toolbridge.tool.types import ServerConfig

CONFIG = """
servers:
  - name: docs
    command: python
    args: ["-m", "docs_server", "${env:DOCS_ARG}"]
    env:
      TOKEN: ${env:DOCS_TOKEN}
  - name: remote
    transport: http
    url: https://mcp.example.com/mcp
    authToken: secret
    enabled: false
  - name: push
    transport: SSE
    url: http://localhost:9000/sse
    headers:
      X-Trace: "1"
"""


def _write(tmp_path, text):
    path = tmp_path / "tools.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_tools_yaml_parses_every_transport(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCS_TOKEN", "t0k3n")
    monkeypatch.setenv("DOCS_ARG", "--verbose")
    servers = load_tools_yaml(_write(tmp_path, CONFIG))

    docs, remote, push = servers
    assert docs == ServerConfig(
        name="docs",
        transport="stdio",
        command="python",
        args=["-m", "docs_server", "--verbose"],
        env={"TOKEN": "t0k3n"},
    )
    assert remote.transport == "streamable_http"
    assert remote.auth_token == "secret"
    assert remote.enabled is False
    assert push.transport == "sse"
    assert push.headers == {"X-Trace": "1"}
    assert push.enabled is True


def test_unset_env_placeholder_is_left_verbatim(tmp_path, monkeypatch):
    monkeypatch.delenv("DOCS_TOKEN", raising=False)
    monkeypatch.delenv("DOCS_ARG", raising=False)
    docs = load_tools_yaml(_write(tmp_path, CONFIG))[0]
    assert docs.env == {"TOKEN": "${env:DOCS_TOKEN}"}


def test_default_path_comes_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TOOL_CONFIG_PATH", _write(tmp_path, CONFIG))
    assert [s.name for s in load_tools_yaml()] == ["docs", "remote", "push"]


def test_duplicate_names_are_rejected(tmp_path):
    text = "servers:\n  - name: a\n    command: x\n  - name: a\n    command: y\n"
    with pytest.raises(ValueError, match="Duplicate server name 'a'"):
        load_tools_yaml(_write(tmp_path, text))


def test_invalid_documents_are_rejected(tmp_path):
    with pytest.raises(ValueError):
        load_tools_yaml(_write(tmp_path, "servers: nope\n"))
    with pytest.raises(ValueError, match="requires 'name'"):
        load_tools_yaml(_write(tmp_path, "servers:\n  - command: x\n"))
    with pytest.raises(FileNotFoundError):
        load_tools_yaml(str(tmp_path / "missing.yaml"))


def test_unknown_transport_is_rejected():
    assert normalize_transport(None) == "stdio"
    assert normalize_transport("streamable-http") == "streamable_http"
    with pytest.raises(ValueError):
        normalize_transport("carrier-pigeon")


def test_bearer_header_added_only_without_existing_authorization():
    server = ServerConfig(name="s", transport="sse", url="http://x", auth_token="abc")
    assert build_headers(server) == {"Authorization": "Bearer abc"}

    preset = ServerConfig(
        name="s", transport="sse", url="http://x", auth_token="abc",
        headers={"authorization": "Basic zzz"},
    )
    assert build_headers(preset) == {"authorization": "Basic zzz"}

    assert build_headers(ServerConfig(name="s", transport="sse", url="http://x")) == {}


def test_stdio_params_require_command_and_resolve_python(monkeypatch):
    monkeypatch.setenv("INHERITED_VAR", "yes")
    with pytest.raises(ConfigurationError, match="Missing command"):
        build_stdio_params(ServerConfig(name="bare"))

    params = build_stdio_params(
        ServerConfig(name="py", command="python", args=["-V"], env={"EXTRA": "1"})
    )
    assert params.command == sys.executable
    assert params.args == ["-V"]
    assert params.env["EXTRA"] == "1"
    assert params.env["INHERITED_VAR"] == "yes"


def test_stdio_params_reject_missing_executable():
    with pytest.raises(ConfigurationError, match="not found"):
        build_stdio_params(ServerConfig(name="ghost", command="definitely-not-a-real-binary-xyz"))


def test_network_transports_require_url():
    with pytest.raises(ConfigurationError, match="Missing URL for MCP server 'r'"):
        require_url(ServerConfig(name="r", transport="streamable_http", url="  "))
    assert require_url(ServerConfig(name="r", transport="sse", url="http://h/sse")) == "http://h/sse"


def test_server_config_from_dict_accepts_snake_case_token():
    config = server_config_from_dict({"name": "n", "transport": "sse", "url": "u", "auth_token": "t"})
    assert config.auth_token == "t"
