import asyncio

import pytest
from mcp import types

from fakes import FakeConnection, FakeFactory, FakeSession, text_result
from toolbridge.llm_client.model import ImageContent, TextContent
from toolbridge.tool.catalog import build_catalog, build_tool_description, dedupe_tool_names
from toolbridge.tool.connection import ConnectionManager
from toolbridge.tool.errors import ToolInputError
from toolbridge.tool.executor import ToolExecutor
from toolbridge.tool.types import ServerConfig

DOCS = ServerConfig(name="docs", command="docs-server")

SYNTHETIC = [
    "mcp_docs_resources_list",
    "mcp_docs_resource_templates_list",
    "mcp_docs_resource_read",
    "mcp_docs_prompts_list",
    "mcp_docs_prompt_get",
]


def _docs_session():
    return FakeSession(
        tools=[
            types.Tool(
                name="search",
                description="Search the docs",
                inputSchema={"type": "object", "properties": {"q": {"type": "string"}}},
            )
        ],
        results={"search": text_result("3 hits")},
    )


def _catalog(session):
    connection = FakeConnection(DOCS, session=session)
    manager = ConnectionManager(connection_factory=FakeFactory({"docs": connection}))
    tools = asyncio.run(build_catalog(manager, DOCS, 1.0, ToolExecutor(manager)))
    return {tool.name: tool for tool in tools}, tools


def test_catalog_has_native_and_synthetic_tools():
    by_name, tools = _catalog(_docs_session())

    assert [tool.name for tool in tools] == ["mcp_docs_search", *SYNTHETIC]
    search = by_name["mcp_docs_search"]
    assert search.description == "[MCP:docs] Search the docs"
    assert search.input_schema["properties"] == {"q": {"type": "string"}}
    assert search.server_name == "docs"
    assert search.raw_name == "search"
    assert by_name["mcp_docs_resource_read"].input_schema["required"] == ["uri"]
    assert by_name["mcp_docs_prompt_get"].description == "[MCP:docs] Render a prompt by name"


def test_native_tool_executes_through_engine():
    session = _docs_session()
    by_name, _ = _catalog(session)

    output = asyncio.run(by_name["mcp_docs_search"].execute({"q": "tasks"}))

    assert output == [TextContent(text="3 hits")]
    assert session.calls == [("search", {"q": "tasks"})]


def test_description_falls_back_to_tag_only():
    assert build_tool_description("docs", None) == "[MCP:docs]"
    assert build_tool_description("docs", "  spaced  ") == "[MCP:docs] spaced"


def test_resource_listing_lines_and_cursor():
    session = _docs_session()
    session.resources = types.ListResourcesResult(
        resources=[
            types.Resource(uri="file:///guide.md", name="guide", mimeType="text/markdown", description="User guide"),
            types.Resource(uri="file:///notes.txt", name="notes"),
        ],
        nextCursor="page-2",
    )
    by_name, _ = _catalog(session)

    output = asyncio.run(by_name["mcp_docs_resources_list"].execute({"cursor": "page-1"}))

    assert output == "file:///guide.md (text/markdown) - User guide\nfile:///notes.txt\nNext cursor: page-2"
    assert session.cursors == [("resources", "page-1")]


def test_empty_listings_use_fixed_messages():
    by_name, _ = _catalog(_docs_session())

    assert asyncio.run(by_name["mcp_docs_resources_list"].execute({})) == "No resources available."
    assert asyncio.run(by_name["mcp_docs_resource_templates_list"].execute({})) == (
        "No resource templates available."
    )
    assert asyncio.run(by_name["mcp_docs_prompts_list"].execute({})) == "No prompts available."


def test_resource_template_listing():
    session = _docs_session()
    session.templates = types.ListResourceTemplatesResult(
        resourceTemplates=[
            types.ResourceTemplate(uriTemplate="file:///{path}", name="file", description="Any file")
        ]
    )
    by_name, _ = _catalog(session)

    output = asyncio.run(by_name["mcp_docs_resource_templates_list"].execute({}))
    assert output == "file:///{path} - Any file"


def test_resource_read_requires_uri():
    by_name, _ = _catalog(_docs_session())

    with pytest.raises(ToolInputError, match="uri is required"):
        asyncio.run(by_name["mcp_docs_resource_read"].execute({}))


def test_resource_read_converts_blobs_by_mime_type():
    session = _docs_session()
    session.read_results = {
        "file:///logo.png": types.ReadResourceResult(
            contents=[types.BlobResourceContents(uri="file:///logo.png", mimeType="image/png", blob="iVBORw0K")]
        ),
        "file:///manual.pdf": types.ReadResourceResult(
            contents=[types.BlobResourceContents(uri="file:///manual.pdf", mimeType="application/pdf", blob="JVBERi0x")]
        ),
    }
    by_name, _ = _catalog(session)
    read = by_name["mcp_docs_resource_read"]

    image = asyncio.run(read.execute({"uri": "file:///logo.png"}))
    assert isinstance(image, ImageContent)
    assert image.source.media_type == "image/png"
    assert image.source.data == "iVBORw0K"

    placeholder = asyncio.run(read.execute({"uri": "file:///manual.pdf"}))
    assert placeholder == TextContent(text="[binary application/pdf] file:///manual.pdf (8 base64 chars)")


def test_resource_read_multiple_and_empty_contents():
    session = _docs_session()
    session.read_results = {
        "file:///pair": types.ReadResourceResult(
            contents=[
                types.TextResourceContents(uri="file:///pair", text="one"),
                types.TextResourceContents(uri="file:///pair", text="two"),
            ]
        ),
        "file:///void": types.ReadResourceResult(contents=[]),
    }
    by_name, _ = _catalog(session)
    read = by_name["mcp_docs_resource_read"]

    assert asyncio.run(read.execute({"uri": "file:///pair"})) == [
        TextContent(text="one"),
        TextContent(text="two"),
    ]
    assert asyncio.run(read.execute({"uri": "file:///void"})) == (
        "No contents returned for resource file:///void"
    )


def test_prompt_listing_and_rendering():
    session = _docs_session()
    session.prompts = types.ListPromptsResult(
        prompts=[
            types.Prompt(
                name="summarize",
                description="Summarize a page",
                arguments=[types.PromptArgument(name="page"), types.PromptArgument(name="style")],
            ),
            types.Prompt(name="greet"),
        ]
    )
    session.prompt_results = {
        "summarize": types.GetPromptResult(
            messages=[
                types.PromptMessage(role="user", content=types.TextContent(type="text", text="Summarize intro")),
                types.PromptMessage(
                    role="assistant",
                    content=types.ImageContent(type="image", data="aGk=", mimeType="image/png"),
                ),
            ]
        ),
        "empty": types.GetPromptResult(messages=[]),
    }
    by_name, _ = _catalog(session)

    listing = asyncio.run(by_name["mcp_docs_prompts_list"].execute({}))
    assert listing == "summarize (page, style) - Summarize a page\ngreet"

    get = by_name["mcp_docs_prompt_get"]
    rendered = asyncio.run(get.execute({"name": "summarize", "arguments": {"page": "intro", "limit": 3}}))
    assert rendered == "user: Summarize intro\nassistant: [image image/png]"
    assert session.calls[-1] == ("summarize", {"page": "intro", "limit": "3"})

    assert asyncio.run(get.execute({"name": "empty"})) == 'Prompt "empty" returned no messages.'
    with pytest.raises(ToolInputError, match="name is required"):
        asyncio.run(get.execute({"arguments": {}}))


def test_missing_input_schema_gets_default_object():
    session = FakeSession(tools=[types.Tool(name="ping", inputSchema={})])
    by_name, _ = _catalog(session)

    assert by_name["mcp_docs_ping"].input_schema == {"type": "object", "properties": {}}
    assert by_name["mcp_docs_ping"].description == "[MCP:docs]"


def test_native_tool_shadowing_a_synthetic_name_keeps_both():
    session = FakeSession(
        tools=[types.Tool(name="resources_list", inputSchema={"type": "object"})],
        results={"resources_list": text_result("native listing")},
    )
    by_name, tools = _catalog(session)
    names = [tool.name for tool in tools]

    assert len(names) == len(set(names)) == 6
    native = by_name["mcp_docs_resources_list"]
    assert native.description == "[MCP:docs]"
    assert asyncio.run(native.execute({})) == [TextContent(text="native listing")]

    renamed = [tool for tool in tools if tool.raw_name == "resources_list" and tool is not native]
    assert len(renamed) == 1
    assert renamed[0].name.startswith("mcp_docs_resources_list_")
    assert renamed[0].description == "[MCP:docs] List available resources"
    assert asyncio.run(renamed[0].execute({})) == "No resources available."


def test_dedupe_respects_names_already_taken():
    by_name, tools = _catalog(_docs_session())
    taken = {"mcp_docs_search"}

    unique = dedupe_tool_names(tools, taken)

    assert unique[0].name != "mcp_docs_search"
    assert unique[0].raw_name == "search"
    assert [tool.name for tool in unique[1:]] == SYNTHETIC
    assert taken == {tool.name for tool in unique} | {"mcp_docs_search"}
