"""
Translation between MCP content blocks and the shapes the host consumes.

Two views exist over the same block kinds:

- rich output (tool calls, resource reads): text stays text, images stay
  images, everything else becomes a short text summary;
- flattened text (sampling and prompt transcripts): every block reduces to a
  single string and sequences join with newlines.

Blocks may arrive as ``mcp.types`` models or as plain dicts.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from toolbridge.llm_client.model import ImageContent, ImageSource, TextContent

from .types import ContentBlock, RichOutput


def as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return value
    return {}


def _str_field(block: Dict[str, Any], key: str) -> Optional[str]:
    value = block.get(key)
    return value if isinstance(value, str) else None


def to_text_content(text: str) -> TextContent:
    return TextContent(text=text)


def to_image_content(data: str, mime_type: str) -> ImageContent:
    return ImageContent(source=ImageSource(data=data, media_type=mime_type))


def format_content_block(block: Any) -> ContentBlock:
    block = as_dict(block)
    kind = _str_field(block, "type") or "unknown"

    if kind == "text" and _str_field(block, "text") is not None:
        return to_text_content(block["text"])

    if kind == "image" and _str_field(block, "data") is not None and _str_field(block, "mimeType") is not None:
        return to_image_content(block["data"], block["mimeType"])

    if kind == "resource_link":
        uri = _str_field(block, "uri") or "unknown"
        description = _str_field(block, "description")
        suffix = f" {description}" if description is not None else ""
        return to_text_content(f"[resource link] {uri}{suffix}")

    if kind == "resource" and isinstance(block.get("resource"), dict):
        resource = block["resource"]
        text = _str_field(resource, "text")
        if text is not None:
            return to_text_content(text)
        uri = _str_field(resource, "uri") or "unknown"
        return to_text_content(f"[resource] {uri}")

    if kind == "audio":
        mime_type = _str_field(block, "mimeType") or "audio/unknown"
        return to_text_content(f"[audio {mime_type}]")

    return to_text_content(f"[{kind} content]")


def convert_tool_result(result: Any) -> RichOutput:
    """Convert a ``CallToolResult`` (or its dict form) into rich output.

    Structured content wins over the parallel content blocks and is returned
    as pretty-printed JSON. An empty block list yields ``""``.
    """
    payload = as_dict(result)
    structured = payload.get("structuredContent")
    if structured is not None:
        return json.dumps(structured, indent=2)

    content = payload.get("content") or []
    if not content:
        return ""
    return [format_content_block(block) for block in content]


def format_sampling_content_block(block: Any) -> str:
    block = as_dict(block)
    kind = _str_field(block, "type") or "unknown"

    if kind == "text" and _str_field(block, "text") is not None:
        return block["text"]

    if kind in ("image", "audio") and _str_field(block, "mimeType") is not None:
        return f"[{kind} {block['mimeType']}]"

    if kind == "resource":
        resource = block.get("resource") if isinstance(block.get("resource"), dict) else {}
        text = _str_field(resource, "text")
        if text is not None:
            return text
        return f"[resource {_str_field(resource, 'uri') or 'unknown'}]"

    if kind == "resource_link":
        return f"[resource link {_str_field(block, 'uri') or 'unknown'}]"

    if kind == "tool_use":
        return f"[tool use {_str_field(block, 'name') or 'unknown'}]"

    if kind == "tool_result":
        return "[tool result]"

    return f"[{kind} content]"


def format_sampling_content(content: Any) -> str:
    if isinstance(content, (list, tuple)):
        return "\n".join(
            format_sampling_content_block(part)
            if isinstance(part, (dict, BaseModel))
            else str(part)
            for part in content
        )
    if isinstance(content, (dict, BaseModel)):
        return format_sampling_content_block(content)
    return content if isinstance(content, str) else str(content)


def to_error_message(output: RichOutput, operation: str = "MCP tool") -> str:
    fallback = f"{operation} error"
    if isinstance(output, str):
        return output or fallback
    blocks = output if isinstance(output, list) else [output]
    text = "\n".join(block.text for block in blocks if isinstance(block, TextContent))
    return text or fallback


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_progress(progress: float, total: Optional[float] = None, message: Optional[str] = None) -> str:
    total_suffix = f"/{_format_number(total)}" if total is not None else ""
    message_suffix = f" {message}" if message else ""
    return f"{_format_number(progress)}{total_suffix}{message_suffix}".strip()


def append_progress(output: RichOutput, progress_lines: Iterable[str]) -> RichOutput:
    lines = list(progress_lines)
    if not lines:
        return output
    progress_text = "Progress:\n" + "\n".join(f"- {line}" for line in lines)
    if isinstance(output, str):
        prefix = f"{output}\n\n" if output else ""
        return f"{prefix}{progress_text}"
    blocks: List[ContentBlock] = list(output) if isinstance(output, list) else [output]
    return [*blocks, to_text_content(progress_text)]
