import time
from typing import Any, Dict, Literal, Optional

import pydantic
from pydantic import Field


class Event(pydantic.BaseModel):
    id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class ToolCall(Event):
    id: str
    name: str
    arguments: str | Dict[str, Any]


class ToolCallResult(Event):
    id: str
    name: Optional[str] = None
    result: str | dict | list[dict]


class AssistantMessage(Event):
    content: str | None = None
    finish_reason: Optional[str] = None
    model: Optional[str] = None


class TextContent(pydantic.BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageSource(pydantic.BaseModel):
    type: Literal["base64"] = "base64"
    data: str
    media_type: str


class ImageContent(pydantic.BaseModel):
    type: Literal["image"] = "image"
    source: ImageSource
