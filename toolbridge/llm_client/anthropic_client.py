import os
from typing import Any, Dict, List, Optional, Tuple

from anthropic import NOT_GIVEN, AsyncAnthropic

from toolbridge.llm_client.model import AssistantMessage
from toolbridge.llm_client.tracing import Generation

anthropic_client = None


async def get_anthropic_client():
    global anthropic_client
    if anthropic_client is None:
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise RuntimeError(
                "ANTHROPIC_API_KEY is not set; unable to initialize Anthropic client"
            )
        anthropic_client = AsyncAnthropic(api_key=api_key)
    return anthropic_client


def _normalize_model_name(model: str) -> str:
    # Bare family aliases resolve to Anthropic's rolling "-latest" names
    for family in ("-sonnet", "-haiku", "-opus"):
        if model.endswith(family):
            return model + "-latest"
    return model


def convert_messages(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split OpenAI-format messages into Anthropic's system text and message list."""
    system_text = None
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role")
        content = msg.get("content") or ""
        if role == "system":
            system_text = f"{system_text}\n\n{content}" if system_text else content
            continue
        converted.append({"role": role, "content": content})
    return system_text, converted


async def call_anthropic_api(
    messages: List[Dict[str, Any]],
    model: str,
    max_tokens: int,
    temperature: float,
    name: str = "anthropic_api",
) -> AssistantMessage:
    client = await get_anthropic_client()
    generation = await Generation.start(
        name,
        model,
        messages,
        {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "operation": "anthropic.messages.create",
            "provider": "anthropic",
        },
    )

    system_text, anthropic_messages = convert_messages(messages)
    try:
        response = await client.messages.create(
            model=_normalize_model_name(model),
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_text or NOT_GIVEN,
            messages=anthropic_messages,
        )
    except Exception as e:
        raise RuntimeError(f"Anthropic API error: {e}") from e

    text_content = "".join(
        getattr(block, "text", "") or ""
        for block in getattr(response, "content", None) or []
        if getattr(block, "type", None) == "text"
    )

    assistant = AssistantMessage(
        content=text_content or None,
        finish_reason=getattr(response, "stop_reason", None),
        model=getattr(response, "model", None) or model,
    )

    usage = getattr(response, "usage", None)
    input_tokens = getattr(usage, "input_tokens", 0) if usage else 0
    output_tokens = getattr(usage, "output_tokens", 0) if usage else 0
    generation.end(
        assistant,
        {
            "promptTokens": input_tokens,
            "completionTokens": output_tokens,
            "totalTokens": input_tokens + output_tokens,
        },
    )
    return assistant
