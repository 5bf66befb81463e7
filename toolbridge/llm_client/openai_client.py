import os
from typing import Any, Dict, List

from openai import AsyncOpenAI

from toolbridge.llm_client.model import AssistantMessage
from toolbridge.llm_client.tracing import Generation

openai_client = None


async def get_openai_client():
    global openai_client
    if openai_client is None:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set; unable to initialize OpenAI client"
            )
        openai_client = AsyncOpenAI(api_key=api_key)
    return openai_client


async def call_openai_api(
    messages: List[Dict[str, Any]],
    model: str,
    max_tokens: int,
    temperature: float,
    name: str = "openai_api",
) -> AssistantMessage:
    client = await get_openai_client()
    generation = await Generation.start(
        name,
        model,
        messages,
        {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "operation": "chat.completions.create",
            "provider": "openai",
        },
    )

    response = await client.chat.completions.create(
        model=model,
        messages=messages,
        max_completion_tokens=max_tokens,
        temperature=temperature,
    )

    choice = response.choices[0]
    assistant = AssistantMessage(
        content=choice.message.content,
        finish_reason=choice.finish_reason,
        model=getattr(response, "model", None) or model,
    )

    usage = getattr(response, "usage", None)
    generation.end(
        assistant,
        {
            "promptTokens": getattr(usage, "prompt_tokens", 0),
            "completionTokens": getattr(usage, "completion_tokens", 0),
            "totalTokens": getattr(usage, "total_tokens", 0),
        },
    )
    return assistant
