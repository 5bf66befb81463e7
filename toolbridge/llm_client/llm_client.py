"""
Unified LLM client that routes to the appropriate provider based on model name.
"""

import os
from typing import Any, Dict, List

from toolbridge.llm_client.model import AssistantMessage

# Simple model-to-provider mapping
MODEL_PROVIDERS = {
    "gpt-4": "openai",
    "gpt-4o": "openai",
    "gpt-4o-mini": "openai",
    "gpt-4.1": "openai",
    "gpt-4.1-mini": "openai",
    "claude-3-5-sonnet": "anthropic",
    "claude-3-5-haiku": "anthropic",
    "claude-3-opus": "anthropic",
    "claude-3-5-sonnet-latest": "anthropic",
    "claude-3-5-haiku-latest": "anthropic",
}


def get_provider_for_model(model: str) -> str:
    """
    Determine which provider to use for a given model.

    ``LLM_PROVIDER`` overrides the lookup for every model. Unknown models
    fall back to a ``claude`` prefix check, then to whichever API key is set.
    """
    override_provider = os.environ.get("LLM_PROVIDER")
    if override_provider:
        return override_provider.lower()

    provider = MODEL_PROVIDERS.get(model)
    if provider:
        return provider
    if model.startswith("claude"):
        return "anthropic"

    if os.environ.get("OPENAI_API_KEY"):
        return "openai"
    elif os.environ.get("ANTHROPIC_API_KEY"):
        return "anthropic"

    raise ValueError(
        f"Cannot determine provider for model '{model}'. "
        f"Set LLM_PROVIDER env var or configure API keys."
    )


async def create_completion(
    messages: List[Dict[str, Any]],
    model: str,
    max_tokens: int = 1000,
    temperature: float = 0.7,
    name: str = "llm_completion",
) -> AssistantMessage:
    """
    Create a completion with whichever provider serves ``model``.

    Args:
        messages: List of messages in OpenAI format
        model: Model name (e.g., "gpt-4o", "claude-3-5-sonnet")
        max_tokens: Maximum tokens to generate
        temperature: Sampling temperature
        name: Name for tracing

    Returns:
        AssistantMessage with the response
    """
    provider = get_provider_for_model(model)

    if provider == "openai":
        from toolbridge.llm_client.openai_client import call_openai_api

        return await call_openai_api(
            messages=messages,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            name=name,
        )

    elif provider == "anthropic":
        from toolbridge.llm_client.anthropic_client import call_anthropic_api

        return await call_anthropic_api(
            messages=messages,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            name=name,
        )

    else:
        raise ValueError(f"Unknown provider: {provider}")
