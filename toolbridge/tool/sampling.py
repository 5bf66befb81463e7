"""
A ready-made ``on_sampling`` handler backed by ``create_completion``.

Servers ask the host to run a completion with ``sampling/createMessage``. The
request transcript is flattened to text, routed to OpenAI or Anthropic by
model name, and the reply is returned as a single text ``CreateMessageResult``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from mcp import types

from toolbridge.llm_client.llm_client import MODEL_PROVIDERS, create_completion

from .content import format_sampling_content
from .interactions import InteractionRequest, SamplingHandler

logger = logging.getLogger(__name__)

DEFAULT_SAMPLING_MAX_TOKENS = 1000

STOP_REASONS = {
    "stop": "endTurn",
    "end_turn": "endTurn",
    "length": "maxTokens",
    "max_tokens": "maxTokens",
    "stop_sequence": "stopSequence",
}


def build_sampling_messages(params: types.CreateMessageRequestParams) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if params.systemPrompt:
        messages.append({"role": "system", "content": params.systemPrompt})
    for message in params.messages:
        messages.append({"role": message.role, "content": format_sampling_content(message.content)})
    return messages


def match_model_hint(hint: str) -> Optional[str]:
    """
    Resolve a model hint to a ``MODEL_PROVIDERS`` key.

    Hints are advisory and often partial: a dated release such as
    ``claude-3-5-sonnet-20241022`` maps to the longest key it starts with, and a
    family name such as ``sonnet`` maps to the first key containing it.
    """
    hint = hint.strip().lower()
    if not hint:
        return None
    if hint in MODEL_PROVIDERS:
        return hint
    prefixes = [key for key in MODEL_PROVIDERS if hint.startswith(key)]
    if prefixes:
        return max(prefixes, key=len)
    for key in MODEL_PROVIDERS:
        if hint in key:
            return key
    return None


def select_model(params: types.CreateMessageRequestParams, default_model: str) -> str:
    # Honour the first hint that names a model we can route
    preferences = params.modelPreferences
    for hint in (preferences.hints or []) if preferences else []:
        matched = match_model_hint(hint.name or "")
        if matched is not None:
            return matched
    return default_model


def to_stop_reason(finish_reason: Optional[str]) -> Optional[str]:
    if finish_reason is None:
        return None
    return STOP_REASONS.get(finish_reason, finish_reason)


def make_sampling_handler(
    model: str,
    *,
    max_tokens: Optional[int] = None,
    temperature: float = 0.7,
    name: str = "mcp_sampling",
) -> SamplingHandler:
    async def on_sampling(request: InteractionRequest) -> types.CreateMessageResult:
        params: types.CreateMessageRequestParams = request.params
        chosen_model = select_model(params, model)
        logger.info(
            "Sampling request from MCP server %s using model %s", request.server_name, chosen_model
        )
        response = await create_completion(
            build_sampling_messages(params),
            model=chosen_model,
            max_tokens=params.maxTokens or max_tokens or DEFAULT_SAMPLING_MAX_TOKENS,
            temperature=params.temperature if params.temperature is not None else temperature,
            name=f"{name}:{request.server_name}",
        )
        return types.CreateMessageResult(
            role="assistant",
            content=types.TextContent(type="text", text=response.content or ""),
            model=response.model or chosen_model,
            stopReason=to_stop_reason(response.finish_reason),
        )

    return on_sampling
