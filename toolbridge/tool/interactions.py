"""
Answers the requests an MCP server sends back toward the host.

Every connection registers the same three callbacks on its ``ClientSession``
(elicitation, sampling, roots), each bound to the connection's server name.
The callbacks delegate to whatever handlers are currently installed on the
``InteractionBridge``, so handler behaviour can be swapped at runtime without
touching live sessions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from mcp import types
from mcp.shared.exceptions import McpError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionRequest:
    server_name: str
    params: Any


ElicitationHandler = Callable[[InteractionRequest], Awaitable[Any]]
SamplingHandler = Callable[[InteractionRequest], Awaitable[Any]]


@dataclass(frozen=True)
class InteractionHandlers:
    on_elicitation: Optional[ElicitationHandler] = None
    on_sampling: Optional[SamplingHandler] = None


def build_roots_list() -> types.ListRootsResult:
    return types.ListRootsResult(
        roots=[types.Root(uri=Path.cwd().resolve().as_uri(), name="workspace")]
    )


def _is_url_elicitation(params: Any) -> bool:
    mode = getattr(params, "mode", None)
    if mode is None and isinstance(params, dict):
        mode = params.get("mode")
    return mode == "url"


class InteractionBridge:
    def __init__(self, handlers: Optional[InteractionHandlers] = None) -> None:
        self._handlers = handlers or InteractionHandlers()

    @property
    def handlers(self) -> InteractionHandlers:
        return self._handlers

    def set_handlers(self, handlers: Optional[InteractionHandlers]) -> None:
        """Replace the whole registry. ``None`` clears every handler."""
        self._handlers = handlers or InteractionHandlers()

    async def handle_elicitation(
        self, server_name: str, params: Any
    ) -> types.ElicitResult | types.ErrorData:
        if _is_url_elicitation(params):
            return types.ErrorData(
                code=types.INVALID_PARAMS,
                message="URL-based elicitation is not supported",
            )
        handler = self._handlers.on_elicitation
        if handler is None:
            return types.ElicitResult(action="cancel")
        try:
            result = await handler(InteractionRequest(server_name, params))
        except McpError as e:
            return e.error
        except Exception as e:
            logger.exception("Elicitation handler failed for server %s", server_name)
            return types.ErrorData(code=types.INTERNAL_ERROR, message=str(e))
        if isinstance(result, dict):
            return types.ElicitResult.model_validate(result)
        return result

    async def handle_sampling(
        self, server_name: str, params: types.CreateMessageRequestParams
    ) -> types.CreateMessageResult | types.ErrorData:
        handler = self._handlers.on_sampling
        if handler is None:
            return types.ErrorData(
                code=types.METHOD_NOT_FOUND,
                message="Sampling not supported in this session",
            )
        try:
            result = await handler(InteractionRequest(server_name, params))
        except McpError as e:
            return e.error
        except Exception as e:
            logger.exception("Sampling handler failed for server %s", server_name)
            return types.ErrorData(code=types.INTERNAL_ERROR, message=str(e))
        if isinstance(result, dict):
            return types.CreateMessageResult.model_validate(result)
        return result

    def session_callbacks(self, server_name: str) -> Dict[str, Any]:
        """``ClientSession`` keyword arguments bound to ``server_name``."""

        async def elicitation_callback(context: Any, params: Any):
            return await self.handle_elicitation(server_name, params)

        async def sampling_callback(context: Any, params: types.CreateMessageRequestParams):
            return await self.handle_sampling(server_name, params)

        async def list_roots_callback(context: Any) -> types.ListRootsResult:
            return build_roots_list()

        return {
            "elicitation_callback": elicitation_callback,
            "sampling_callback": sampling_callback,
            "list_roots_callback": list_roots_callback,
        }
