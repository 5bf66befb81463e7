import os
import time
from typing import Any, Dict, List

from langfuse import Langfuse

from toolbridge.llm_client.model import AssistantMessage

langfuse_client = None


async def get_langfuse_client():
    global langfuse_client
    if langfuse_client is None:
        secret_key = os.environ.get("LANGFUSE_SECRET_KEY")
        public_key = os.environ.get("LANGFUSE_PUBLIC_KEY")
        host = os.environ.get("LANGFUSE_HOST", "https://cloud.langfuse.com")
        if not secret_key or not public_key:
            # Tracing is optional
            return None
        try:
            langfuse_client = Langfuse(
                secret_key=secret_key, public_key=public_key, host=host
            )
        except Exception as e:
            raise RuntimeError(f"Failed to initialize Langfuse client: {e}") from e
    return langfuse_client


class Generation:
    """Thin wrapper over a Langfuse generation that is a no-op when tracing is off."""

    def __init__(self, generation: Any, metadata: Dict[str, Any]) -> None:
        self._generation = generation
        self._metadata = metadata
        self._start_time = time.time()

    @classmethod
    async def start(
        cls, name: str, model: str, messages: List[Dict[str, Any]], metadata: Dict[str, Any]
    ) -> "Generation":
        langfuse = await get_langfuse_client()
        generation = None
        if langfuse:
            generation = langfuse.start_generation(
                name=name, model=model, input=messages, metadata=metadata
            )
        return cls(generation, metadata)

    def end(self, assistant: AssistantMessage, usage: Dict[str, int]) -> None:
        if self._generation is None:
            return

        self._generation.update(
            output={"assistant": assistant.content or ""},
            usage=usage,
            metadata={
                **self._metadata,
                "latency_ms": (time.time() - self._start_time) * 1000,
                "finish_reason": assistant.finish_reason,
                "success": True,
            },
        )
        self._generation.end()
