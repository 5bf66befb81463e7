from __future__ import annotations

import hashlib
import re
from typing import Collection

from toolbridge.constants import MAX_TOOL_NAME_LENGTH, TOOL_NAME_HASH_LENGTH


def sanitize_tool_part(value: str) -> str:
    # Only letters/numbers/_/- allowed
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", (value or "").strip())
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized or "tool"


def make_tool_name(server_name: str, tool_name: str, attempt: int = 0) -> str:
    """
    Build the external function name for ``tool_name`` on ``server_name``.

    Names look like ``mcp_<server>_<tool>``. When that exceeds 64 characters the
    prefix is truncated and suffixed with 8 hex chars of a sha256 over the raw
    ``"<server>:<tool>"`` pair, so two long names sharing a prefix still differ.

    A nonzero ``attempt`` always takes the hashed form; attempts past the first
    mix the attempt number into the digest.
    """
    base = f"mcp_{sanitize_tool_part(server_name)}_{sanitize_tool_part(tool_name)}"
    if attempt == 0 and len(base) <= MAX_TOOL_NAME_LENGTH:
        return base

    key = f"{server_name}:{tool_name}"
    if attempt > 1:
        key = f"{key}#{attempt}"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    suffix = digest[:TOOL_NAME_HASH_LENGTH]
    max_prefix = max(1, MAX_TOOL_NAME_LENGTH - len(suffix) - 1)
    prefix = base[:max_prefix].rstrip("_")
    return f"{prefix}_{suffix}"


def unique_tool_name(server_name: str, tool_name: str, taken: Collection[str]) -> str:
    """Return the first name for the pair that is not already in ``taken``."""
    attempt = 0
    name = make_tool_name(server_name, tool_name)
    while name in taken:
        attempt += 1
        name = make_tool_name(server_name, tool_name, attempt)
    return name
