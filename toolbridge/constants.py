import os
from pathlib import Path

# Paths relative to the toolbridge directory
TOOLBRIDGE_DIR = Path(__file__).resolve().parent
TOOL_DIR = TOOLBRIDGE_DIR / "tool"

CLIENT_NAME = "toolbridge"
CLIENT_VERSION = "0.1.0"

# Seconds; bounds connect, every outbound request and each tool call
DEFAULT_CONNECT_TIMEOUT = float(os.environ.get("TOOLBRIDGE_CONNECT_TIMEOUT", "10"))

MAX_TOOL_NAME_LENGTH = 64
TOOL_NAME_HASH_LENGTH = 8

DEFAULT_TOOL_SCHEMA = {"type": "object", "properties": {}}
