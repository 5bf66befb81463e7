class BridgeError(RuntimeError):
    """Base class for every failure raised by the tool bridge."""


class ConfigurationError(BridgeError, ValueError):
    """A server config cannot be turned into a transport (missing url/command)."""


class BridgeTimeoutError(BridgeError, TimeoutError):
    """An operation lost its race against the configured timeout."""


class ToolExecutionError(BridgeError):
    """The server reported the tool call as failed (``isError``)."""


class ProtocolError(BridgeError):
    """The server broke the expected exchange, e.g. a task stream with no result."""


class ToolInputError(BridgeError, ValueError):
    """A synthetic tool was invoked without a required argument."""
