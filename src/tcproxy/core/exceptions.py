"""Custom exceptions for the proxy server.

Only configuration and listener problems are raised to callers. Failures
scoped to a single tunnel (dial, read or write errors) are contained by the
relay and end up as a teardown, never as an exception.

Example:
    try:
        host, port = parse_endpoint("localhost")
    except ConfigError as e:
        console.print(f"[red]Invalid endpoint: {e}")
"""


class ProxyError(Exception):
    """Base exception for proxy errors."""


class ConfigError(ProxyError):
    """Raised when the proxy configuration is invalid."""


class BindError(ProxyError):
    """Raised when the listening socket cannot be created."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        """Initialize the error.

        Args:
            host: Host the listener tried to bind to
            port: Port the listener tried to bind to
            cause: Underlying socket error
        """
        super().__init__(f"Cannot listen on {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause
