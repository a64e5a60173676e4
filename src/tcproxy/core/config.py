"""Proxy configuration.

``ProxyConfig`` is the validated, immutable record the proxy server runs
from. The command-line layer builds it from user input; embedding code can
construct it directly.

Example:
    listen_host, listen_port = parse_endpoint("127.0.0.1:9000")
    remote_host, remote_port = parse_endpoint("example.com:80")
    config = ProxyConfig(listen_host, listen_port, remote_host, remote_port)
"""

from dataclasses import dataclass
from typing import Final

from tcproxy.core.exceptions import ConfigError

# Defaults
DEFAULT_BACKLOG: Final = 100
DEFAULT_READ_TIMEOUT_MS: Final = 50  # Small, so the relay alternates directions quickly
DEFAULT_BLOCK_SIZE: Final = 9999
DEFAULT_DIAL_TIMEOUT: Final = 10.0  # Seconds
ACCEPT_TIMEOUT: Final = 0.3  # Seconds, how often the accept loop re-checks the active flag

MAX_PORT: Final = 65535
VERBOSITY_LEVELS: Final = (0, 1, 2)


def parse_endpoint(value: str) -> tuple[str, int]:
    """Split a ``host:port`` string into its host and port.

    IPv6 hosts must be bracketed, e.g. ``[::1]:8080``.

    Args:
        value: Endpoint string

    Returns:
        tuple[str, int]: Host and port

    Raises:
        ConfigError: If the port is missing or not a number
    """
    host, sep, port = value.strip().rpartition(":")
    if not sep or not host:
        raise ConfigError(f"Expected host:port, got {value!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port.isdigit():
        raise ConfigError(f"Invalid port in {value!r}")
    return host, int(port)


def parse_whitelist(value: str | None) -> tuple[str, ...]:
    """Split a comma separated list of hosts, dropping blanks."""
    if not value:
        return ()
    return tuple(host.strip() for host in value.split(",") if host.strip())


@dataclass(frozen=True)
class ProxyConfig:
    """Listening and remote endpoints plus relay tunables.

    Attributes:
        listen_host: Host to listen on
        listen_port: Port to listen on (0 lets the OS pick one)
        remote_host: Host every connection is routed to
        remote_port: Port every connection is routed to
        backlog: Pending connection queue depth of the listener
        read_timeout_ms: Read timeout used while relaying, in milliseconds
        block_size: Maximum bytes read from a socket at once
        verbosity: 0 = quiet, 1 = verbose, 2 = very verbose
        whitelist: Client hosts allowed to connect, empty allows everyone
        dial_timeout: Seconds to wait for the remote connection to open
    """

    listen_host: str
    listen_port: int
    remote_host: str
    remote_port: int
    backlog: int = DEFAULT_BACKLOG
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS
    block_size: int = DEFAULT_BLOCK_SIZE
    verbosity: int = 0
    whitelist: tuple[str, ...] = ()
    dial_timeout: float = DEFAULT_DIAL_TIMEOUT

    def __post_init__(self) -> None:
        if not self.listen_host or not self.remote_host:
            raise ConfigError("Listening and remote hosts are required")
        for name in ("listen_port", "remote_port"):
            port = getattr(self, name)
            if not 0 <= port <= MAX_PORT:
                raise ConfigError(f"{name} must be between 0 and {MAX_PORT}, got {port}")
        if self.backlog < 0:
            raise ConfigError(f"backlog must not be negative, got {self.backlog}")
        if self.read_timeout_ms <= 0:
            raise ConfigError(f"read_timeout_ms must be positive, got {self.read_timeout_ms}")
        if self.block_size <= 0:
            raise ConfigError(f"block_size must be positive, got {self.block_size}")
        if self.verbosity not in VERBOSITY_LEVELS:
            raise ConfigError(f"verbosity must be one of {VERBOSITY_LEVELS}, got {self.verbosity}")
        if self.dial_timeout <= 0:
            raise ConfigError(f"dial_timeout must be positive, got {self.dial_timeout}")
        # Accept any iterable of hosts but store an immutable tuple
        object.__setattr__(self, "whitelist", tuple(self.whitelist))

    @property
    def read_timeout(self) -> float:
        """Read timeout in seconds."""
        return self.read_timeout_ms / 1000

    @property
    def listen_address(self) -> tuple[str, int]:
        return self.listen_host, self.listen_port

    @property
    def remote_address(self) -> tuple[str, int]:
        return self.remote_host, self.remote_port
