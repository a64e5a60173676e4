"""Static TCP proxy server.

This module implements the listener side of the proxy:
- Binding the listening socket
- Accepting connections with a short timeout so shutdown is noticed quickly
- Whitelist filtering of clients
- Starting one relay per admitted connection

Each admitted connection is handed to a *launcher*, a callable that runs
the relay concurrently. The default launcher starts one daemon thread per
connection with no upper bound. Passing a different launcher (a bounded
thread pool, for example) changes admission without touching the relay.

Stopping the server only stops the accept loop. Running relays are not
closed; they notice the inactive flag at their next loop iteration, which
is at most one read timeout per direction away, or when a peer closes.

Example:
    config = ProxyConfig("127.0.0.1", 9000, "127.0.0.1", 9001, verbosity=1)
    server = ProxyServer(config)
    server.start()  # Blocks until stop() is called from another thread
"""

import contextlib
import socket
import threading
from collections.abc import Callable, Iterable

from loguru import logger

from tcproxy.core.config import ACCEPT_TIMEOUT, ProxyConfig
from tcproxy.core.exceptions import BindError
from tcproxy.core.lib.address_filter import AddressFilter
from tcproxy.core.lib.proxy_stats import TrafficStats, WorkerCounter
from tcproxy.core.lib.relay import Relay
from tcproxy.core.lib.server_state import ServerState
from tcproxy.core.utils.utils import format_address

# Type aliases
Launcher = Callable[[Callable[[], None]], None]

STARTUP_TIMEOUT = 5.0  # Seconds start_background() waits for the listener


def spawn_thread(target: Callable[[], None]) -> None:
    """Run ``target`` on a new daemon thread."""
    threading.Thread(target=target, name="tcproxy-relay", daemon=True).start()


class ProxyServer:
    """Accept connections and route each one to the remote endpoint."""

    def __init__(
        self,
        config: ProxyConfig,
        launcher: Launcher = spawn_thread,
        stats: TrafficStats | None = None,
    ) -> None:
        """Initialize the proxy server.

        Args:
            config: Proxy configuration
            launcher: Runs each relay concurrently
            stats: Traffic statistics shared with the relays
        """
        self.config = config
        self.launcher = launcher
        self.stats = stats if stats is not None else TrafficStats()
        self.state = ServerState()
        self.workers = WorkerCounter()
        self.filter = AddressFilter(config.whitelist)
        self._sock: socket.socket | None = None
        self._address: tuple | None = None
        self._start_lock = threading.Lock()
        self._bound = threading.Event()

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def has_workers(self) -> bool:
        """Check if there is an active connection being routed."""
        return self.workers.has_workers

    @property
    def address(self) -> tuple | None:
        """Address the listener is bound to, once bound."""
        return self._address

    def add_whitelist(self, hosts: Iterable[str]) -> None:
        """Only admit the given hosts (in addition to earlier entries)."""
        self.filter.add(hosts)

    def clear_whitelist(self) -> None:
        """Admit every client again."""
        self.filter.clear()

    def bind(self) -> socket.socket:
        """Create the listening socket.

        Raises:
            BindError: If the address cannot be resolved or bound
        """
        host, port = self.config.listen_address
        try:
            family, type_, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0]
            sock = socket.socket(family, type_, proto)
        except OSError as e:
            raise BindError(host, port, e) from e
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(self.config.backlog)
            sock.settimeout(ACCEPT_TIMEOUT)
        except OSError as e:
            sock.close()
            raise BindError(host, port, e) from e
        return sock

    def start(self) -> bool:
        """Bind the listener and serve until stopped.

        Returns:
            bool: False if the server was already running or could not
                bind, True once it has served and shut down
        """
        with self._start_lock:
            if self.state.is_active:
                self._bound.set()
                return False
            try:
                self._sock = self.bind()
            except BindError:
                logger.exception("Failed to start proxy server")
                self._bound.set()
                return False
            self._address = self._sock.getsockname()
            self.state.activate()
            self._bound.set()

        logger.info(f"Listening for connections on: {format_address(self._address)}...")
        try:
            self._serve()
        finally:
            self.state.deactivate()
            with contextlib.suppress(OSError):
                self._sock.close()
            logger.info("Proxy server stopped")
        return True

    def start_background(self, timeout: float = STARTUP_TIMEOUT) -> threading.Thread:
        """Run ``start()`` on a daemon thread and wait for the listener.

        Check ``is_active`` afterwards to see whether binding succeeded.
        """
        self._bound.clear()
        thread = threading.Thread(target=self.start, name="tcproxy-server", daemon=True)
        thread.start()
        self._bound.wait(timeout)
        return thread

    def stop(self) -> None:
        """Stop accepting connections. Running tunnels are left to finish."""
        if self.state.is_active:
            logger.info("Shutting down proxy server")
        self.state.deactivate()

    def _serve(self) -> None:
        while self.state.is_active:
            try:
                client, client_address = self._sock.accept()
            except TimeoutError:
                continue
            except OSError:
                if self.state.is_active:
                    logger.exception("Error accepting connections")
                break
            self.dispatch(client, client_address)

    def dispatch(self, client: socket.socket, client_address: tuple) -> bool:
        """Filter an accepted connection and start its relay.

        Returns:
            bool: True if a relay was started, False if the client was rejected
        """
        if not self.filter.allow(client_address):
            logger.info(f"Connection from {format_address(client_address)} rejected!")
            with contextlib.suppress(OSError):
                client.close()
            return False

        self.workers.increment()
        relay = Relay(client, client_address, self.config, self.state, self.workers, self.stats)
        try:
            self.launcher(relay.run)
        except Exception:
            logger.exception(f"Could not start relay for {format_address(client_address)}")
            relay.close()
            return False
        return True
