"""Per-connection duplex relay.

A ``Relay`` owns one accepted client socket for its whole life. It dials
the fixed remote endpoint, then shuttles bytes between the two sockets in a
single loop that alternates directions:

1. read up to ``block_size`` bytes from the remote socket, waiting at most
   ``read_timeout_ms``, and forward them to the client
2. do the same from the client socket to the remote socket

A read that times out with no data is not an error, the loop just moves on
to the other direction. End of stream on either side, a failed write, or
the server going inactive ends the loop, and both sockets are closed.

Sockets stay in blocking mode. The read timeout is applied by waiting on a
per-socket ``selectors.DefaultSelector`` (epoll, kqueue or poll, so there is
no file descriptor ceiling) and bounds reads only; writes block until the
kernel accepts the data, as they would on a plain blocking socket.

Example:
    workers.increment()
    relay = Relay(client, client_address, config, state, workers)
    threading.Thread(target=relay.run, daemon=True).start()
"""

import contextlib
import selectors
import socket
from enum import Enum

from loguru import logger

from tcproxy.core.config import ProxyConfig
from tcproxy.core.lib.proxy_stats import TrafficStats, WorkerCounter
from tcproxy.core.lib.server_state import ServerState
from tcproxy.core.utils.utils import format_address

# Returned by _read when the peer is gone, as opposed to b"" for "nothing yet"
EOF = None


class TunnelStatus(Enum):
    """Lifecycle of a single tunnel."""

    DIALING = "dialing"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Relay:
    """Relay bytes between one client and the remote endpoint."""

    def __init__(
        self,
        client: socket.socket,
        client_address: tuple,
        config: ProxyConfig,
        state: ServerState,
        workers: WorkerCounter,
        stats: TrafficStats | None = None,
    ) -> None:
        """Initialize the relay.

        The caller must already have counted this tunnel in ``workers``;
        the relay decrements it exactly once when it finishes.

        Args:
            client: Accepted client socket, owned by the relay from now on
            client_address: Client address as returned by ``accept()``
            config: Proxy configuration
            state: Shared server state, checked once per loop iteration
            workers: Active tunnel counter
            stats: Optional traffic statistics to update
        """
        self.client = client
        self.client_address = client_address
        self.config = config
        self.state = state
        self.workers = workers
        self.stats = stats
        self.remote: socket.socket | None = None
        self._selectors: dict[socket.socket, selectors.BaseSelector] = {}
        self.status = TunnelStatus.DIALING
        self._client_name = format_address(client_address)
        self._remote_name = format_address(config.remote_address)

    def run(self) -> None:
        """Run one full tunnel lifecycle. Never raises on socket errors."""
        try:
            self.remote = self._dial()
            if self.remote is None:
                return
            if not self._watch():
                return
            self.status = TunnelStatus.ACTIVE
            logger.info(f"Tunneling: {self._client_name} ==> {self._remote_name}")
            self._relay_loop()
        finally:
            self.close()

    def close(self) -> None:
        """Close both sockets and release the worker slot. Safe to call twice."""
        if self.status is TunnelStatus.CLOSED:
            return
        was_active = self.status is TunnelStatus.ACTIVE
        self.status = TunnelStatus.CLOSING
        for selector in self._selectors.values():
            selector.close()
        self._selectors.clear()
        for sock in (self.remote, self.client):
            if sock is not None:
                with contextlib.suppress(OSError):
                    sock.close()
        self.status = TunnelStatus.CLOSED
        self.workers.decrement()
        if was_active:
            logger.info(f"Tunnel closed: {self._client_name} ==> {self._remote_name}")

    def _dial(self) -> socket.socket | None:
        """Open the outbound connection, or return None if it fails."""
        try:
            remote = socket.create_connection(self.config.remote_address, timeout=self.config.dial_timeout)
        except OSError as e:
            logger.warning(f"Cannot reach {self._remote_name} for {self._client_name}: {e}")
            return None
        # Back to blocking mode, reads are bounded by the selectors instead
        remote.settimeout(None)
        self.client.settimeout(None)
        return remote

    def _watch(self) -> bool:
        """Create one read selector per socket, or return False if that fails."""
        try:
            for sock in (self.client, self.remote):
                selector = selectors.DefaultSelector()
                self._selectors[sock] = selector
                selector.register(sock, selectors.EVENT_READ)
        except OSError as e:
            logger.warning(f"Cannot watch {self._client_name} tunnel: {e}")
            return False
        return True

    def _relay_loop(self) -> None:
        remote = self.remote
        client = self.client
        while self.state.is_active:
            data = self._read(remote)
            if data is EOF:
                break
            if data:
                logger.debug(f"{self._remote_name} ({len(data)} bytes) ==> {self._client_name}")
                if not self._write(client, data):
                    break
                if self.stats is not None:
                    self.stats.update_bytes(to_client=len(data))

            data = self._read(client)
            if data is EOF:
                break
            if data:
                logger.debug(f"{self._client_name} ({len(data)} bytes) ==> {self._remote_name}")
                if not self._write(remote, data):
                    break
                if self.stats is not None:
                    self.stats.update_bytes(to_remote=len(data))

    def _read(self, sock: socket.socket) -> bytes | None:
        """Read one block from a socket.

        Returns:
            bytes | None: The data read, ``b""`` if the read timed out, or
                ``None`` if the peer closed the stream or the read failed
        """
        try:
            if not self._selectors[sock].select(self.config.read_timeout):
                return b""
            data = sock.recv(self.config.block_size)
        except OSError as e:
            logger.debug(f"Read failed on {self._client_name} tunnel: {e}")
            return EOF
        return data or EOF

    def _write(self, sock: socket.socket, data: bytes) -> bool:
        """Write all of ``data``, returning False if the socket failed."""
        try:
            sock.sendall(data)
        except OSError as e:
            logger.debug(f"Write failed on {self._client_name} tunnel: {e}")
            return False
        return True
