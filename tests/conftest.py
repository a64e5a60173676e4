"""Pytest fixtures: loopback helper servers and a polling helper."""

import contextlib
import socket
import threading
import time
from collections.abc import Callable

import pytest

from tcproxy.core.config import ProxyConfig
from tcproxy.core.lib.proxy_server import ProxyServer

LOCALHOST = "127.0.0.1"


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def unused_port() -> int:
    """Return a loopback port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOCALHOST, 0))
        return sock.getsockname()[1]


def recv_all(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read from ``sock`` until the peer closes it."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        data = sock.recv(65536)
        if not data:
            return b"".join(chunks)
        chunks.append(data)


def recv_once(sock: socket.socket, size: int = 1024, timeout: float = 5.0) -> bytes:
    """Read whatever arrives first."""
    sock.settimeout(timeout)
    return sock.recv(size)


def recv_exactly(sock: socket.socket, size: int, timeout: float = 5.0) -> bytes:
    sock.settimeout(timeout)
    buf = bytearray()
    while len(buf) < size:
        data = sock.recv(size - len(buf))
        if not data:
            break
        buf += data
    return bytes(buf)


class LoopbackServer:
    """Threaded TCP server on 127.0.0.1 running ``handler`` per connection.

    Attributes:
        connections: Number of connections accepted so far
        received: Bytes received per connection, in accept order
    """

    def __init__(self, handler: Callable[["LoopbackServer", socket.socket, int], None]) -> None:
        self.handler = handler
        self.connections = 0
        self.received: list[bytearray] = []
        self.finished = 0
        self._lock = threading.Lock()
        self._running = True
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind((LOCALHOST, 0))
        self.sock.listen(50)
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while self._running:
            try:
                conn, _ = self.sock.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with self._lock:
                index = self.connections
                self.connections += 1
                self.received.append(bytearray())
            threading.Thread(target=self._handle, args=(conn, index), daemon=True).start()

    def _handle(self, conn: socket.socket, index: int) -> None:
        conn.settimeout(10)
        try:
            self.handler(self, conn, index)
        except OSError:
            pass
        finally:
            conn.close()
            with self._lock:
                self.finished += 1

    def close(self) -> None:
        self._running = False
        self._thread.join(timeout=2)
        self.sock.close()


def collect(server: LoopbackServer, conn: socket.socket, index: int) -> None:
    """Store everything the client sends until it closes."""
    while data := conn.recv(65536):
        server.received[index] += data


def echo(server: LoopbackServer, conn: socket.socket, index: int) -> None:
    """Send back everything the client sends until it closes."""
    while data := conn.recv(65536):
        server.received[index] += data
        conn.sendall(data)


def greeter(payload: bytes) -> Callable[[LoopbackServer, socket.socket, int], None]:
    """Send ``payload`` as soon as a client connects, then close."""

    def handler(server: LoopbackServer, conn: socket.socket, index: int) -> None:
        conn.sendall(payload)

    return handler


@pytest.fixture
def loopback_server():
    """Factory for helper servers, closed after the test."""
    servers = []

    def factory(handler) -> LoopbackServer:
        server = LoopbackServer(handler)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()


@pytest.fixture
def make_config():
    """Build a config listening on an OS-chosen loopback port."""

    def factory(remote_port: int, **kwargs) -> ProxyConfig:
        return ProxyConfig(LOCALHOST, 0, LOCALHOST, remote_port, **kwargs)

    return factory


@pytest.fixture
def running_proxy():
    """Start a ``ProxyServer`` in the background, stopped after the test."""
    started = []

    def factory(config: ProxyConfig, **kwargs) -> ProxyServer:
        server = ProxyServer(config, **kwargs)
        thread = server.start_background()
        assert server.is_active, "proxy did not start"
        started.append((server, thread))
        return server

    yield factory
    for server, thread in started:
        server.stop()
        thread.join(timeout=2)


@pytest.fixture
def connect():
    """Open client connections to a proxy, closed after the test."""
    sockets = []

    def factory(server: ProxyServer) -> socket.socket:
        sock = socket.create_connection(server.address[:2], timeout=5)
        sockets.append(sock)
        return sock

    yield factory
    for sock in sockets:
        with contextlib.suppress(OSError):
            sock.close()
