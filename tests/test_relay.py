import os
import socket
import threading

import pytest

from tcproxy.core.lib.proxy_stats import TrafficStats, WorkerCounter
from tcproxy.core.lib.relay import Relay, TunnelStatus
from tcproxy.core.lib.server_state import ServerState

from .conftest import collect, echo, greeter, recv_all, recv_exactly, recv_once, unused_port, wait_until

CLIENT_ADDRESS = ("127.0.0.1", 50000)


@pytest.fixture
def state():
    state = ServerState()
    state.activate()
    return state


@pytest.fixture
def client_pair():
    """(test end, relay end) of a connected client socket pair."""
    ours, theirs = socket.socketpair()
    yield ours, theirs
    ours.close()
    theirs.close()


def start_relay(client, config, state, workers, stats=None):
    workers.increment()
    relay = Relay(client, CLIENT_ADDRESS, config, state, workers, stats)
    thread = threading.Thread(target=relay.run, daemon=True)
    thread.start()
    return relay, thread


class TestDial:
    def test_dial_failure_closes_client_and_releases_worker(self, make_config, state, client_pair):
        ours, theirs = client_pair
        workers = WorkerCounter()
        workers.increment()
        relay = Relay(theirs, CLIENT_ADDRESS, make_config(unused_port()), state, workers)

        relay.run()

        assert workers.value == 0
        assert relay.status is TunnelStatus.CLOSED
        assert relay.remote is None
        assert recv_all(ours, timeout=2) == b""


@pytest.mark.integration
class TestRelayLoop:
    @pytest.mark.parametrize(("size", "block_size"), [(700, 7), (50_000, 1000), (200_000, 65536)])
    def test_client_bytes_reach_remote_unchanged(
        self, loopback_server, make_config, state, client_pair, size, block_size
    ):
        remote = loopback_server(collect)
        ours, theirs = client_pair
        workers = WorkerCounter()
        stats = TrafficStats()
        payload = os.urandom(size)
        config = make_config(remote.port, block_size=block_size, read_timeout_ms=2)
        relay, thread = start_relay(theirs, config, state, workers, stats)

        for offset in range(0, len(payload), 4096):
            ours.sendall(payload[offset : offset + 4096])
        ours.shutdown(socket.SHUT_WR)
        thread.join(timeout=30)

        assert wait_until(lambda: remote.finished == 1)
        assert bytes(remote.received[0]) == payload
        assert stats.bytes_to_remote == len(payload)
        assert workers.value == 0
        assert relay.status is TunnelStatus.CLOSED

    def test_remote_bytes_reach_client_unchanged(self, loopback_server, make_config, state, client_pair):
        payload = os.urandom(150_000)
        remote = loopback_server(greeter(payload))
        ours, theirs = client_pair
        workers = WorkerCounter()
        stats = TrafficStats()
        start_relay(theirs, make_config(remote.port, block_size=4096, read_timeout_ms=5), state, workers, stats)

        assert recv_all(ours) == payload
        assert wait_until(lambda: workers.value == 0)
        assert stats.bytes_to_client == len(payload)

    def test_half_closed_client_still_gets_reply(self, loopback_server, make_config, state, client_pair):
        remote = loopback_server(echo)
        ours, theirs = client_pair
        workers = WorkerCounter()
        start_relay(theirs, make_config(remote.port, read_timeout_ms=200), state, workers)

        ours.sendall(b"ping")
        ours.shutdown(socket.SHUT_WR)

        assert recv_all(ours) == b"ping"
        assert wait_until(lambda: workers.value == 0)
        assert bytes(remote.received[0]) == b"ping"

    def test_remote_close_tears_down_tunnel(self, loopback_server, make_config, state, client_pair):
        remote = loopback_server(greeter(b""))
        ours, theirs = client_pair
        workers = WorkerCounter()
        relay, thread = start_relay(theirs, make_config(remote.port), state, workers)

        thread.join(timeout=5)

        assert not thread.is_alive()
        assert relay.status is TunnelStatus.CLOSED
        assert workers.value == 0
        assert recv_all(ours, timeout=2) == b""

    def test_inactive_server_ends_loop(self, loopback_server, make_config, state, client_pair):
        remote = loopback_server(echo)
        ours, theirs = client_pair
        workers = WorkerCounter()
        relay, thread = start_relay(theirs, make_config(remote.port), state, workers)
        ours.sendall(b"hello")
        assert recv_once(ours) == b"hello"

        state.deactivate()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert workers.value == 0
        assert recv_all(ours, timeout=2) == b""

    def test_close_is_idempotent(self, loopback_server, make_config, state, client_pair):
        remote = loopback_server(greeter(b"bye"))
        ours, theirs = client_pair
        workers = WorkerCounter()
        workers.increment()  # Another tunnel that stays open
        relay, thread = start_relay(theirs, make_config(remote.port), state, workers)
        thread.join(timeout=5)

        relay.close()
        relay.close()

        assert workers.value == 1


SELECT_FD_LIMIT = 1024  # FD_SETSIZE on most platforms


@pytest.fixture
def high_fds():
    """Hold enough descriptors open that new sockets get numbers above 1024."""
    resource = pytest.importorskip("resource")
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = 4096
    if hard != resource.RLIM_INFINITY and hard < wanted:
        pytest.skip(f"RLIMIT_NOFILE hard limit {hard} is too low")
    if soft != resource.RLIM_INFINITY and soft < wanted:
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
    fillers = [socket.socket(socket.AF_INET, socket.SOCK_STREAM) for _ in range(SELECT_FD_LIMIT + 100)]
    try:
        yield
    finally:
        for sock in fillers:
            sock.close()
        resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


@pytest.mark.integration
def test_tunnel_on_descriptors_above_select_limit(high_fds, loopback_server, make_config, state):
    remote = loopback_server(echo)
    ours, theirs = socket.socketpair()
    workers = WorkerCounter()
    try:
        assert theirs.fileno() > SELECT_FD_LIMIT
        relay, thread = start_relay(theirs, make_config(remote.port), state, workers)

        ours.sendall(b"hello")

        assert recv_exactly(ours, 5) == b"hello"
        assert relay.status is TunnelStatus.ACTIVE
        assert relay.remote.fileno() > SELECT_FD_LIMIT

        ours.close()
        thread.join(timeout=5)
        assert workers.value == 0
    finally:
        ours.close()
        theirs.close()
