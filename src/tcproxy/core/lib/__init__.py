"""Core proxy library components."""

from .address_filter import AddressFilter
from .proxy_server import ProxyServer, spawn_thread
from .proxy_stats import TrafficStats, WorkerCounter
from .relay import Relay, TunnelStatus
from .server_state import ServerState

__all__ = [
    "AddressFilter",
    "ProxyServer",
    "Relay",
    "ServerState",
    "spawn_thread",
    "TrafficStats",
    "TunnelStatus",
    "WorkerCounter",
]
