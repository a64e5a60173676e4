"""Statistics tracking for the proxy server.

This module provides thread-safe counters shared by every relay thread:
- ``WorkerCounter``: the number of active tunnels
- ``TrafficStats``: bytes relayed in each direction and recent bandwidth

Neither is used for admission control. They exist so operators (and the
status panel) can see what the proxy is doing.

Example:
    workers = WorkerCounter()
    workers.increment()
    ...
    workers.decrement()
    assert workers.value == 0
"""

import threading
import time
from collections import deque
from datetime import datetime, timezone

from loguru import logger

BANDWIDTH_WINDOW = 5  # Seconds averaged by get_bandwidth()
HISTORY_SECONDS = 60  # One bandwidth sample per second is kept for this long


class WorkerCounter:
    """Thread-safe count of active tunnels.

    Every established tunnel increments the counter once and decrements it
    once when it ends, so the value returns to zero when the proxy is idle.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"WorkerCounter(value={self._value})"

    @property
    def value(self) -> int:
        """Current number of active tunnels."""
        with self._lock:
            return self._value

    @property
    def has_workers(self) -> bool:
        return self.value > 0

    def increment(self) -> int:
        """Count a new tunnel and return the updated value."""
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        """Count a finished tunnel and return the updated value.

        A decrement at zero is refused so the counter never goes negative.
        """
        with self._lock:
            if self._value == 0:
                logger.error("Worker counter decremented below zero, ignoring")
                return 0
            self._value -= 1
            return self._value


class TrafficStats:
    """Thread-safe totals of relayed bytes.

    Attributes:
        bytes_to_remote: Total bytes forwarded from clients to the remote host
        bytes_to_client: Total bytes forwarded from the remote host to clients
        bandwidth_history: (bytes, second) samples, one per second, last minute kept
        start_time: When tracking started
    """

    def __init__(self) -> None:
        self.bytes_to_remote = 0
        self.bytes_to_client = 0
        self.bandwidth_history: deque[tuple[int, int]] = deque(maxlen=HISTORY_SECONDS)
        self.start_time = datetime.now(tz=timezone.utc)
        self._lock = threading.Lock()

    @property
    def total_bytes(self) -> int:
        return self.bytes_to_remote + self.bytes_to_client

    def update_bytes(self, to_remote: int = 0, to_client: int = 0) -> None:
        """Record forwarded bytes.

        Args:
            to_remote: Bytes sent from a client to the remote host
            to_client: Bytes sent from the remote host to a client
        """
        with self._lock:
            self.bytes_to_remote += to_remote
            self.bytes_to_client += to_client
            size = to_remote + to_client
            second = int(time.time())
            if self.bandwidth_history and self.bandwidth_history[-1][1] == second:
                size += self.bandwidth_history.pop()[0]
            self.bandwidth_history.append((size, second))

    def get_bandwidth(self) -> float:
        """Calculate current bandwidth usage in bytes per second.

        Returns:
            float: Average bandwidth over the last few seconds in bytes/second
        """
        with self._lock:
            cutoff = time.time() - BANDWIDTH_WINDOW
            recent = sum(bytes_ for bytes_, ts in self.bandwidth_history if ts > cutoff)
            return recent / BANDWIDTH_WINDOW
