"""Client address whitelisting.

An empty filter admits every client. Once hosts are added, only clients
whose host matches an entry exactly are admitted. Matching is done on
normalized addresses, so ``::ffff:127.0.0.1`` (an IPv4 client seen through
a dual-stack listener) matches a ``127.0.0.1`` entry, and differently
written IPv6 addresses compare equal. Entries that are not IP addresses are
compared as plain strings. There are no subnet semantics.

The set is replaced as a whole on every mutation, so readers on relay
threads always see a consistent snapshot.
"""

import ipaddress
import threading
from collections.abc import Iterable

Address = tuple | str


def normalize_host(host: str) -> str:
    """Return the canonical text form of a host.

    Args:
        host: IP address or host name

    Returns:
        str: Compressed IP address, with IPv4-mapped IPv6 unwrapped, or the
            stripped input if it is not an IP address
    """
    host = host.strip()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    # Drop an IPv6 zone index such as fe80::1%eth0
    bare = host.split("%", 1)[0]
    try:
        ip = ipaddress.ip_address(bare)
    except ValueError:
        return host
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


class AddressFilter:
    """Thread-safe set of allowed client hosts."""

    def __init__(self, hosts: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._hosts: frozenset[str] = frozenset()
        self.add(hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    def __contains__(self, host: object) -> bool:
        return isinstance(host, str) and normalize_host(host) in self._hosts

    @property
    def hosts(self) -> frozenset[str]:
        """Current snapshot of the normalized entries."""
        return self._hosts

    def add(self, hosts: Iterable[str]) -> None:
        """Add hosts to the whitelist. Hosts already present are ignored."""
        if isinstance(hosts, str):
            hosts = [hosts]
        new = {normalize_host(host) for host in hosts if host.strip()}
        with self._lock:
            self._hosts = self._hosts | new

    def clear(self) -> None:
        """Remove every entry, which admits all clients again."""
        with self._lock:
            self._hosts = frozenset()

    def allow(self, address: Address) -> bool:
        """Decide whether a client may connect.

        Args:
            address: Client address as returned by ``socket.accept()``, or
                a bare host string

        Returns:
            bool: True if the whitelist is empty or contains the host
        """
        hosts = self._hosts
        if not hosts:
            return True
        host = address if isinstance(address, str) else address[0]
        return normalize_host(host) in hosts
