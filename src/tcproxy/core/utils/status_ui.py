"""Live status panel for the proxy server.

Renders a small rich panel showing the route, the number of active tunnels
and the traffic relayed so far. It runs on its own daemon thread and only
reads from the server, so it has no effect on forwarding.

Example:
    ui, ui_thread = create_status_ui(server)
    ui_thread.start()
    ...
    ui.running = False
"""

import threading
import time

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from tcproxy.core.lib.proxy_server import ProxyServer
from tcproxy.core.utils.utils import format_address, format_bytes

console = Console()

BANDWIDTH_THRESHOLD = 100  # Bytes per second, smaller changes are not redrawn


class StatusUI:
    """Terminal status panel bound to a running ``ProxyServer``."""

    def __init__(self, server: ProxyServer, refresh_rate: float = 0.5) -> None:
        """Initialize the status panel.

        Args:
            server: Server whose statistics are displayed
            refresh_rate: Seconds between redraws
        """
        self.server = server
        self.running = True
        self._refresh_rate = refresh_rate
        self._last_bandwidth = 0.0
        self._start_time = time.monotonic()
        self._spinner = Spinner("dots", text="")

    def _generate_table(self) -> Table:
        """Generate statistics table."""
        stats = self.server.stats
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)

        bandwidth = stats.get_bandwidth()
        if abs(bandwidth - self._last_bandwidth) > BANDWIDTH_THRESHOLD:
            self._last_bandwidth = bandwidth

        elapsed = time.monotonic() - self._start_time
        table.add_row("Remote", format_address(self.server.config.remote_address))
        table.add_row("Bandwidth", f"{self._spinner.render(elapsed)} {format_bytes(self._last_bandwidth)}/s")
        table.add_row("Active Tunnels", str(self.server.workers.value))
        table.add_row("Client -> Remote", format_bytes(stats.bytes_to_remote))
        table.add_row("Remote -> Client", format_bytes(stats.bytes_to_client))
        whitelist = ", ".join(sorted(self.server.filter.hosts)) or "everyone"
        table.add_row("Allowed", whitelist)
        return table

    def _generate_display(self) -> Panel:
        """Generate the main display panel."""
        address = self.server.address or self.server.config.listen_address
        title = Text(f"TCP Proxy: {format_address(address)}", style="bold cyan")
        return Panel(
            self._generate_table(),
            title=title,
            subtitle="Press Ctrl+C to exit",
            border_style="blue",
            padding=(1, 2),
        )

    def run(self) -> None:
        """Redraw the panel until ``running`` is cleared."""
        with Live(
            self._generate_display(),
            console=console,
            refresh_per_second=4,
            transient=True,
            auto_refresh=False,
        ) as live:
            while self.running:
                live.update(self._generate_display(), refresh=True)
                time.sleep(self._refresh_rate)


def create_status_ui(server: ProxyServer) -> tuple[StatusUI, threading.Thread]:
    """Create the status panel and the daemon thread that runs it."""
    ui = StatusUI(server)
    return ui, threading.Thread(target=ui.run, name="tcproxy-ui", daemon=True)
