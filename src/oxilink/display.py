"""
Display manager for Rich-based REPL output and live updates.

Implements the user feedback surface of the core: status and error
messages, and the latest heart rate / SpO2 reading, optionally shown in a
live-refreshing table.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .models import Reading, Severity

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._latest: Optional[Reading] = None
        self._latest_at: Optional[datetime] = None

    @property
    def latest(self) -> Optional[Reading]:
        return self._latest

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]OxiLink - Nonin Pulse Oximeter[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    # ========== Core feedback surface ==========

    def notify_user(self, message: str, severity: Severity) -> None:
        """Show a status or error message."""
        if severity is Severity.ERROR:
            self.print_error(message)
        else:
            self.print_info(message)

    def display_reading(self, reading: Reading, at: datetime) -> None:
        """Show the latest reading (refreshes the live table if enabled)."""
        self._latest = reading
        self._latest_at = at
        if not self.live_enabled or self._live is None:
            return
        try:
            self._live.update(self._create_reading_table())
        except Exception as e:
            logger.error(f"Live update error: {e}")

    # ========== Messages ==========

    def print_error(self, message: str) -> None:
        """Print red error message."""
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message."""
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_reading(self) -> None:
        """Display the latest reading once."""
        self.console.print(self._create_reading_table())

    def print_devices(self, devices: List[Any]) -> None:
        """Display scanned devices with their selection index.

        Args:
            devices: List of DeviceInfo
        """
        if not devices:
            self.print_info("No supported oximeters found")
            return
        table = Table(title="Oximeters", show_header=True)
        table.add_column("#", style="magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Address", style="yellow")
        for index, device in enumerate(devices, start=1):
            table.add_row(str(index), device.name, device.address)
        self.console.print(table)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    # ========== Live display ==========

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live = Live(
            self._create_reading_table(), console=self.console, refresh_per_second=2
        )
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    def _create_reading_table(self) -> Table:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        reading = self._latest
        table.add_row("Time", self.format_time(self._latest_at))
        table.add_row(
            "Heart rate", self.format_heart_rate(reading.heart_rate if reading else None)
        )
        table.add_row("SpO2", self.format_spo2(reading.spo2 if reading else None))
        return table

    @staticmethod
    def format_time(at: Optional[datetime]) -> str:
        """Format the time of a reading as hh:mm:ss."""
        if at is None:
            return "--:--:--"
        return at.strftime("%I:%M:%S")

    @staticmethod
    def format_heart_rate(bpm: Optional[int]) -> str:
        if bpm is None:
            return "-"
        if bpm == 0:
            return "0 bpm (no signal)"
        return f"{bpm} bpm"

    @staticmethod
    def format_spo2(percent: Optional[int]) -> str:
        if percent is None:
            return "-"
        if percent == 0:
            return "0 % (no signal)"
        return f"{percent} %"
