"""
Main REPL application for the Nonin pulse oximeter.

Interactive command loop with async support, auto-completion,
live reading display and recording.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .controller import LifecycleState, OximeterController
from .core import DEFAULT_RECORD_FILE
from .display import DisplayManager
from .errors import OxiLinkError
from .scanner import (
    DeviceInfo,
    clear_selected_device,
    load_selected_device,
    save_selected_device,
    scan_for_oximeters,
)

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )


class OxiLinkREPL:
    """Interactive REPL for the pulse oximeter."""

    def __init__(self, device: Optional[DeviceInfo] = None) -> None:
        """Initialize REPL with controller and display manager.

        Args:
            device: Preselected device (defaults to the cached selection)
        """
        self.display = DisplayManager()
        self.controller = OximeterController(self.display)
        self.selected: Optional[DeviceInfo] = device or load_selected_device()
        self._scanned: List[DeviceInfo] = []
        self.running = False

        # Create prompt session with auto-completion
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()
        if self.selected:
            self.display.print_info(
                f"Selected {self.selected.name or 'device'} ({self.selected.address}). "
                "Use 'connect' to start."
            )
        else:
            self.display.print_info("Use 'scan' then 'select' to pick an oximeter.")

        try:
            while self.running:
                try:
                    text = await self.session.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())
                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue
        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection state."""
        if self.controller.is_active and self.controller.session:
            label = (
                self.selected.name if self.selected else None
            ) or self.controller.session.device_id
            if self.controller.recorder.is_recording:
                label += " REC"
            return FormattedText([("class:prompt", f"[{label}] > ")])
        return FormattedText([("class:prompt", "[disconnected] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except OxiLinkError:
            # Already reported through the display
            logger.debug("Command failed", exc_info=True)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def pick_save_destination(self) -> Optional[Path]:
        """Ask the user where to record, empty input keeps the default."""
        try:
            answer = await self.session.prompt_async(
                f"Save readings to [{DEFAULT_RECORD_FILE}]: "
            )
        except (KeyboardInterrupt, EOFError):
            return None
        return Path(answer.strip() or DEFAULT_RECORD_FILE)

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """Scan for supported oximeters."""
        self.display.print_info("Scanning for Nonin oximeters...")
        self._scanned = await scan_for_oximeters()
        self.display.print_devices(self._scanned)
        if len(self._scanned) == 1:
            await self.cmd_select(["1"])

    async def cmd_select(self, args: list) -> None:
        """Select the device to connect to."""
        if not args:
            self.display.print_error("Usage: select <#|address>")
            return

        choice = args[0]
        device: Optional[DeviceInfo] = None
        if choice.isdigit() and 1 <= int(choice) <= len(self._scanned):
            device = self._scanned[int(choice) - 1]
        else:
            device = next(
                (d for d in self._scanned if d.address.lower() == choice.lower()),
                DeviceInfo(address=choice, name=""),
            )

        self.selected = device
        save_selected_device(device)
        self.display.print_info(f"Selected {device.name or 'device'} ({device.address})")

    async def cmd_connect(self, args: list) -> None:
        """Connect to the selected oximeter."""
        device_id = self.selected.address if self.selected else None
        self.display.print_info("Connecting...")
        await self.controller.connect(device_id)

    async def cmd_disconnect(self, args: list) -> None:
        """Unsubscribe and disconnect."""
        if self.controller.state is LifecycleState.IDLE:
            self.display.print_info("Not connected")
            return
        if self.display.live_enabled:
            self.display.stop_live()
        await self.controller.teardown()
        self.display.print_info("Disconnected")

    async def cmd_record(self, args: list) -> None:
        """Start recording readings."""
        if args:
            path = Path(args[0])

            async def pick() -> Optional[Path]:
                return path

            await self.controller.start_recording(pick)
        else:
            await self.controller.start_recording(self.pick_save_destination)

    async def cmd_stop(self, args: list) -> None:
        """Stop recording."""
        if not self.controller.recorder.is_recording:
            self.display.print_info("Not recording")
            return
        await self.controller.stop_recording()

    async def cmd_status(self, args: list) -> None:
        """Show the latest reading."""
        self.display.print_reading()

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        if not self.display.toggle_live():
            self.display.print_info("Live display disabled")

    async def cmd_info(self, args: list) -> None:
        """Show session and debug information."""
        console = self.display.console
        session = self.controller.session

        console.print("[bold cyan]Session[/bold cyan]")
        console.print(f"  State: {self.controller.state.value}")
        console.print(f"  Subscription: {self.controller.subscription_state.value}")
        if self.selected:
            console.print(f"  Selected: {self.selected.name} ({self.selected.address})")
        if session:
            console.print(f"  Service: {session.service.name}")
            console.print(f"  Characteristic: {session.characteristic.name}")
            console.print(f"  Connected at: {session.connected_at:%H:%M:%S}")
            console.print(f"  Dropped payloads: {session.subscriptions.dropped}")

        console.print()
        console.print("[bold cyan]Recording[/bold cyan]")
        recorder = self.controller.recorder
        console.print(f"  Recording: {recorder.is_recording}")
        if recorder.is_recording:
            console.print(f"  File: {recorder.path}")
            console.print(f"  Lines written: {recorder.lines_written}")
        if recorder.failure:
            console.print(f"  Last failure: {recorder.failure}")
        console.print(f"  Live enabled: {self.display.live_enabled}")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        await self.controller.stop_recording()
        if self.controller.state is not LifecycleState.IDLE:
            self.display.print_info("Disconnecting...")
            try:
                await self.controller.teardown()
            except OxiLinkError:
                # Reported by the controller
                pass

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_scan() -> int:
    display = DisplayManager()
    display.print_info("Scanning for Nonin oximeters...")
    devices = await scan_for_oximeters()
    display.print_devices(devices)
    if len(devices) == 1:
        save_selected_device(devices[0])
    return 0 if devices else 1


async def run_monitor(device_id: Optional[str], record: Optional[Path]) -> int:
    """Connect, stream readings until interrupted, optionally recording."""
    display = DisplayManager()
    controller = OximeterController(display)

    try:
        await controller.connect(device_id)
    except OxiLinkError:
        return 1

    try:
        if record is not None:

            async def pick() -> Optional[Path]:
                return record

            await controller.start_recording(pick)

        display.start_live()
        while controller.is_active:
            await asyncio.sleep(0.5)
        return 0 if controller.recorder.failure is None else 1
    except OxiLinkError:
        return 1
    finally:
        display.stop_live()
        await controller.stop_recording()
        if controller.state is not LifecycleState.IDLE:
            try:
                await controller.teardown()
            except OxiLinkError:
                # Reported by the controller
                pass


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Nonin Pulse Oximeter BLE Client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  oxilink                              # Start interactive REPL
  oxilink --scan                       # List nearby oximeters
  oxilink --monitor                    # Stream readings from the cached device
  oxilink --monitor --record out.txt   # Stream and record once per second
  oxilink --device AA:BB:... --monitor # Stream from a given device
  oxilink --clear-cache                # Forget the selected device
        """,
    )
    parser.add_argument("--device", help="Device address (defaults to the cached one)")
    parser.add_argument("--scan", action="store_true", help="Scan for oximeters")
    parser.add_argument(
        "--monitor", action="store_true", help="Stream readings until Ctrl+C"
    )
    parser.add_argument(
        "--record", type=Path, metavar="FILE", help="Record readings while monitoring"
    )
    parser.add_argument(
        "--clear-cache", action="store_true", help="Forget the selected device"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()
    configure_logging(args.verbose)

    commands = [name for name in ("scan", "monitor", "clear_cache") if getattr(args, name)]
    if len(commands) > 1:
        print("Error: Only one command can be specified at a time", file=sys.stderr)
        sys.exit(1)
    if args.record and not args.monitor:
        print("Error: --record requires --monitor", file=sys.stderr)
        sys.exit(1)

    device = DeviceInfo(address=args.device, name="") if args.device else None

    try:
        if args.clear_cache:
            clear_selected_device()
            DisplayManager().print_info("Cleared cached device")
        elif args.scan:
            sys.exit(asyncio.run(run_scan()))
        elif args.monitor:
            if device is None:
                device = load_selected_device()
            device_id = device.address if device else None
            sys.exit(asyncio.run(run_monitor(device_id, args.record)))
        else:
            asyncio.run(OxiLinkREPL(device).run())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
