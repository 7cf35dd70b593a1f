"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="scan",
        aliases=["sc"],
        description="Scan for Nonin oximeters",
        usage="scan",
        handler="cmd_scan",
    ),
    Command(
        name="select",
        aliases=["sel"],
        description="Select a scanned oximeter by number or address",
        usage="select <#|address>",
        handler="cmd_select",
    ),
    Command(
        name="connect",
        aliases=["c"],
        description="Connect and subscribe to oximetry values",
        usage="connect",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc", "reset"],
        description="Unsubscribe and disconnect from device",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="record",
        aliases=["rec"],
        description="Record readings to a file once per second",
        usage="record [file]",
        handler="cmd_record",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop recording",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show latest reading",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="info",
        aliases=["i"],
        description="Show session and debug information",
        usage="info",
        handler="cmd_info",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for command names and aliases."""

    def __init__(self) -> None:
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Yields:
            Completion objects for matching commands
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text or len(parts) > 1 or text.endswith(" "):
            return

        partial_cmd = parts[0].lower()
        all_names = self._command_names | self._command_aliases

        for name in sorted(all_names):
            if name.startswith(partial_cmd):
                completion = name[len(partial_cmd) :]
                yield Completion(
                    completion,
                    start_position=0,
                    display=f"({name})",
                )
