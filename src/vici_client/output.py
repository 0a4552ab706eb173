"""Structured output for CLI and JSON modes."""

# ruff: noqa: T201 - this module is the output layer; print() is its sole mechanism for producing CLI output.

import json
import sys
from typing import NoReturn

import typer

from vici_client.protocol.message import Message


def render_message(message: Message, indent: int = 0) -> list[str]:
    """Render a message as indented ``key: value`` lines."""
    pad = "  " * indent
    lines: list[str] = []
    for key, value in message.items():
        if isinstance(value, Message):
            lines.append(f"{pad}{key}:")
            lines.extend(render_message(value, indent + 1))
        elif isinstance(value, list):
            lines.append(f"{pad}{key}: [{', '.join(value)}]")
        else:
            lines.append(f"{pad}{key}: {value}")
    return lines


class Output:
    """Handles all CLI output in JSON or human-readable format."""

    def __init__(self, *, json_mode: bool) -> None:
        """Initialize output handler.

        Args:
            json_mode: If True, output JSON envelopes; otherwise human-readable text.

        """
        self._json_mode = json_mode

    def print_error_and_exit(self, code: str, message: str) -> NoReturn:
        """Print an error in JSON or human-readable format and exit with code 1.

        Raises:
            typer.Exit: Always, with code 1.

        """
        if self._json_mode:
            print(json.dumps({"ok": False, "error": code, "message": message}))
        else:
            print(f"Error: {message}", file=sys.stderr)
        raise typer.Exit(code=1)

    # --- Commands ---

    def print_response(self, message: Message) -> None:
        """Print a command response."""
        if self._json_mode:
            print(json.dumps({"ok": True, "data": message.to_dict()}))
        else:
            for line in render_message(message):
                print(line)

    def print_event(self, name: str, message: Message) -> None:
        """Print one event as it arrives (one JSON line per event in JSON mode)."""
        if self._json_mode:
            print(json.dumps({"event": name, "data": message.to_dict()}), flush=True)
        else:
            print(f"{name}:")
            for line in render_message(message, indent=1):
                print(line)
            sys.stdout.flush()

    def print_streamed(self, event: str, messages: list[Message]) -> None:
        """Print the events collected by a streamed command."""
        if self._json_mode:
            print(json.dumps({"ok": True, "data": {"event": event, "events": [m.to_dict() for m in messages]}}))
        else:
            for message in messages:
                self.print_event(event, message)

    # --- Daemon ---

    def print_status(self, *, reachable: bool, version: Message | None) -> None:
        """Print daemon reachability and version information."""
        data = version.to_dict() if version is not None else {}
        if self._json_mode:
            print(json.dumps({"ok": True, "data": {"reachable": reachable, **data}}))
        elif not reachable:
            print("Daemon: unreachable.")
        else:
            details = ", ".join(f"{key} {value}" for key, value in data.items() if isinstance(value, str))
            print(f"Daemon: reachable{f' ({details})' if details else ''}.")
