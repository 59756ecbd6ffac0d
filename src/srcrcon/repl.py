"""Interactive REPL using prompt_toolkit."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings

if TYPE_CHECKING:
    from prompt_toolkit.key_binding.key_processor import KeyPressEvent

    from srcrcon.client import RconClient

from srcrcon.config import HISTORY_FILE, ensure_config_dir
from srcrcon.errors import AuthenticationFailed, RconError

log = logging.getLogger(__name__)


def _create_key_bindings() -> KeyBindings:
    """Create custom key bindings for the REPL.

    Ctrl+C and Ctrl+D behavior:
    - If the current line has text, abandon it (show but don't execute) and start fresh
    - If the current line is empty, exit the application
    """
    kb = KeyBindings()

    def _abandon_or_exit(event: KeyPressEvent, exc: type[BaseException]) -> None:
        buffer = event.app.current_buffer
        if buffer.text:
            print()
            buffer.reset()
            event.app.renderer.reset()
        else:
            event.app.exit(exception=exc)

    @kb.add("c-c")
    def _(event: KeyPressEvent) -> None:
        """Handle Ctrl+C: abandon line if non-empty, exit if empty."""
        _abandon_or_exit(event, KeyboardInterrupt)

    @kb.add("c-d")
    def _(event: KeyPressEvent) -> None:
        """Handle Ctrl+D: abandon line if non-empty, exit if empty."""
        _abandon_or_exit(event, EOFError)

    return kb


def run_repl(client: RconClient) -> None:
    """Run the interactive REPL loop.

    Args:
        client: The session to run commands on. It connects and authenticates
            lazily on the first command.
    """
    ensure_config_dir()

    session: PromptSession[str] = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        key_bindings=_create_key_bindings(),
    )

    while True:
        try:
            text = session.prompt(
                HTML("<ansigreen>rcon</ansigreen>> "),
            ).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye.")
            break

        if not text:
            continue

        if text in ("exit", "quit"):
            print("Goodbye.")
            break

        if text == "reconnect":
            _reconnect(client)
            continue

        if not execute_command(client, text):
            break


def execute_command(client: RconClient, text: str) -> bool:
    """Execute one command and print its response.

    Returns False when the shell should stop, which only happens when the
    server rejects the password.
    """
    try:
        response = client.exec_command(text)
    except AuthenticationFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        return False
    except RconError as e:
        log.debug("Command %r failed", text, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return True

    if response:
        print(response.decode("utf-8", errors="replace"))
    return True


def _reconnect(client: RconClient) -> None:
    """Drop the connection so the next command dials and authenticates again."""
    try:
        client.close()
    except RconError as e:
        print(f"Error: {e}", file=sys.stderr)
    print(
        "Disconnected. The next command reconnects to"
        f" {client.host}:{client.port}."
    )
