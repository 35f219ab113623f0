# src/vertebrae/cli/console.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.state import AppState
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def run_console_loop(
    state: AppState,
    *,
    read: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> None:
    """
    Interactive slash-command loop. /exit or /quit (or EOF / Ctrl+C) ends it.

    read/write are injectable so the loop can be driven from tests.
    """
    logger.info("Console started db=%s", state.store.db_path)
    write("Type /help for commands, /exit to quit.")

    while True:
        try:
            line = read(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            write("")
            break

        if not line:
            continue

        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            response = command_registry.handle(state, line)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Commands start with '/'. Use /help to list available commands."
        write(response)

    logger.info("Console finished.")
