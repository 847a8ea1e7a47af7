"""Command debouncing - suppresses a command repeated within a short window."""

import logging
from typing import Optional

from cooking_assistant.voice.types import CommandKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_S = 0.75


class CommandDebouncer:
    """
    Accepts a command unless the same kind was accepted less than
    ``window_s`` seconds ago.

    A growing partial hypothesis ("next", "next step", "next step please")
    re-reports the same command many times; only the first one counts.
    """

    def __init__(self, window_s: float = DEFAULT_DEBOUNCE_S):
        self.window_s = window_s
        self._last_command: Optional[CommandKind] = None
        self._last_accepted_at = 0.0

    @property
    def last_command(self) -> Optional[CommandKind]:
        return self._last_command

    @property
    def last_accepted_at(self) -> float:
        return self._last_accepted_at

    def should_accept(self, command: CommandKind, now: float) -> bool:
        """Check without recording."""
        if command is not self._last_command:
            return True
        return now - self._last_accepted_at >= self.window_s

    def accept(self, command: CommandKind, now: float) -> bool:
        """
        Record the command if it passes the debounce check.

        Returns:
            True if accepted, False if suppressed as a bounce
        """
        if not self.should_accept(command, now):
            logger.debug(
                "Debounced %s (%.3fs since last)", command.value, now - self._last_accepted_at
            )
            return False

        self._last_command = command
        self._last_accepted_at = now
        return True

    def reset(self) -> None:
        self._last_command = None
        self._last_accepted_at = 0.0
