"""Command/query sink: two one-shot slots filled by controller events."""

import threading
from typing import Callable, Optional

from cooking_assistant.voice.types import CommandDetected, CommandKind, QueryDetected, VoiceEvent


class DetectionSlots:
    """
    Holds the latest detected command and query until the consumer clears them.

    Slots are only written by CommandDetected/QueryDetected events, so a
    handled value is never re-delivered by unrelated state changes.
    """

    def __init__(self, on_change: Optional[Callable[["DetectionSlots"], None]] = None):
        self._lock = threading.Lock()
        self._command: Optional[CommandKind] = None
        self._query: Optional[str] = None
        self._on_change = on_change

    def __call__(self, event: VoiceEvent) -> None:
        """Controller listener entry point."""
        if isinstance(event, CommandDetected):
            with self._lock:
                self._command = event.command
        elif isinstance(event, QueryDetected):
            with self._lock:
                self._query = event.text
        else:
            return
        if self._on_change is not None:
            self._on_change(self)

    @property
    def detected_command(self) -> Optional[CommandKind]:
        return self._command

    @property
    def detected_query(self) -> Optional[str]:
        return self._query

    def clear_command(self) -> None:
        with self._lock:
            self._command = None

    def clear_query(self) -> None:
        with self._lock:
            self._query = None

    def take_command(self) -> Optional[CommandKind]:
        """Return the pending command and clear the slot."""
        with self._lock:
            command, self._command = self._command, None
        return command

    def take_query(self) -> Optional[str]:
        """Return the pending query and clear the slot."""
        with self._lock:
            query, self._query = self._query, None
        return query
