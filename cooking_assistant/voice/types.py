"""
Data types shared by the voice arbitration layer.

Transcript events flow in from a TranscriptSource, controller events flow out
to subscribers. Everything here is plain data; behaviour lives in
classifier.py, debounce.py and controller.py.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class CommandKind(Enum):
    """Navigation commands recognised in speech."""

    NEXT = "next"
    PREVIOUS = "previous"
    REPEAT = "repeat"


class ControllerState(Enum):
    """Session controller states."""

    IDLE = "idle"  # Not listening, no session
    STARTING = "starting"  # Permission request in flight
    LISTENING = "listening"  # Capture + recognition active
    STOPPING_FOR_RESTART = "stopping_for_restart"  # Stop requested, restart may follow
    USER_PAUSED = "user_paused"  # Explicit pause, no auto-restart
    SUPPRESSED = "suppressed"  # Speech output playing, no auto-restart


class StopReason(str, Enum):
    """Why a listening session ended."""

    INACTIVITY_TIMEOUT = "inactivity_timeout"
    FINAL = "final"
    RECOGNITION_ERROR = "recognition_error"
    TTS = "tts"
    USER_PAUSE = "user_pause"
    USER = "user"
    SESSION_ERROR = "session_error"


# Only these reasons may trigger an automatic restart
RESTART_REASONS = frozenset({
    StopReason.INACTIVITY_TIMEOUT,
    StopReason.FINAL,
    StopReason.RECOGNITION_ERROR,
})


class PermissionStatus(Enum):
    """Result of asking the platform for speech recognition access."""

    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


# === Transcript events (source -> controller) ===


@dataclass(frozen=True)
class Partial:
    """In-progress, revisable hypothesis for the current utterance."""

    text: str


@dataclass(frozen=True)
class Final:
    """Hypothesis the recognizer will not revise further."""

    text: str


@dataclass(frozen=True)
class RecognitionFailed:
    """Recognizer reported an error."""

    cause: str


@dataclass(frozen=True)
class SilenceTimeout:
    """Source-detected silence; finalizes the pending utterance."""


TranscriptEvent = Union[Partial, Final, RecognitionFailed, SilenceTimeout]


# === Controller events (controller -> subscribers) ===


@dataclass(frozen=True)
class CommandDetected:
    command: CommandKind
    session_id: int


@dataclass(frozen=True)
class QueryDetected:
    text: str
    session_id: int


@dataclass(frozen=True)
class ErrorReported:
    error: Exception
    message: str


@dataclass(frozen=True)
class ListeningChanged:
    is_listening: bool
    reason: Optional[StopReason] = None


@dataclass(frozen=True)
class TranscriptUpdated:
    text: str
    is_final: bool
    session_id: int


VoiceEvent = Union[CommandDetected, QueryDetected, ErrorReported, ListeningChanged, TranscriptUpdated]


# === Controller state records ===


@dataclass
class Session:
    """One contiguous listening activation."""

    id: int
    started_at: float
    active: bool = True


@dataclass
class PendingState:
    """Per-session transcript bookkeeping, reset at every session start."""

    last_partial: str = ""
    last_non_empty: str = ""
    last_speech_time: float = 0.0
    last_command_time: float = 0.0
    last_non_command_time: float = 0.0
    # Command detected during the current utterance; cleared after each Final
    last_command: Optional[CommandKind] = None

    def reset(self) -> None:
        self.last_partial = ""
        self.last_non_empty = ""
        self.last_speech_time = 0.0
        self.last_command_time = 0.0
        self.last_non_command_time = 0.0
        self.last_command = None

    def clear_transcript(self) -> None:
        """Forget the pending utterance so it cannot be re-emitted as a query."""
        self.last_partial = ""
        self.last_non_empty = ""
        self.last_non_command_time = 0.0


@dataclass
class ControlFlags:
    is_listening: bool = False
    is_user_paused: bool = False
    is_tts_active: bool = False
    is_restarting: bool = False
    suppress_commands: bool = False

    def reset_for_session(self) -> None:
        """Reset everything except the user-pause and TTS flags."""
        self.is_listening = False
        self.is_restarting = False
        self.suppress_commands = False


@dataclass
class Classification:
    """Result of classifying one transcript fragment."""

    text: str
    is_question: bool
    is_command_like: bool
    command: Optional[CommandKind] = None
    tokens: list[str] = field(default_factory=list)

    @property
    def actionable_command(self) -> Optional[CommandKind]:
        """Command to act on, only for command-like fragments that are not questions."""
        if self.is_command_like and not self.is_question:
            return self.command
        return None
