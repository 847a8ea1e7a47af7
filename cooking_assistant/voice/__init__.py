"""
Voice arbitration for hands-free cooking.

Classifies streaming speech recognition results into navigation commands and
questions, and manages listening sessions around speech output.
"""

from cooking_assistant.voice.classifier import classify, extract_command, is_likely_command, is_question_like
from cooking_assistant.voice.controller import VoiceSessionController
from cooking_assistant.voice.debounce import CommandDebouncer
from cooking_assistant.voice.slots import DetectionSlots
from cooking_assistant.voice.source import LineTranscriptSource, TranscriptSource, create_transcript_source
from cooking_assistant.voice.types import (
    CommandDetected,
    CommandKind,
    ControllerState,
    ErrorReported,
    Final,
    ListeningChanged,
    Partial,
    PermissionStatus,
    QueryDetected,
    RecognitionFailed,
    SilenceTimeout,
    StopReason,
    TranscriptUpdated,
)

__all__ = [
    "VoiceSessionController",
    "CommandDebouncer",
    "DetectionSlots",
    "TranscriptSource",
    "LineTranscriptSource",
    "create_transcript_source",
    "classify",
    "extract_command",
    "is_likely_command",
    "is_question_like",
    "CommandKind",
    "ControllerState",
    "StopReason",
    "PermissionStatus",
    "Partial",
    "Final",
    "RecognitionFailed",
    "SilenceTimeout",
    "CommandDetected",
    "QueryDetected",
    "ErrorReported",
    "ListeningChanged",
    "TranscriptUpdated",
]
