"""
Error types for the cooking assistant.

Permission and session-start failures are terminal until someone calls
start() again; recognition errors are transient and retried by the voice
controller; answering-service errors are surfaced to the user as-is.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for cooking assistant errors."""


class SpeechPermissionError(AssistantError):
    """Speech recognition access was not granted."""

    MESSAGES = {
        "denied": "Speech recognition permission denied.",
        "restricted": "Speech recognition is restricted on this device.",
        "not_determined": "Speech recognition permission not determined.",
    }
    DEFAULT_MESSAGE = "Speech recognition permission unavailable."

    def __init__(self, status):
        self.status = status
        key = getattr(status, "value", status)
        super().__init__(self.MESSAGES.get(key, self.DEFAULT_MESSAGE))


class SessionStartError(AssistantError):
    """Capture or recognition could not be started."""


class RecognitionError(AssistantError):
    """Transient recognizer failure during an active session."""


class AnsweringServiceError(AssistantError):
    """The question answering service could not produce an answer."""


class MissingBaseURLError(AnsweringServiceError):
    def __init__(self):
        super().__init__("Missing worker base URL. Set WORKER_BASE_URL to enable Q&A.")


class InvalidResponseError(AnsweringServiceError):
    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__("Invalid response from the Q&A service.")


class AnsweringServerError(AnsweringServiceError):
    """The service answered with an error status."""

    DEFAULT_MESSAGE = "Unable to answer the question."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message or self.DEFAULT_MESSAGE)
