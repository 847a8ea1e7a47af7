"""
Spoken answers and the speech output gate.

While an answer is being spoken the microphone must not listen, or the
assistant would transcribe itself. Speakers report playback start/finish to a
SpeechOutputGate, which forwards that to the voice controller. Resuming
listening after playback is left to the on_idle callback of the owning UI.
"""

import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from cooking_assistant.config import SpeechConfig

logger = logging.getLogger(__name__)


class SpeechListener(Protocol):
    def speech_started(self) -> None: ...

    def speech_finished(self) -> None: ...

    def speech_cancelled(self) -> None: ...


class SpeechOutputGate:
    """
    Couples speech playback to the voice controller.

    set_active(True) force-stops listening and blocks auto-restart;
    set_active(False) only clears the flag, then calls on_idle.
    """

    def __init__(self, controller, on_idle: Optional[Callable[[], None]] = None):
        self._controller = controller
        self._on_idle = on_idle

    def set_active(self, active: bool) -> None:
        self._controller.set_tts_active(active)
        if not active and self._on_idle is not None:
            try:
                self._on_idle()
            except Exception as e:
                logger.error("Speech idle callback failed: %s", e)

    def speech_started(self) -> None:
        self.set_active(True)

    def speech_finished(self) -> None:
        self.set_active(False)

    def speech_cancelled(self) -> None:
        self.set_active(False)


class AnswerSpeaker(ABC):
    """Base class for answer speakers."""

    name: str = "base"

    def __init__(self):
        self._listener: Optional[SpeechListener] = None

    def set_listener(self, listener: Optional[SpeechListener]) -> None:
        self._listener = listener

    def _notify(self, event: str) -> None:
        if self._listener is None:
            return
        try:
            getattr(self._listener, event)()
        except Exception as e:
            logger.error("Speech listener %s failed: %s", event, e)

    @abstractmethod
    def speak(self, text: str) -> None:
        """Speak text, interrupting anything currently playing. Blank text is ignored."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop playback immediately."""
        pass

    @property
    @abstractmethod
    def is_speaking(self) -> bool:
        pass


class NullSpeaker(AnswerSpeaker):
    """Logs answers instead of playing them; playback completes immediately."""

    name = "null"

    def __init__(self):
        super().__init__()
        self.spoken: list[str] = []

    def speak(self, text: str) -> None:
        if not text.strip():
            return
        logger.info("Speaking answer (null output)")
        self.spoken.append(text)
        self._notify("speech_started")
        self._notify("speech_finished")

    def stop(self) -> None:
        pass

    @property
    def is_speaking(self) -> bool:
        return False


@dataclass
class _Playback:
    cancelled: threading.Event = field(default_factory=threading.Event)
    notify_cancel: bool = True


class CommandSpeaker(AnswerSpeaker):
    """
    Speaks through an external TTS program such as espeak or say.

    Playback runs on a worker thread with an interruptible Popen, so stop()
    can kill the program mid-sentence.
    """

    name = "command"

    def __init__(self, command: str = "espeak", voice: Optional[str] = None, timeout: float = 120.0):
        super().__init__()
        self.command = command
        self.voice = voice
        self.timeout = timeout
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._playback: Optional[_Playback] = None

    def _build_args(self, text: str) -> list[str]:
        args = [self.command]
        if self.voice:
            args += ["-v", self.voice]
        args.append(text)
        return args

    @property
    def is_speaking(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def speak(self, text: str) -> None:
        if not text.strip():
            return

        # Replace current playback without a finished/cancelled round trip
        self._interrupt(notify=False)

        playback = _Playback()
        thread = threading.Thread(target=self._play, args=(text, playback), daemon=True, name="answer-speaker")
        with self._lock:
            self._playback = playback
            self._thread = thread
        logger.info("Speaking answer")
        thread.start()

    def stop(self) -> None:
        self._interrupt(notify=True)

    def _interrupt(self, notify: bool) -> None:
        with self._lock:
            playback, proc, thread = self._playback, self._proc, self._thread
            if playback is None:
                return
            # _play checks the flag under the same lock once its process exists
            playback.notify_cancel = notify
            playback.cancelled.set()
        if proc is not None and proc.poll() is None:
            proc.terminate()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def _play(self, text: str, playback: "_Playback") -> None:
        self._notify("speech_started")
        if playback.cancelled.is_set():
            self._finish(playback)
            return

        try:
            proc = subprocess.Popen(self._build_args(text), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.error("TTS command %r failed to start: %s", self.command, e)
            self._notify("speech_finished")
            return

        with self._lock:
            self._proc = proc
            cancelled = playback.cancelled.is_set()
        try:
            if cancelled and proc.poll() is None:
                proc.terminate()
            proc.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("TTS command timed out after %.0fs", self.timeout)
            proc.terminate()
            proc.wait()
        finally:
            with self._lock:
                if self._proc is proc:
                    self._proc = None

        self._finish(playback)

    def _finish(self, playback: "_Playback") -> None:
        if playback.cancelled.is_set():
            if playback.notify_cancel:
                self._notify("speech_cancelled")
        else:
            self._notify("speech_finished")


def create_speaker(config: Optional[SpeechConfig] = None) -> AnswerSpeaker:
    """
    Factory function to create an answer speaker.

    Args:
        config: Speech configuration ("command" or "null" backend)

    Returns:
        AnswerSpeaker instance
    """
    config = config or SpeechConfig()
    if config.backend == "command":
        return CommandSpeaker(command=config.command, voice=config.voice)
    elif config.backend == "null":
        return NullSpeaker()
    else:
        raise ValueError(f"Unknown speech backend: {config.backend}")
