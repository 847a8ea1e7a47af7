"""
Transcript event sources.

A source wraps whatever produces recognition results (a platform speech
recognizer, a streaming STT backend, a script) behind one narrow interface.
Sources run in their own producer context and hand every result to the
controller tagged with the session id that was active when open() was called.
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, TextIO, Union

import numpy as np

from cooking_assistant.voice.types import (
    Final,
    Partial,
    PermissionStatus,
    RecognitionFailed,
    SilenceTimeout,
    TranscriptEvent,
)

logger = logging.getLogger(__name__)

DeliverFn = Callable[[int, TranscriptEvent], None]
TickFn = Callable[..., None]  # tick(session_id, buffer=None)


def rms_level(buffer: np.ndarray) -> float:
    """RMS amplitude of an audio buffer, normalized to 0..1 for int16 input."""
    if buffer is None or len(buffer) == 0:
        return 0.0
    if buffer.dtype == np.int16:
        samples = buffer.astype(np.float32) / 32768.0
    else:
        samples = buffer.astype(np.float32)
    return float(np.sqrt(np.mean(samples**2)))


class TranscriptSource(ABC):
    """Abstract base class for transcript sources."""

    name: str = "base"

    def request_permission(self, callback: Callable[[PermissionStatus], None]) -> None:
        """
        Ask for speech recognition access.

        The callback may be invoked synchronously or later from another thread.
        Sources without a permission model grant immediately.
        """
        callback(PermissionStatus.AUTHORIZED)

    @abstractmethod
    def open(self, session_id: int, deliver: DeliverFn, tick: TickFn) -> None:
        """
        Start capture and recognition for a session.

        Args:
            session_id: Identifier to tag every delivered event with
            deliver: Called with (session_id, event) for each recognition result
            tick: Called with (session_id, buffer=None) on the audio buffer cadence

        Raises:
            SessionStartError: If capture or recognition cannot be started
        """
        pass

    @abstractmethod
    def close(self, force: bool = True) -> None:
        """
        Stop the session.

        force=True cancels recognition and releases every resource before
        returning. force=False only ends the audio path; the recognizer may
        still deliver a trailing Final, after which close(force=True) follows.
        """
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        pass


# === Line-based source (scripts, stdin) ===


@dataclass(frozen=True)
class Wait:
    """Script pause; the source keeps ticking while it waits."""

    seconds: float


ScriptStep = Union[Partial, Final, RecognitionFailed, SilenceTimeout, Wait]

_EOF = object()


def parse_line(line: str) -> Optional[ScriptStep]:
    """
    Parse one script line.

        partial: next step     -> Partial("next step")
        final: how much salt?  -> Final("how much salt?")
        error: audio glitch    -> RecognitionFailed("audio glitch")
        silence                -> SilenceTimeout()
        wait: 1.5              -> Wait(1.5)
        go back please         -> Final("go back please")

    Blank lines and '#' comments return None.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    if stripped.lower() == "silence":
        return SilenceTimeout()

    prefix, sep, rest = stripped.partition(":")
    if sep:
        key = prefix.strip().lower()
        value = rest.strip()
        if key == "partial":
            return Partial(value)
        if key == "final":
            return Final(value)
        if key == "error":
            return RecognitionFailed(value or "recognition error")
        if key == "wait":
            try:
                return Wait(float(value))
            except ValueError:
                raise ValueError(f"Invalid wait duration: {value!r}") from None

    return Final(stripped)


class LineTranscriptSource(TranscriptSource):
    """
    Replays transcript events from a text stream.

    The stream is read lazily by a reader thread that lives across sessions,
    so a restarted session continues where the previous one stopped. While a
    session is open, a producer thread delivers events and ticks at
    ``tick_interval`` whenever no event is pending.
    """

    name = "lines"

    def __init__(
        self,
        stream: TextIO,
        tick_interval: float = 0.1,
        permission: PermissionStatus = PermissionStatus.AUTHORIZED,
    ):
        self._stream = stream
        self.tick_interval = tick_interval
        self.permission = permission

        self._steps: queue.Queue = queue.Queue()
        self._carry: Optional[ScriptStep] = None
        self._reader: Optional[threading.Thread] = None
        self.exhausted = threading.Event()

        self._lock = threading.Lock()
        self._producer: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._end_audio = threading.Event()
        self._session_id: Optional[int] = None

    def request_permission(self, callback: Callable[[PermissionStatus], None]) -> None:
        callback(self.permission)

    @property
    def is_running(self) -> bool:
        return self._producer is not None and self._producer.is_alive()

    def open(self, session_id: int, deliver: DeliverFn, tick: TickFn) -> None:
        self._ensure_reader()
        with self._lock:
            if self._producer is not None:
                self.close(force=True)
            self._stop = threading.Event()
            self._end_audio = threading.Event()
            self._session_id = session_id
            self._producer = threading.Thread(
                target=self._produce,
                args=(session_id, deliver, tick, self._stop, self._end_audio),
                daemon=True,
                name=f"transcript-source-{session_id}",
            )
            self._producer.start()
        logger.debug("Line source opened for session %d", session_id)

    def close(self, force: bool = True) -> None:
        producer = self._producer
        if producer is None:
            return

        if not force:
            self._end_audio.set()
            return

        self._stop.set()
        try:
            if producer is not threading.current_thread():
                producer.join(timeout=2.0)
                if producer.is_alive():
                    logger.warning("Line source producer did not stop within 2s")
        finally:
            self._producer = None
            logger.debug("Line source closed for session %s", self._session_id)
            self._session_id = None

    def _ensure_reader(self) -> None:
        if self._reader is not None:
            return
        self._reader = threading.Thread(target=self._read_stream, daemon=True, name="transcript-reader")
        self._reader.start()

    def _read_stream(self) -> None:
        try:
            for line in self._stream:
                try:
                    step = parse_line(line)
                except ValueError as e:
                    logger.warning("Skipping script line: %s", e)
                    continue
                if step is not None:
                    self._steps.put(step)
        except Exception:
            logger.exception("Transcript stream read failed")
        finally:
            self._steps.put(_EOF)

    def _next_step(self):
        if self._carry is not None:
            step, self._carry = self._carry, None
            return step
        return self._steps.get(timeout=self.tick_interval)

    def _produce(
        self,
        session_id: int,
        deliver: DeliverFn,
        tick: TickFn,
        stop: threading.Event,
        end_audio: threading.Event,
    ) -> None:
        last_partial = ""
        while not stop.is_set():
            if end_audio.is_set():
                # Audio ended: the recognizer settles on its last hypothesis
                deliver(session_id, Final(last_partial))
                return

            try:
                step = self._next_step()
            except queue.Empty:
                tick(session_id)
                continue

            if step is _EOF:
                self._steps.put(_EOF)
                self.exhausted.set()
                if stop.wait(self.tick_interval):
                    return
                tick(session_id)
                continue

            if stop.is_set() or end_audio.is_set():
                self._carry = step
                continue

            if isinstance(step, Wait):
                remaining = step.seconds
                while remaining > 0 and not stop.is_set() and not end_audio.is_set():
                    interval = min(self.tick_interval, remaining)
                    if stop.wait(interval):
                        return
                    remaining -= interval
                    tick(session_id)
                continue

            if isinstance(step, Partial):
                last_partial = step.text
            elif isinstance(step, Final):
                last_partial = ""
            deliver(session_id, step)


def create_transcript_source(backend: str = "lines", **kwargs) -> TranscriptSource:
    """
    Factory function to create a transcript source.

    Args:
        backend: "lines"
        **kwargs: Backend-specific options

    Returns:
        TranscriptSource instance
    """
    if backend == "lines":
        return LineTranscriptSource(**kwargs)
    else:
        raise ValueError(f"Unknown transcript source backend: {backend}")
