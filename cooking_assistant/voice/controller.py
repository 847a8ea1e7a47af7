"""
Voice session controller - the listening state machine.

Turns a noisy stream of partial/final recognition results into two disjoint
outputs, navigation commands and free-form queries, while coordinating with
speech output so the microphone is never listening while the device talks.

States:
    IDLE ──start()──> STARTING ──granted──> LISTENING
    STARTING ──denied──> IDLE (error message, no retry)
    LISTENING ──inactivity / error / graceful final──> STOPPING_FOR_RESTART ──> STARTING
    LISTENING ──stop(user_pause)──> USER_PAUSED ──resume_after_user_pause()──> STARTING
    any ──set_tts_active(True)──> SUPPRESSED ──set_tts_active(False)──> IDLE

All state lives on a single actor (see actor.py). Producers and UI code only
post messages; every recognition callback carries the session id captured at
session start and is dropped if that session has since been superseded.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from cooking_assistant.config import VoiceConfig
from cooking_assistant.errors import (
    RecognitionError,
    SessionStartError,
    SpeechPermissionError,
)
from cooking_assistant.voice.actor import SerialExecutor
from cooking_assistant.voice.classifier import classify
from cooking_assistant.voice.debounce import CommandDebouncer
from cooking_assistant.voice.source import TranscriptSource, rms_level
from cooking_assistant.voice.types import (
    RESTART_REASONS,
    CommandDetected,
    CommandKind,
    ControlFlags,
    ControllerState,
    ErrorReported,
    Final,
    ListeningChanged,
    Partial,
    PendingState,
    PermissionStatus,
    QueryDetected,
    RecognitionFailed,
    Session,
    SilenceTimeout,
    StopReason,
    TranscriptEvent,
    TranscriptUpdated,
    VoiceEvent,
)

logger = logging.getLogger(__name__)

Listener = Callable[[VoiceEvent], None]
Scheduler = Callable[[float, Callable[[], None]], Any]

# Debug log throttle for buffer levels (seconds)
_LEVEL_LOG_INTERVAL = 1.0


def _timer_scheduler(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class VoiceSessionController:
    """
    Session/restart controller for hands-free voice control.

    Usage:
        source = LineTranscriptSource(open("script.txt"))
        controller = VoiceSessionController(source)
        controller.subscribe(print)
        controller.start()
        ...
        controller.set_tts_active(True)   # answer is being spoken
        controller.set_tts_active(False)
        controller.start()                # resume is always explicit
    """

    def __init__(
        self,
        source: TranscriptSource,
        config: Optional[VoiceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Optional[Scheduler] = None,
        threaded: bool = True,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the controller.

        Args:
            source: Transcript event source to drive
            config: Timing configuration (inactivity timeout, debounce window, ...)
            clock: Monotonic time source, in seconds
            scheduler: scheduler(delay, fn) used for delayed restarts (threading.Timer by default)
            threaded: Run the actor on its own thread (False runs it inline, for tests)
            log: Logger to use instead of the module logger
        """
        self.config = config or VoiceConfig()
        self._source = source
        self._clock = clock
        self._schedule = scheduler or _timer_scheduler
        self._log = log or logger
        self._actor = SerialExecutor(threaded=threaded, name="voice-controller")

        self._state = ControllerState.IDLE
        self._flags = ControlFlags()
        self._pending = PendingState()
        self._debouncer = CommandDebouncer(self.config.command_debounce_s)
        self._session: Optional[Session] = None
        self._session_counter = 0
        self._start_attempt = 0
        self._restart_generation = 0
        self._graceful_reason: Optional[StopReason] = None

        self._error_message: Optional[str] = None
        self._transcript = ""
        self._last_level_log = 0.0

        self._listeners: list[Listener] = []
        self._listeners_lock = threading.Lock()

    # ── Read-only state ──

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def session_id(self) -> Optional[int]:
        session = self._session
        return session.id if session is not None and session.active else None

    @property
    def is_listening(self) -> bool:
        return self._flags.is_listening

    @property
    def is_user_paused(self) -> bool:
        return self._flags.is_user_paused

    @property
    def is_tts_active(self) -> bool:
        return self._flags.is_tts_active

    @property
    def is_restarting(self) -> bool:
        return self._flags.is_restarting

    @property
    def suppress_commands(self) -> bool:
        return self._flags.suppress_commands

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def transcript(self) -> str:
        return self._transcript

    # ── Subscriptions ──

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for controller events.

        Listeners run on the actor; they must not block. Returns a callable
        that removes the listener.
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: VoiceEvent) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._log.error("Voice event listener error (%s): %s", type(event).__name__, e)

    # ── Control calls (any thread) ──

    def start(self) -> None:
        """Request listening. Ignored while speech output is active or the user paused."""
        self._actor.call(self._handle_start)

    def stop(self, force: bool = True, reason: StopReason | str | None = None) -> None:
        """
        Stop listening.

        force=True tears capture and recognition down before returning
        (unless called from a controller event listener, where it is queued).
        force=False ends the audio path and lets the trailing Final through.
        """
        reason = StopReason(reason) if reason is not None else None
        self._actor.call(self._handle_stop, force, reason, wait=force)

    def set_tts_active(self, active: bool) -> None:
        """Speech output started (True) or finished/cancelled (False)."""
        self._actor.call(self._handle_tts_active, bool(active), wait=active)

    def resume_after_user_pause(self) -> None:
        self._actor.call(self._handle_resume)

    def shutdown(self) -> None:
        """Stop listening and release the actor."""
        self._actor.call(self._handle_stop, True, StopReason.USER, wait=True)
        self._actor.shutdown()

    def flush(self, timeout: Optional[float] = 5.0) -> None:
        """Wait until every message posted so far has been handled."""
        self._actor.flush(timeout=timeout)

    # ── Producer calls (source context) ──

    def deliver(self, session_id: int, event: TranscriptEvent) -> None:
        """Hand a recognition result to the actor."""
        self._actor.submit(self._handle_event, session_id, event)

    def tick(self, session_id: int, buffer=None) -> None:
        """Audio buffer cadence; drives the inactivity watchdog."""
        self._actor.submit(self._handle_tick, session_id, buffer)

    # ── Actor handlers ──

    def _handle_start(self) -> None:
        if self._flags.is_tts_active:
            self._log.debug("Start ignored: speech output active")
            return
        if self._flags.is_user_paused:
            self._log.debug("Start ignored: paused by user")
            return
        if self._flags.is_listening or self._state in (ControllerState.STARTING, ControllerState.LISTENING):
            self._log.debug("Start ignored: already %s", self._state.value)
            return

        self._error_message = None
        self._state = ControllerState.STARTING
        self._start_attempt += 1
        attempt = self._start_attempt
        self._log.debug("Requesting speech permission (attempt %d)", attempt)

        def on_permission(status: PermissionStatus) -> None:
            self._actor.submit(self._handle_permission, attempt, status)

        try:
            self._source.request_permission(on_permission)
        except Exception as e:
            self._fail_start(SessionStartError(f"Permission request failed: {e}"))

    def _handle_permission(self, attempt: int, status: PermissionStatus) -> None:
        if attempt != self._start_attempt or self._state is not ControllerState.STARTING:
            self._log.debug("Dropping stale permission result (attempt %d)", attempt)
            return

        if status is not PermissionStatus.AUTHORIZED:
            self._fail_start(SpeechPermissionError(status))
            return

        self._begin_session()

    def _begin_session(self) -> None:
        self._session_counter += 1
        session = Session(id=self._session_counter, started_at=self._clock())
        self._session = session
        self._pending.reset()
        self._debouncer.reset()
        self._flags.reset_for_session()
        self._graceful_reason = None
        self._transcript = ""

        try:
            self._source.open(session.id, self.deliver, self.tick)
        except Exception as e:
            session.active = False
            self._session = None
            self._release_source()
            error = e if isinstance(e, SessionStartError) else SessionStartError(str(e))
            self._fail_start(error)
            return

        # Only now that capture confirmed it started
        self._flags.is_listening = True
        self._state = ControllerState.LISTENING
        self._log.info("Voice listening started (session %d)", session.id)
        self._emit(ListeningChanged(is_listening=True))

    def _fail_start(self, error: Exception) -> None:
        self._state = ControllerState.IDLE
        self._flags.is_listening = False
        self._error_message = str(error)
        self._log.warning("Voice session could not start: %s", error)
        self._emit(ErrorReported(error=error, message=self._error_message))

    def _handle_stop(self, force: bool, reason: Optional[StopReason]) -> None:
        if reason is StopReason.USER_PAUSE:
            self._cancel_pending_restart()
            self._teardown(reason)
            self._flags.is_user_paused = True
            self._state = ControllerState.USER_PAUSED
            return

        if not force and self._state is ControllerState.LISTENING:
            # Wait for the recognizer's trailing Final, then restart
            self._graceful_reason = reason or StopReason.FINAL
            self._state = ControllerState.STOPPING_FOR_RESTART
            self._log.debug("Ending audio, waiting for final result (%s)", self._graceful_reason.value)
            try:
                self._source.close(force=False)
            except Exception as e:
                self._log.error("Ending audio failed: %s", e)
                self._stop_for_restart(self._graceful_reason)
            return

        # A stop only restarts what was actually listening
        if reason in RESTART_REASONS and self._state in (
            ControllerState.LISTENING,
            ControllerState.STOPPING_FOR_RESTART,
        ):
            self._stop_for_restart(reason)
            return

        self._cancel_pending_restart()
        self._teardown(reason or StopReason.USER)
        self._state = self._idle_state()

    def _handle_tts_active(self, active: bool) -> None:
        if active:
            self._flags.is_tts_active = True
            self._cancel_pending_restart()
            self._teardown(StopReason.TTS)
            if self._state is not ControllerState.USER_PAUSED:
                self._state = ControllerState.SUPPRESSED
            return

        self._flags.is_tts_active = False
        # Resuming is the caller's job (an explicit start())
        if self._state is ControllerState.SUPPRESSED:
            self._state = ControllerState.IDLE

    def _handle_resume(self) -> None:
        if not self._flags.is_user_paused:
            self._log.debug("Resume ignored: not paused")
            return
        self._flags.is_user_paused = False
        if self._state is ControllerState.USER_PAUSED:
            self._state = self._idle_state()
        self._handle_start()

    def _handle_event(self, session_id: int, event: TranscriptEvent) -> None:
        session = self._session
        if session is None or not session.active or session.id != session_id:
            self._log.debug("Dropping %s from stale session %d", type(event).__name__, session_id)
            return

        if isinstance(event, (Partial, Final)):
            self._handle_result(event.text, is_final=isinstance(event, Final))
            if isinstance(event, Final) and self._graceful_reason is not None:
                reason, self._graceful_reason = self._graceful_reason, None
                self._stop_for_restart(reason)
        elif isinstance(event, RecognitionFailed):
            self._handle_recognition_error(RecognitionError(event.cause))
        elif isinstance(event, SilenceTimeout):
            if self._state is ControllerState.LISTENING and self._pending.last_speech_time > 0:
                self._finalize_for_inactivity()
        else:
            self._log.warning("Unknown transcript event: %r", event)

    def _handle_tick(self, session_id: int, buffer) -> None:
        session = self._session
        if session is None or not session.active or session.id != session_id:
            return
        if self._state is not ControllerState.LISTENING:
            return

        now = self._clock()
        if buffer is not None and now - self._last_level_log >= _LEVEL_LOG_INTERVAL:
            self._last_level_log = now
            self._log.debug("Audio buffer level %.4f (session %d)", rms_level(buffer), session_id)

        last_speech = self._pending.last_speech_time
        if last_speech > 0 and now - last_speech >= self.config.inactivity_timeout_s:
            self._log.debug("Inactivity timeout after %.2fs", now - last_speech)
            self._finalize_for_inactivity()

    # ── Transcript processing ──

    def _handle_result(self, text: str, is_final: bool, synthesized: bool = False) -> None:
        session_id = self._session.id if self._session is not None else 0
        now = self._clock()

        if not synthesized:
            self._transcript = text
            self._emit(TranscriptUpdated(text=text, is_final=is_final, session_id=session_id))
            self._pending.last_partial = text
            if text.strip():
                self._pending.last_speech_time = now
                self._pending.last_non_empty = text

        classification = classify(text)
        command = classification.actionable_command

        if command is not None:
            self._pending.last_command_time = now
            self._pending.last_command = command
            self._accept_command(command, now, session_id)
        elif text.strip():
            self._pending.last_non_command_time = now

        if is_final:
            self._handle_final(text, classification.is_question, command, session_id, synthesized)

    def _accept_command(self, command: CommandKind, now: float, session_id: int) -> None:
        if self._flags.suppress_commands:
            self._log.debug("Command %s suppressed after inactivity stop", command.value)
            return
        if not self._debouncer.accept(command, now):
            return

        # A command utterance must not come back as a trailing query
        self._pending.clear_transcript()
        self._log.info("Detected voice command: %s", command.value)
        self._emit(CommandDetected(command=command, session_id=session_id))

    def _handle_final(
        self,
        text: str,
        is_question: bool,
        command: Optional[CommandKind],
        session_id: int,
        synthesized: bool = False,
    ) -> None:
        trimmed = text.strip()
        utterance_had_command = self._pending.last_command is not None

        # A timeout-synthesized final only exists when the latest speech was not a command
        if trimmed and command is None and (is_question or synthesized or not utterance_had_command):
            self._log.info("Detected voice query (question=%s)", is_question)
            self._log.debug("Query text: %s", text)
            self._emit(QueryDetected(text=text, session_id=session_id))
        elif not trimmed:
            self._log.debug("Skipping empty final transcript")

        # Next utterance starts unbiased; the finalized text is consumed
        self._pending.last_command = None
        self._pending.clear_transcript()

    def _finalize_for_inactivity(self) -> None:
        pending = self._pending
        if pending.last_non_command_time > pending.last_command_time:
            text = pending.last_non_empty or pending.last_partial
            if text.strip():
                self._handle_result(text, is_final=True, synthesized=True)

        self._flags.suppress_commands = True
        self._stop_for_restart(StopReason.INACTIVITY_TIMEOUT)

    def _handle_recognition_error(self, error: RecognitionError) -> None:
        if self._flags.is_tts_active or self._flags.is_user_paused:
            # Artifact of an intentional stop
            self._log.debug("Ignoring recognition error during forced stop: %s", error)
            return

        self._log.warning("Recognition error: %s", error)
        self._stop_for_restart(StopReason.RECOGNITION_ERROR)

    # ── Teardown and restart ──

    def _stop_for_restart(self, reason: StopReason) -> None:
        self._state = ControllerState.STOPPING_FOR_RESTART
        self._teardown(reason)

        if reason not in RESTART_REASONS or self._flags.is_tts_active or self._flags.is_user_paused:
            self._state = self._idle_state()
            return

        self._flags.is_restarting = True
        if reason is StopReason.RECOGNITION_ERROR:
            self._restart_generation += 1
            generation = self._restart_generation
            delay = self.config.error_restart_delay_s
            self._log.debug("Restarting in %.2fs after recognition error", delay)
            self._schedule(delay, lambda: self._actor.submit(self._handle_restart_due, generation))
        else:
            self._restart()

    def _handle_restart_due(self, generation: int) -> None:
        if generation != self._restart_generation or self._state is not ControllerState.STOPPING_FOR_RESTART:
            self._log.debug("Delayed restart superseded")
            return
        if self._flags.is_tts_active or self._flags.is_user_paused:
            self._flags.is_restarting = False
            self._state = self._idle_state()
            return
        self._restart()

    def _restart(self) -> None:
        self._flags.is_restarting = False
        self._handle_start()

    def _cancel_pending_restart(self) -> None:
        self._restart_generation += 1
        self._flags.is_restarting = False
        self._graceful_reason = None

    def _idle_state(self) -> ControllerState:
        if self._flags.is_user_paused:
            return ControllerState.USER_PAUSED
        if self._flags.is_tts_active:
            return ControllerState.SUPPRESSED
        return ControllerState.IDLE

    def _teardown(self, reason: StopReason) -> None:
        """Invalidate the session and release capture + recognition."""
        session = self._session
        was_listening = self._flags.is_listening
        if session is not None:
            session.active = False
        self._session = None
        self._flags.is_listening = False

        if session is not None:
            self._release_source()
        if was_listening:
            self._log.info("Voice listening stopped (%s)", reason.value)
            self._emit(ListeningChanged(is_listening=False, reason=reason))

    def _release_source(self) -> None:
        try:
            self._source.close(force=True)
        except Exception as e:
            self._log.error("Releasing transcript source failed: %s", e)
