"""
Tests for the voice session controller.

The controller runs inline (threaded=False) with a fake clock, a recording
scheduler and a scripted transcript source, so every call below has been
fully processed when it returns.
"""

import numpy as np
import pytest

from cooking_assistant.config import VoiceConfig
from cooking_assistant.voice.source import TranscriptSource
from cooking_assistant.voice.types import (
    CommandDetected,
    ErrorReported,
    Final,
    ListeningChanged,
    Partial,
    PermissionStatus,
    QueryDetected,
    RecognitionFailed,
    SilenceTimeout,
    TranscriptUpdated,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def __call__(self, delay, fn):
        self.calls.append((delay, fn))

    def run_all(self):
        calls, self.calls = self.calls, []
        for _, fn in calls:
            fn()


class FakeSource(TranscriptSource):
    name = "fake"

    def __init__(self, permission=PermissionStatus.AUTHORIZED, open_error=None):
        self.permission = permission
        self.open_error = open_error
        self.opened = []
        self.closed = []
        self.session_id = None
        self._deliver = None
        self._tick = None
        self._running = False

    def request_permission(self, callback):
        callback(self.permission)

    def open(self, session_id, deliver, tick):
        if self.open_error is not None:
            raise self.open_error
        self.session_id = session_id
        self._deliver = deliver
        self._tick = tick
        self.opened.append(session_id)
        self._running = True

    def close(self, force=True):
        self.closed.append(force)
        if force:
            self._running = False

    @property
    def is_running(self):
        return self._running

    # Helpers driving the current session

    def send(self, event, session_id=None):
        self._deliver(self.session_id if session_id is None else session_id, event)

    def partial(self, text):
        self.send(Partial(text))

    def final(self, text):
        self.send(Final(text))

    def tick(self, buffer=None):
        self._tick(self.session_id, buffer)


def _make(source=None, **config):
    from cooking_assistant.voice.controller import VoiceSessionController

    source = source or FakeSource()
    clock = FakeClock()
    scheduler = RecordingScheduler()
    controller = VoiceSessionController(
        source,
        config=VoiceConfig(**config),
        clock=clock,
        scheduler=scheduler,
        threaded=False,
    )
    events = []
    controller.subscribe(events.append)
    return controller, source, clock, scheduler, events


def _of(events, kind):
    return [e for e in events if isinstance(e, kind)]


@pytest.fixture
def rig():
    controller, source, clock, scheduler, events = _make(inactivity_timeout_s=5.0, command_debounce_s=0.75)
    controller.start()
    return controller, source, clock, scheduler, events


class TestStart:
    """Test session start and permission handling."""

    def test_start_listens(self, rig):
        from cooking_assistant.voice.types import ControllerState

        controller, source, _, _, events = rig
        assert controller.is_listening
        assert controller.state is ControllerState.LISTENING
        assert controller.session_id == 1
        assert source.opened == [1]
        assert _of(events, ListeningChanged) == [ListeningChanged(is_listening=True)]

    def test_start_twice_is_ignored(self, rig):
        controller, source, _, _, _ = rig
        controller.start()
        assert source.opened == [1]

    def test_permission_denied(self):
        from cooking_assistant.errors import SpeechPermissionError
        from cooking_assistant.voice.types import ControllerState

        controller, source, _, _, events = _make(FakeSource(permission=PermissionStatus.DENIED))
        controller.start()

        assert not controller.is_listening
        assert controller.state is ControllerState.IDLE
        assert controller.error_message == "Speech recognition permission denied."
        assert source.opened == []
        errors = _of(events, ErrorReported)
        assert len(errors) == 1
        assert isinstance(errors[0].error, SpeechPermissionError)

    @pytest.mark.parametrize(
        "status,message",
        [
            (PermissionStatus.RESTRICTED, "Speech recognition is restricted on this device."),
            (PermissionStatus.NOT_DETERMINED, "Speech recognition permission not determined."),
        ],
    )
    def test_permission_messages(self, status, message):
        controller, _, _, _, _ = _make(FakeSource(permission=status))
        controller.start()
        assert controller.error_message == message

    def test_start_failure_releases_source(self):
        from cooking_assistant.errors import SessionStartError
        from cooking_assistant.voice.types import ControllerState

        source = FakeSource(open_error=RuntimeError("audio engine unavailable"))
        controller, _, _, scheduler, events = _make(source)
        controller.start()

        assert not controller.is_listening
        assert controller.state is ControllerState.IDLE
        assert controller.error_message == "audio engine unavailable"
        assert source.closed == [True]
        assert isinstance(_of(events, ErrorReported)[0].error, SessionStartError)
        # No automatic retry
        assert scheduler.calls == []

    def test_start_clears_error(self):
        source = FakeSource(permission=PermissionStatus.DENIED)
        controller, _, _, _, _ = _make(source)
        controller.start()
        assert controller.error_message is not None

        source.permission = PermissionStatus.AUTHORIZED
        controller.start()
        assert controller.error_message is None
        assert controller.is_listening


class TestCommands:
    """Test command detection and debouncing."""

    def test_repeated_partial_debounced(self, rig):
        from cooking_assistant.voice.types import CommandKind

        _, source, clock, _, events = rig
        source.partial("next")
        clock.advance(0.3)
        source.partial("next")

        commands = _of(events, CommandDetected)
        assert [c.command for c in commands] == [CommandKind.NEXT]
        assert commands[0].session_id == 1

    def test_same_command_after_window(self, rig):
        _, source, clock, _, events = rig
        source.final("next")
        clock.advance(1.0)
        source.final("next")
        assert len(_of(events, CommandDetected)) == 2

    def test_partial_then_final_one_command(self, rig):
        from cooking_assistant.voice.types import CommandKind

        _, source, clock, _, events = rig
        source.partial("go back")
        clock.advance(0.2)
        source.final("go back please")

        assert [c.command for c in _of(events, CommandDetected)] == [CommandKind.PREVIOUS]
        assert _of(events, QueryDetected) == []

    def test_question_with_keyword_not_a_command(self, rig):
        _, source, _, _, events = rig
        source.partial("what's next after I add the broth")
        assert _of(events, CommandDetected) == []

    def test_transcript_updates(self, rig):
        controller, source, _, _, events = rig
        source.partial("how many")
        updates = _of(events, TranscriptUpdated)
        assert updates == [TranscriptUpdated(text="how many", is_final=False, session_id=1)]
        assert controller.transcript == "how many"


class TestQueries:
    """Test query emission."""

    def test_question_final_emits_one_query(self, rig):
        _, source, clock, _, events = rig
        source.partial("how many teaspoons")
        clock.advance(0.5)
        source.final("how many teaspoons in a tablespoon?")

        queries = _of(events, QueryDetected)
        assert [q.text for q in queries] == ["how many teaspoons in a tablespoon?"]
        assert _of(events, CommandDetected) == []

    def test_plain_final_emits_query(self, rig):
        _, source, _, _, events = rig
        source.final("I burned the garlic")
        assert [q.text for q in _of(events, QueryDetected)] == ["I burned the garlic"]

    def test_empty_final_ignored(self, rig):
        _, source, _, _, events = rig
        source.final("   ")
        assert _of(events, QueryDetected) == []

    def test_command_utterance_not_requeried(self, rig):
        """Text around a command in the same utterance is not sent as a query."""
        _, source, clock, _, events = rig
        source.partial("next")
        clock.advance(0.2)
        source.final("next and add the salt")

        assert len(_of(events, CommandDetected)) == 1
        assert _of(events, QueryDetected) == []

    def test_question_after_command_in_same_utterance(self, rig):
        _, source, clock, _, events = rig
        source.partial("next")
        clock.advance(0.2)
        source.final("next how long does it simmer?")
        assert len(_of(events, QueryDetected)) == 1


class TestInactivity:
    """Test the inactivity watchdog."""

    def test_partials_then_silence_emit_query_and_restart(self, rig):
        from cooking_assistant.voice.types import StopReason

        controller, source, clock, _, events = rig
        for text in ("can I", "can I substitute", "can I substitute butter", "can I substitute butter for oil"):
            source.partial(text)
            clock.advance(1.25)

        clock.advance(5.0)
        source.tick()

        assert [q.text for q in _of(events, QueryDetected)] == ["can I substitute butter for oil"]
        stops = [e for e in _of(events, ListeningChanged) if not e.is_listening]
        assert stops == [ListeningChanged(is_listening=False, reason=StopReason.INACTIVITY_TIMEOUT)]
        assert source.opened == [1, 2]
        assert controller.is_listening
        assert controller.session_id == 2

    def test_no_timeout_before_deadline(self, rig):
        controller, source, clock, _, events = rig
        source.partial("how long")
        clock.advance(4.9)
        source.tick()
        assert _of(events, QueryDetected) == []
        assert controller.session_id == 1

    def test_no_timeout_without_speech(self, rig):
        controller, source, clock, _, _ = rig
        clock.advance(60.0)
        source.tick()
        assert controller.session_id == 1

    def test_command_then_silence_no_query(self, rig):
        _, source, clock, _, events = rig
        source.partial("next step")
        clock.advance(5.0)
        source.tick()

        assert len(_of(events, CommandDetected)) == 1
        assert _of(events, QueryDetected) == []
        assert source.opened == [1, 2]

    def test_final_then_silence_no_duplicate_query(self, rig):
        _, source, clock, _, events = rig
        source.final("how hot should the pan be?")
        clock.advance(5.0)
        source.tick()
        assert len(_of(events, QueryDetected)) == 1

    def test_silence_event_finalizes(self, rig):
        _, source, _, _, events = rig
        source.partial("how long should the chicken rest")
        source.send(SilenceTimeout())
        assert [q.text for q in _of(events, QueryDetected)] == ["how long should the chicken rest"]
        assert source.opened == [1, 2]

    def test_commands_suppressed_until_next_session(self):
        from cooking_assistant.voice.types import ControllerState

        class HeldPermissionSource(FakeSource):
            """Grants the first session; later permission answers wait for release()."""

            def __init__(self):
                super().__init__()
                self.held = []

            def request_permission(self, callback):
                if self.opened:
                    self.held.append(callback)
                else:
                    callback(self.permission)

            def release(self):
                held, self.held = self.held, []
                for callback in held:
                    callback(self.permission)

        controller, source, clock, _, events = _make(source=HeldPermissionSource(), inactivity_timeout_s=5.0)
        controller.start()
        source.partial("how long does it rest")
        clock.advance(5.0)
        source.tick()

        assert controller.state is ControllerState.STARTING
        assert controller.suppress_commands

        # The old session's trailing command is not acted on
        source.send(Partial("next"), session_id=1)
        assert _of(events, CommandDetected) == []

        source.release()
        assert controller.session_id == 2
        assert controller.is_listening
        assert not controller.suppress_commands

        source.partial("next")
        assert [c.command.value for c in _of(events, CommandDetected)] == ["next"]

    def test_suppression_visible_at_inactivity_stop(self, rig):
        from cooking_assistant.voice.types import StopReason

        controller, source, clock, _, _ = rig
        seen = []

        def on_event(event):
            if isinstance(event, ListeningChanged) and event.reason is StopReason.INACTIVITY_TIMEOUT:
                seen.append(controller.suppress_commands)

        controller.subscribe(on_event)
        source.partial("how long")
        clock.advance(5.0)
        source.tick()

        assert seen == [True]
        assert controller.is_listening
        assert not controller.suppress_commands

    def test_tick_with_audio_buffer(self, rig):
        controller, source, _, _, _ = rig
        source.tick(np.zeros(1600, dtype=np.int16))
        assert controller.session_id == 1


class TestStaleSessions:
    """Test that superseded sessions cannot leak results."""

    def test_stale_results_dropped(self, rig):
        from cooking_assistant.voice.types import StopReason

        controller, source, _, _, events = rig
        controller.stop(reason=StopReason.FINAL)
        assert controller.session_id == 2

        events.clear()
        source.send(Final("how much salt?"), session_id=1)
        source.send(Partial("next"), session_id=1)
        source.send(RecognitionFailed("cancelled"), session_id=1)

        assert events == []
        assert controller.session_id == 2

    def test_stale_ticks_ignored(self, rig):
        controller, source, clock, _, _ = rig
        source.partial("how long")
        controller.stop()
        clock.advance(10.0)
        source._tick(1, None)
        assert source.opened == [1]


class TestSpeechOutput:
    """Test coordination with speech output."""

    def test_tts_round_trip(self, rig):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, _, events = rig
        controller.set_tts_active(True)

        assert not controller.is_listening
        assert controller.is_tts_active
        assert controller.state is ControllerState.SUPPRESSED
        assert source.closed == [True]
        assert _of(events, ListeningChanged)[-1] == ListeningChanged(is_listening=False, reason=StopReason.TTS)

        controller.start()
        assert source.opened == [1]

        controller.set_tts_active(False)
        assert controller.state is ControllerState.IDLE
        # Never auto-resumes
        assert not controller.is_listening

        controller.start()
        assert controller.is_listening
        assert source.opened == [1, 2]

    def test_tts_cancels_pending_error_restart(self, rig):
        controller, source, _, scheduler, _ = rig
        source.send(RecognitionFailed("network"))
        controller.set_tts_active(True)
        scheduler.run_all()
        assert source.opened == [1]
        assert not controller.is_listening


class TestRecognitionErrors:
    """Test transient recognizer failures."""

    def test_error_restarts_after_delay(self, rig):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, scheduler, events = rig
        source.send(RecognitionFailed("network"))

        assert not controller.is_listening
        assert controller.is_restarting
        assert controller.state is ControllerState.STOPPING_FOR_RESTART
        assert _of(events, ListeningChanged)[-1].reason is StopReason.RECOGNITION_ERROR
        assert [delay for delay, _ in scheduler.calls] == [0.3]

        scheduler.run_all()
        assert controller.is_listening
        assert not controller.is_restarting
        assert source.opened == [1, 2]

    def test_error_not_reported_to_user(self, rig):
        controller, source, _, _, events = rig
        source.send(RecognitionFailed("network"))
        assert _of(events, ErrorReported) == []
        assert controller.error_message is None

    def test_user_stop_cancels_delayed_restart(self, rig):
        controller, source, _, scheduler, _ = rig
        source.send(RecognitionFailed("network"))
        controller.stop()
        scheduler.run_all()
        assert source.opened == [1]


class TestStop:
    """Test explicit stops, pausing and graceful stops."""

    def test_force_stop(self, rig):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, _, events = rig
        controller.stop()
        assert controller.state is ControllerState.IDLE
        assert source.closed == [True]
        assert _of(events, ListeningChanged)[-1].reason is StopReason.USER

    def test_user_pause_and_resume(self, rig):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, _, events = rig
        controller.stop(reason="user_pause")

        assert controller.is_user_paused
        assert controller.state is ControllerState.USER_PAUSED
        assert _of(events, ListeningChanged)[-1].reason is StopReason.USER_PAUSE

        controller.start()
        assert not controller.is_listening

        controller.resume_after_user_pause()
        assert not controller.is_user_paused
        assert controller.is_listening
        assert source.opened == [1, 2]

    def test_graceful_stop_waits_for_final(self, rig):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, _, events = rig
        source.partial("how much salt")
        controller.stop(force=False)

        assert controller.state is ControllerState.STOPPING_FOR_RESTART
        assert source.closed == [False]

        source.final("how much salt?")
        assert [q.text for q in _of(events, QueryDetected)] == ["how much salt?"]
        assert ListeningChanged(is_listening=False, reason=StopReason.FINAL) in events
        assert source.opened == [1, 2]
        assert controller.is_listening

    def test_restart_reason_from_idle_does_not_start(self):
        from cooking_assistant.voice.types import ControllerState, StopReason

        controller, source, _, scheduler, _ = _make()
        controller.stop(reason=StopReason.FINAL)
        controller.stop(reason="inactivity_timeout")

        assert controller.state is ControllerState.IDLE
        assert not controller.is_listening
        assert not controller.is_restarting
        assert source.opened == []
        assert scheduler.calls == []

    def test_restart_reason_keeps_user_pause(self, rig):
        from cooking_assistant.voice.types import ControllerState

        controller, source, _, _, _ = rig
        controller.stop(reason="user_pause")
        controller.stop(reason="inactivity_timeout")
        controller.stop(reason="recognition_error")

        assert controller.state is ControllerState.USER_PAUSED
        assert controller.is_user_paused
        assert source.opened == [1]

        controller.resume_after_user_pause()
        assert controller.is_listening

    def test_restart_reason_while_speaking_stays_suppressed(self, rig):
        from cooking_assistant.voice.types import ControllerState

        controller, source, _, _, _ = rig
        controller.set_tts_active(True)
        controller.stop(reason="final")

        assert controller.state is ControllerState.SUPPRESSED
        assert source.opened == [1]

    def test_unknown_reason_rejected(self, rig):
        controller, _, _, _, _ = rig
        with pytest.raises(ValueError):
            controller.stop(reason="bored")


class TestListeners:
    """Test event delivery to listeners."""

    def test_failing_listener_does_not_break_others(self):
        controller, source, _, _, events = _make()

        def broken(event):
            raise RuntimeError("boom")

        controller.subscribe(broken)
        controller.start()
        source.final("next")
        assert len(_of(events, CommandDetected)) == 1

    def test_unsubscribe(self):
        controller, source, _, _, _ = _make()
        received = []
        unsubscribe = controller.subscribe(received.append)
        unsubscribe()
        controller.start()
        assert received == []


class TestThreadedController:
    """Test the controller on its own actor thread, as the CLI runs it."""

    def test_scripted_source_end_to_end(self):
        import io

        from cooking_assistant.voice.controller import VoiceSessionController
        from cooking_assistant.voice.source import LineTranscriptSource
        from cooking_assistant.voice.types import CommandKind

        script = io.StringIO(
            "partial: next\n"
            "partial: next\n"
            "final: how many teaspoons in a tablespoon?\n"
            "go back please\n"
        )
        source = LineTranscriptSource(script, tick_interval=0.01)
        controller = VoiceSessionController(source, threaded=True)
        events = []
        controller.subscribe(events.append)
        try:
            controller.start()
            assert source.exhausted.wait(2.0)
            controller.flush()
        finally:
            controller.shutdown()

        assert [c.command for c in _of(events, CommandDetected)] == [CommandKind.NEXT, CommandKind.PREVIOUS]
        assert [q.text for q in _of(events, QueryDetected)] == ["how many teaspoons in a tablespoon?"]
        assert not controller.is_listening

    def test_stop_from_listener_is_queued(self):
        from cooking_assistant.voice.controller import VoiceSessionController
        from cooking_assistant.voice.types import ControllerState

        source = FakeSource()
        controller = VoiceSessionController(source, threaded=True)

        def stop_on_command(event):
            if isinstance(event, CommandDetected):
                controller.stop()

        controller.subscribe(stop_on_command)
        try:
            controller.start()
            controller.flush(timeout=2.0)
            source.partial("next")
            controller.flush(timeout=2.0)
            controller.flush(timeout=2.0)

            assert controller.state is ControllerState.IDLE
            assert source.closed == [True]
        finally:
            controller.shutdown()

    def test_stop_preempts_delayed_restart(self):
        from cooking_assistant.voice.controller import VoiceSessionController

        source = FakeSource()
        scheduler = RecordingScheduler()
        controller = VoiceSessionController(source, scheduler=scheduler, threaded=True)
        try:
            controller.start()
            controller.flush(timeout=2.0)
            source.send(RecognitionFailed("network"))
            controller.flush(timeout=2.0)
            assert controller.is_restarting

            controller.stop()
            scheduler.run_all()
            controller.flush(timeout=2.0)

            assert source.opened == [1]
            assert not controller.is_listening
        finally:
            controller.shutdown()
