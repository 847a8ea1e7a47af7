"""
Cooking mode: step navigation and spoken answers driven by voice.

Commands move through the recipe. Queries go to the answering service on a
single background worker, and the answer is spoken with listening gated off
for the duration of playback.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from cooking_assistant.errors import AnsweringServiceError
from cooking_assistant.qa.client import QAClient
from cooking_assistant.recipe import Recipe, RecipeStep
from cooking_assistant.speech.output import AnswerSpeaker, SpeechOutputGate
from cooking_assistant.voice.controller import VoiceSessionController
from cooking_assistant.voice.slots import DetectionSlots
from cooking_assistant.voice.types import CommandKind, StopReason

logger = logging.getLogger(__name__)


class CookingSession:
    """
    One recipe being cooked hands-free.

    Usage:
        session = CookingSession(recipe, controller, QAClient.from_config(cfg.qa), create_speaker(cfg.speech))
        session.start()
        ...
        session.close()
    """

    def __init__(
        self,
        recipe: Recipe,
        controller: VoiceSessionController,
        qa_client: QAClient,
        speaker: AnswerSpeaker,
        on_change: Optional[Callable[["CookingSession"], None]] = None,
    ):
        self.recipe = recipe
        self.controller = controller
        self.qa_client = qa_client
        self.speaker = speaker
        self._on_change = on_change

        self._lock = threading.Lock()
        self._index = 0
        self.answer_text: Optional[str] = None
        self.answer_error: Optional[str] = None
        self.is_answering = False
        self._last_spoken_answer: Optional[str] = None

        self.slots = DetectionSlots(on_change=self._on_detection)
        self._unsubscribe = controller.subscribe(self.slots)

        self.gate = SpeechOutputGate(controller, on_idle=self._resume_listening)
        speaker.set_listener(self.gate)

        # Answers and spoken steps are serialized on one worker
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cooking-qa")
        self._closed = False

    # ── Steps ──

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_step(self) -> RecipeStep:
        return self.recipe.steps[self._index]

    @property
    def step_label(self) -> str:
        return f"Step {self._index + 1} of {len(self.recipe.steps)}"

    def next_step(self) -> bool:
        with self._lock:
            if self._index >= len(self.recipe.steps) - 1:
                return False
            self._index += 1
        self._changed()
        return True

    def previous_step(self) -> bool:
        with self._lock:
            if self._index == 0:
                return False
            self._index -= 1
        self._changed()
        return True

    def repeat_step(self):
        """Speak the current step again. Returns the worker future."""
        return self._worker.submit(self.speaker.speak, self.current_step.text)

    def handle_command(self, command: CommandKind) -> None:
        if command is CommandKind.NEXT:
            moved = self.next_step()
        elif command is CommandKind.PREVIOUS:
            moved = self.previous_step()
        else:
            self.repeat_step()
            moved = True

        if not moved:
            logger.debug("Command %s ignored at step %d", command.value, self._index + 1)

    # ── Questions ──

    def ask(self, question: str):
        """Answer a question in the background. Returns the worker future."""
        with self._lock:
            self.answer_text = None
            self.answer_error = None
            self.is_answering = True
        self._changed()
        return self._worker.submit(self._answer, question)

    def _answer(self, question: str) -> None:
        try:
            answer = self.qa_client.answer(question, context=self.recipe.title)
        except AnsweringServiceError as e:
            logger.warning("Question could not be answered: %s", e)
            with self._lock:
                self.answer_error = str(e)
                self.is_answering = False
            self._changed()
            return

        with self._lock:
            self.answer_text = answer
            self.is_answering = False
            repeated = answer == self._last_spoken_answer
            self._last_spoken_answer = answer
        self._changed()

        if repeated:
            logger.debug("Answer unchanged, not speaking it again")
            return
        self.speaker.speak(answer)

    # ── Listening ──

    def start(self) -> None:
        self.controller.start()

    def toggle_listening(self) -> None:
        if self.controller.is_user_paused:
            self.controller.resume_after_user_pause()
        else:
            self.controller.stop(reason=StopReason.USER_PAUSE)
        self._changed()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self.speaker.stop()
        self._worker.shutdown(wait=False, cancel_futures=True)
        self.controller.stop(reason=StopReason.USER)

    def _resume_listening(self) -> None:
        if self._closed:
            return
        self.controller.start()

    def _on_detection(self, slots: DetectionSlots) -> None:
        if self._closed:
            return

        command = slots.take_command()
        if command is not None:
            self.handle_command(command)

        query = slots.take_query()
        if query is not None:
            self.ask(query)

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception as e:
            logger.error("Cooking session change callback failed: %s", e)
