"""
Speech output for spoken answers.
"""

from cooking_assistant.speech.output import (
    AnswerSpeaker,
    CommandSpeaker,
    NullSpeaker,
    SpeechOutputGate,
    create_speaker,
)

__all__ = ["AnswerSpeaker", "CommandSpeaker", "NullSpeaker", "SpeechOutputGate", "create_speaker"]
