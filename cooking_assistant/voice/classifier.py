"""
Utterance classification for hands-free cooking.

Decides whether a transcript fragment is a question (to be forwarded to the
answering service) or a bare navigation command. The command grammar is a
strict prefix grammar rather than substring matching, so that a question like
"what's next after I add the broth?" is never taken as "next".
"""

import logging
from typing import Optional

from cooking_assistant.voice.types import Classification, CommandKind

logger = logging.getLogger(__name__)

QUESTION_STARTERS = frozenset({
    "how", "what", "when", "where", "why", "who",
    "is", "are", "do", "does", "did",
    "can", "could", "should", "would", "will",
    "may", "might",
})

QUESTION_CUES = (
    "how many",
    "how much",
    "what is",
    "what's",
    "convert",
    "need to",
    "do i",
    "does it",
)

COMMAND_WORDS = frozenset({"next", "previous", "back", "repeat"})

# Words allowed after the command word ("next step please")
FILLER_WORDS = frozenset({"step", "please", "now", "the", "a", "an"})

# Scan order does not matter: the rightmost occurrence wins
_COMMAND_KEYWORDS = (
    ("next", CommandKind.NEXT),
    ("previous", CommandKind.PREVIOUS),
    ("back", CommandKind.PREVIOUS),
    ("repeat", CommandKind.REPEAT),
)

# Recognizers punctuate finals ("Next.", "Go back, please."); only word endings are trimmed
_TRAILING_PUNCTUATION = ".,!?;:"


def tokenize(text: str) -> list[str]:
    """Lowercase, split on whitespace and drop trailing sentence punctuation."""
    tokens = []
    for raw in text.lower().strip().split():
        # A token that is all punctuation stays as it is
        tokens.append(raw.rstrip(_TRAILING_PUNCTUATION) or raw)
    return tokens


def is_question_like(text: str) -> bool:
    """
    Check whether a fragment reads like a question.

    True if it contains a question mark, starts with a question word,
    or contains one of the conversion/measurement cue phrases.
    """
    if "?" in text:
        return True

    trimmed = text.lower().strip()
    if not trimmed:
        return False

    first = trimmed.split()[0]
    if first in QUESTION_STARTERS:
        return True

    return any(cue in trimmed for cue in QUESTION_CUES)


def _only_fillers(tokens: list[str]) -> bool:
    return all(t in FILLER_WORDS or t in COMMAND_WORDS for t in tokens)


def is_likely_command(text: str) -> bool:
    """
    Check whether a fragment is a bare navigation command.

    Accepted shapes:
        <command> [filler|command ...]        e.g. "next step please"
        go <command> [filler|command ...]     e.g. "go back please"
    """
    tokens = tokenize(text)
    if not tokens:
        return False

    if tokens[0] in COMMAND_WORDS:
        return _only_fillers(tokens[1:])

    if tokens[0] == "go" and len(tokens) >= 2 and tokens[1] in COMMAND_WORDS:
        return _only_fillers(tokens[2:])

    return False


def extract_command(text: str) -> Optional[CommandKind]:
    """
    Find the command word spoken last in a fragment.

    Partial hypotheses grow and get revised over time, so the rightmost
    keyword is the most recently spoken one.
    """
    lowered = text.lower()
    best: Optional[CommandKind] = None
    best_index = -1
    for keyword, command in _COMMAND_KEYWORDS:
        index = lowered.rfind(keyword)
        if index > best_index:
            best_index = index
            best = command
    return best


def classify(text: str) -> Classification:
    """Classify one transcript fragment."""
    result = Classification(
        text=text,
        is_question=is_question_like(text),
        is_command_like=is_likely_command(text),
        command=extract_command(text),
        tokens=tokenize(text),
    )
    logger.debug(
        "Classified fragment: question=%s command_like=%s command=%s",
        result.is_question,
        result.is_command_like,
        result.command.value if result.command else None,
    )
    return result
