"""
Cooking Assistant - hands-free voice control for cooking.
"""

import logging

# Request lines are logged by the Q&A client itself
logging.getLogger("httpx").setLevel(logging.WARNING)

__version__ = "0.1.0"

from cooking_assistant.voice.controller import VoiceSessionController

__all__ = ["VoiceSessionController", "__version__"]
