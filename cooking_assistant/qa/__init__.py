"""
Question answering service client.
"""

from cooking_assistant.qa.client import QAClient
from cooking_assistant.qa.schemas import QAErrorResponse, QARequest, QAResponse

__all__ = ["QAClient", "QARequest", "QAResponse", "QAErrorResponse"]
