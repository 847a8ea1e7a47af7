"""
Pydantic schemas for the question answering service.
"""

from pydantic import BaseModel


class QARequest(BaseModel):
    """Question sent to the answering service."""

    question: str
    context: str | None = None  # e.g. the recipe being cooked


class QAResponse(BaseModel):
    """Successful answer."""

    answer: str


class QAErrorResponse(BaseModel):
    """Error body returned with a 4xx/5xx status."""

    error: str
