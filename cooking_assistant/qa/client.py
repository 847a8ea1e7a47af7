"""
Client for the question answering service.

POST {base_url}/qa with {"question": ..., "context": ...}; the service
replies {"answer": ...} or, on failure, {"error": ...} with a 4xx/5xx status.
No retries: failures go straight back to the caller as user-facing messages.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from cooking_assistant.config import QAConfig
from cooking_assistant.errors import (
    AnsweringServerError,
    AnsweringServiceError,
    InvalidResponseError,
    MissingBaseURLError,
)
from cooking_assistant.qa.schemas import QAErrorResponse, QARequest, QAResponse

logger = logging.getLogger(__name__)


class QAClient:
    """
    Synchronous Q&A client.

    Usage:
        client = QAClient("https://worker.example.com")
        answer = client.answer("How many teaspoons in a tablespoon?", context="Garlic Onion Chicken")
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root URL; None leaves Q&A disabled
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (tests, custom transports)
        """
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: QAConfig) -> "QAClient":
        return cls(config.worker_base_url, timeout=config.timeout_s)

    @property
    def is_configured(self) -> bool:
        return self.base_url is not None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def answer(self, question: str, context: Optional[str] = None) -> str:
        """
        Ask one question.

        Raises:
            MissingBaseURLError: No service URL configured
            AnsweringServerError: The service reported a failure
            InvalidResponseError: The reply could not be decoded
            AnsweringServiceError: The service could not be reached
        """
        if self.base_url is None:
            logger.error("Missing WORKER_BASE_URL")
            raise MissingBaseURLError()

        payload = QARequest(question=question, context=context)
        logger.info("Sending Q&A request")

        try:
            resp = self._get_client().post(f"{self.base_url}/qa", json=payload.model_dump())
        except httpx.HTTPError as e:
            logger.error("Q&A request failed: %s", e)
            raise AnsweringServiceError(f"Unable to reach the Q&A service: {e}") from e

        if resp.status_code >= 400:
            logger.error("Q&A error status %d", resp.status_code)
            message = None
            try:
                message = QAErrorResponse.model_validate_json(resp.content).error
            except ValidationError:
                pass
            raise AnsweringServerError(message, status_code=resp.status_code)

        try:
            result = QAResponse.model_validate_json(resp.content)
        except ValidationError as e:
            logger.error("Invalid Q&A response body")
            raise InvalidResponseError(str(e)) from e

        logger.info("Q&A answered successfully")
        return result.answer

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
