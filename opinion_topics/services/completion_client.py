"""Completion service clients.

A completion client has one capability: submit a prompt, receive text. The
client is created once and passed into the orchestrator; nothing in the
pipeline reaches for a module-level client.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from openai import OpenAI, OpenAIError

from ..config import DEFAULT_COMPLETION_MODEL, DEFAULT_COMPLETION_TIMEOUT_SECONDS
from ..exceptions import CompletionServiceError
from ..prompts import CLASSIFICATION_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """Text in, text out."""

    @abstractmethod
    def submit(self, text: str) -> str:
        """Send a prompt and return the raw reply.

        Raises:
            CompletionServiceError: on timeout, transport failure or empty reply
        """
        pass


class OpenAICompletionClient(CompletionClient):
    """Completion client backed by the OpenAI chat completions API.

    No retries: a failed call is a failed batch, and the opinions are picked
    up again by the next run.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_COMPLETION_MODEL,
        timeout: float = DEFAULT_COMPLETION_TIMEOUT_SECONDS,
        max_tokens: int = 4000,
        temperature: float = 0.3,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def submit(self, text: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": CLASSIFICATION_SYSTEM_PROMPT},
                    {"role": "user", "content": text},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
        except OpenAIError as e:
            raise CompletionServiceError(f"Completion request failed: {e}") from e

        if not response.choices:
            raise CompletionServiceError("Completion response has no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise CompletionServiceError("Completion response is empty")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Completion used {usage.prompt_tokens} prompt + "
                f"{usage.completion_tokens} completion tokens"
            )
        return content
