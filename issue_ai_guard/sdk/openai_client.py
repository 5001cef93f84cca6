"""
OpenAI-backed text generator.

Builds the OpenAI client lazily on first use and reuses it afterwards.
"""

import logging
import os
import threading
from typing import Dict, List, Optional

from openai import OpenAI, OpenAIError

from ..core.errors import UpstreamGenerationError

logger = logging.getLogger(__name__)


class OpenAIGenerator:
    """Chat-completions generator with a bounded timeout and no retries.

    Retrying would double-charge quota, so every failure surfaces once as
    UpstreamGenerationError. Missing credentials surface the same way on
    first use rather than at construction.
    """

    def __init__(
        self,
        model: str = "gpt-3.5-turbo",
        timeout_seconds: float = 30.0,
        api_key: Optional[str] = None
    ):
        """Initialize the generator.

        Args:
            model: OpenAI model name (required)
            timeout_seconds: Upper bound for one completion call
            api_key: API key, defaults to OPENAI_API_KEY from the environment

        Raises:
            ValueError: If model is missing/empty or timeout is not positive
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.model = model
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key
        self._client: Optional[OpenAI] = None
        self._lock = threading.Lock()

    @property
    def client(self) -> OpenAI:
        """The shared OpenAI client, constructed on first access.

        Raises:
            UpstreamGenerationError: If no API key is configured
        """
        with self._lock:
            if self._client is None:
                api_key = self.api_key or os.environ.get("OPENAI_API_KEY")
                if not api_key:
                    raise UpstreamGenerationError(
                        "OPENAI_API_KEY environment variable is not set"
                    )
                self._client = OpenAI(
                    api_key=api_key,
                    timeout=self.timeout_seconds,
                    max_retries=0
                )
                logger.info("OpenAI client initialized for model %s", self.model)
            return self._client

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int
    ) -> str:
        """Create a chat completion and return its text.

        Args:
            messages: Role-tagged messages (required)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Returns:
            Generated text, possibly empty

        Raises:
            ValueError: If messages is empty
            UpstreamGenerationError: If the call fails or times out
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        client = self.client
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except OpenAIError as e:
            raise UpstreamGenerationError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise UpstreamGenerationError("OpenAI response has no choices")
        return response.choices[0].message.content or ""
