"""Chat-completions client for the Groq OpenAI-compatible endpoint.

Shapes the request payload and pulls ``choices[0].message.content`` out
of the reply.  Retries are delegated to the ResilientRequestClient.
"""

from __future__ import annotations

import logging
from typing import Any

from fitness_analyst.core.config import Settings, get_settings
from fitness_analyst.core.exceptions import ParseError
from fitness_analyst.core.resilience import RequestDescriptor, ResilientRequestClient

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.8
INVALID_STRUCTURE_MESSAGE = "API returned an invalid response structure."


def extract_content(result: Any) -> str:
    """Return ``choices[0].message.content`` or raise ParseError."""
    try:
        content = result["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if not isinstance(content, str) or not content:
        raise ParseError(INVALID_STRUCTURE_MESSAGE)
    return content


class CompletionClient:
    """Sends chat-completion requests and returns the message content."""

    def __init__(
        self,
        request_client: ResilientRequestClient,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._requests = request_client
        self._url = settings.GROQ_URL
        self._api_key = settings.GROQ_API_KEY
        self.model = settings.GROQ_MODEL
        self.max_attempts = settings.REQUEST_MAX_ATTEMPTS

    def build_payload(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int,
        json_mode: bool = False,
    ) -> dict[str, Any]:
        """Build the request body for the completion endpoint."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        """Send ``messages`` and return the assistant content.

        Args:
            messages: Ordered ``{"role", "content"}`` dicts, system first.
            temperature: Sampling temperature.
            max_tokens: Completion token cap.
            json_mode: Ask the endpoint for a JSON object reply.

        Returns:
            The content string of the first choice.

        Raises:
            RequestError: If every attempt failed.
            ParseError: If the reply has no usable content.
        """
        payload = self.build_payload(
            messages, temperature=temperature, max_tokens=max_tokens, json_mode=json_mode
        )
        request = RequestDescriptor(
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key.get_secret_value()}",
            },
            body=payload,
        )
        response = await self._requests.send(self._url, request, max_attempts=self.max_attempts)

        try:
            result = response.json()
        except ValueError as e:
            raise ParseError(INVALID_STRUCTURE_MESSAGE, content=response.text) from e

        content = extract_content(result)
        logger.debug(
            "Completion received",
            extra={"model": self.model, "content_length": len(content)},
        )
        return content
