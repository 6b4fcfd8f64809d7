"""Outbound requests to the validating model.

One request = a system instruction, the (already compressed) turns,
and an output size cap. Transport failures are retried with
exponential backoff; when retries run out the caller gets a
ModelRequestError and decides what to do with the session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from openai import APIError, AsyncOpenAI

from feynman.core.config import Settings, get_settings
from feynman.session.models import Turn

logger = logging.getLogger(__name__)


class ModelRequestError(Exception):
    """Raised when a model request fails on every attempt."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


@dataclass
class GatewayConfig:
    """Configuration for outbound model requests."""

    model: str = "gpt-4o-mini"
    max_tokens: int = 4096
    temperature: float = 0.3

    # Retries: delay doubles after each failed attempt
    retries: int = 3
    base_delay: float = 1.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GatewayConfig":
        settings = settings or get_settings()
        return cls(
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            retries=settings.request_retries,
            base_delay=settings.retry_base_delay,
        )


@dataclass
class ModelReply:
    """Raw text from the model plus billed tokens."""

    content: str
    token_usage: int = 0


class ModelGateway:
    """Sends requests to an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        client: AsyncOpenAI,
        config: Optional[GatewayConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the gateway.

        Args:
            client: Async OpenAI-compatible client
            config: Optional configuration
            sleep: Awaitable delay used between retries
        """
        self.client = client
        self.config = config or GatewayConfig()
        self._sleep = sleep

    async def request(
        self,
        system: str,
        turns: Sequence[Turn],
        max_tokens: Optional[int] = None,
    ) -> ModelReply:
        """Send one request, retrying transport failures.

        Args:
            system: System instruction
            turns: Role-tagged turns, already compressed
            max_tokens: Output cap (config default if None)

        Returns:
            The model's reply

        Raises:
            ModelRequestError: If every attempt failed
        """
        messages = [{"role": "system", "content": system}]
        messages += [turn.to_message() for turn in turns]

        last_error: Optional[Exception] = None
        for attempt in range(self.config.retries):
            try:
                completion = await self.client.chat.completions.create(
                    model=self.config.model,
                    messages=messages,
                    temperature=self.config.temperature,
                    max_tokens=max_tokens or self.config.max_tokens,
                )
                return _to_reply(completion)

            except (APIError, ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self.config.retries - 1:
                    delay = self.config.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Model request failed (attempt {attempt + 1}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await self._sleep(delay)

        logger.error(f"Model request failed after {self.config.retries} attempts: {last_error}")
        raise ModelRequestError(
            f"Model request failed: {last_error}", attempts=self.config.retries
        ) from last_error


def _to_reply(completion) -> ModelReply:
    """Read content and usage from a completion, tolerating missing parts.

    An empty `choices` list reads as empty content, which the caller
    treats as an unreadable verdict. Missing usage counts read as 0.
    """
    choices = completion.choices or []
    message = choices[0].message if choices else None
    content = (message.content if message is not None else None) or ""

    usage = completion.usage
    tokens = 0
    if usage is not None:
        tokens = (usage.prompt_tokens or 0) + (usage.completion_tokens or 0)
    return ModelReply(content=content, token_usage=tokens)
