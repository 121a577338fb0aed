"""
DealerGPT LLM client.

Thin wrapper over OpenAI chat completions with a fixed model, temperature and
token cap, plus a hard deadline on every call. Failures surface as
``LLMError`` / ``LLMTimeout`` so the conversation service can degrade.
"""

import asyncio
from functools import lru_cache
from typing import Protocol

import structlog
from openai import AsyncOpenAI, OpenAIError

from core.config import get_settings

logger = structlog.get_logger()

EMPTY_COMPLETION_MESSAGE = "I apologize, but I couldn't generate a proper response."


class LLMError(Exception):
    """The completion call failed or returned nothing usable."""


class LLMTimeout(LLMError):
    """The completion call exceeded its deadline."""


class ChatClient(Protocol):
    async def complete(self, messages: list[dict], *, max_tokens: int | None = None) -> str: ...


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """Shared async client; requires OPENAI_API_KEY."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")
    return AsyncOpenAI(api_key=settings.openai_api_key)


class OpenAIChatClient:
    """Chat-completions client bound to one model configuration."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 1500,
        timeout_seconds: float = 45.0,
    ):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings=None) -> "OpenAIChatClient":
        settings = settings or get_settings()
        return cls(
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = get_openai_client()
            except RuntimeError as exc:
                raise LLMError(str(exc)) from exc
        return self._client

    async def complete(self, messages: list[dict], *, max_tokens: int | None = None) -> str:
        """Return the assistant text for ``messages`` or raise ``LLMError``."""
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=max_tokens or self.max_tokens,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("dealergpt.llm.timeout", model=self.model, timeout_seconds=self.timeout_seconds)
            raise LLMTimeout(f"LLM call exceeded {self.timeout_seconds}s") from exc
        except OpenAIError as exc:
            logger.error("dealergpt.llm.failed", model=self.model, error=str(exc))
            raise LLMError(str(exc)) from exc

        if not response.choices:
            raise LLMError("Completion returned no choices")
        content = response.choices[0].message.content
        return content or EMPTY_COMPLETION_MESSAGE
