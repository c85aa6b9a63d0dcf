# backend/callflow/services/openai_service.py
"""
Thin async wrapper around the OpenAI chat completions API.

Used for two short, latency-sensitive prompts: the next spoken line of a
generative dialogue turn, and the one-word post-call interest classification.
Errors are raised as ProviderError so callers can pick their own fallback.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from callflow.config import settings
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.utils.logger import logger

DEFAULT_SYSTEM_PROMPT = "You are a helpful sales development assistant. Return only what is requested."


class OpenAIService:
    # Class-level async client for connection pooling across requests
    _async_client: Optional[Any] = None

    def __init__(self, client: Optional[Any] = None):
        self.model = (getattr(settings, "OPENAI_MODEL", None) or "gpt-4o-mini").strip()
        self.timeout_s = float(getattr(settings, "OPENAI_TIMEOUT_SECONDS", 8.0) or 8.0)
        self._client = client

    @classmethod
    def get_async_client(cls) -> Optional[Any]:
        """Get or create the shared AsyncOpenAI client."""
        if cls._async_client is None:
            api_key = getattr(settings, "OPENAI_API_KEY", None)
            if api_key:
                cls._async_client = AsyncOpenAI(api_key=api_key)
        return cls._async_client

    @classmethod
    async def close_client(cls) -> None:
        if cls._async_client is not None:
            await cls._async_client.close()
            cls._async_client = None

    @property
    def client(self) -> Optional[Any]:
        return self._client or self.get_async_client()

    def is_configured(self) -> bool:
        return self.client is not None

    async def generate_completion(
        self,
        prompt: str,
        *,
        system: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float = 0.7,
        max_tokens: int = 120,
        timeout_s: Optional[float] = None,
    ) -> str:
        """
        Single chat completion, returned stripped.

        Raises:
            ConfigurationError: no OPENAI_API_KEY configured.
            ProviderError: API error or timeout.
        """
        client = self.client
        if client is None:
            raise ConfigurationError("OPENAI_API_KEY is required")

        timeout = timeout_s if timeout_s is not None else self.timeout_s
        llm_start = time.time()
        try:
            resp = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            elapsed = (time.time() - llm_start) * 1000
            logger.warning(f"[LATENCY] OpenAI completion timed out after {elapsed:.2f}ms")
            raise ProviderError(f"OpenAI completion timed out after {timeout:.1f}s", provider="openai") from e
        except OpenAIError as e:
            elapsed = (time.time() - llm_start) * 1000
            logger.error(f"[LATENCY] OpenAI completion error after {elapsed:.2f}ms: {e}")
            raise ProviderError(f"OpenAI API error: {e}", provider="openai") from e

        elapsed = (time.time() - llm_start) * 1000
        logger.info(f"[LATENCY] OpenAI completion: {elapsed:.2f}ms (model={self.model})")
        return (resp.choices[0].message.content or "").strip()
