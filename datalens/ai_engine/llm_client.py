"""
LLM client contract and backends.

Contract: `await client.generate_content(prompt)` returns an object whose
`text()` yields the model output. Every failure surfaces as `LLMError` with a
kind (network / timeout / model / config).

Backends:
- OpenAIClient  - openai.AsyncOpenAI chat completions
- GeminiClient  - google-generativeai GenerativeModel

`generate_text` adds the time bound, retries with exponential backoff and
jitter on transient errors, and maps unknown exceptions.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from openai import (
    AsyncOpenAI,
    APIError,
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)

from ..core.errors import LLMError, LLMErrorKind
from ..utils.logger import get_logger
from ..utils.settings import Settings

LOGGER = get_logger("llm_client")

# ========================================================================================
# CONFIG
# ========================================================================================

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 2
DEFAULT_BASE_BACKOFF = 0.5
MAX_BACKOFF = 8.0

# ========================================================================================
# CONTRACT
# ========================================================================================

@dataclass(frozen=True)
class LLMResponse:
    """Model output with a text accessor."""
    content: str
    model: Optional[str] = None

    def text(self) -> str:
        return self.content


@runtime_checkable
class LLMClient(Protocol):
    async def generate_content(self, prompt: str) -> Any:
        """Return an object exposing `text()`; raise on failure."""
        ...

# ========================================================================================
# OPENAI
# ========================================================================================

class OpenAIClient:
    """Chat Completions backend; one user message per prompt."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise LLMError(LLMErrorKind.CONFIG, "OPENAI_API_KEY is not set")
        if self._client is None:
            kwargs: dict = {"api_key": self.api_key, "timeout": self.timeout, "max_retries": 0}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def generate_content(self, prompt: str) -> LLMResponse:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except APITimeoutError as e:
            raise LLMError(LLMErrorKind.TIMEOUT, "OpenAI request timed out", cause=e) from e
        except (APIConnectionError, RateLimitError) as e:
            raise LLMError(LLMErrorKind.NETWORK, str(e), cause=e) from e
        except AuthenticationError as e:
            raise LLMError(LLMErrorKind.CONFIG, "OpenAI rejected the API key", cause=e) from e
        except APIError as e:
            raise LLMError(LLMErrorKind.MODEL, str(e), cause=e) from e

        content = (resp.choices[0].message.content or "") if resp.choices else ""
        if not content.strip():
            raise LLMError(LLMErrorKind.MODEL, "OpenAI returned an empty completion")
        return LLMResponse(content=content, model=self.model)

# ========================================================================================
# GEMINI
# ========================================================================================

class GeminiClient:
    """google-generativeai backend."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gemini-1.5-flash",
        temperature: float = 0.2,
        max_tokens: int = 1000,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._model: Optional[genai.GenerativeModel] = None

    def _get_model(self) -> genai.GenerativeModel:
        if not self.api_key:
            raise LLMError(LLMErrorKind.CONFIG, "GOOGLE_API_KEY is not set")
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                model_name=self.model,
                generation_config=genai.types.GenerationConfig(
                    temperature=self.temperature,
                    max_output_tokens=self.max_tokens,
                ),
            )
        return self._model

    async def generate_content(self, prompt: str) -> LLMResponse:
        model = self._get_model()
        try:
            resp = await model.generate_content_async(prompt)
        except google_exceptions.DeadlineExceeded as e:
            raise LLMError(LLMErrorKind.TIMEOUT, "Gemini request timed out", cause=e) from e
        except (google_exceptions.ServiceUnavailable, google_exceptions.TooManyRequests) as e:
            raise LLMError(LLMErrorKind.NETWORK, str(e), cause=e) from e
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise LLMError(LLMErrorKind.CONFIG, "Gemini rejected the API key", cause=e) from e
        except google_exceptions.GoogleAPIError as e:
            raise LLMError(LLMErrorKind.MODEL, str(e), cause=e) from e

        # resp.text raises ValueError when the candidate was blocked or empty
        try:
            content = resp.text or ""
        except ValueError as e:
            raise LLMError(LLMErrorKind.MODEL, f"Gemini returned no text: {e}", cause=e) from e
        if not content.strip():
            raise LLMError(LLMErrorKind.MODEL, "Gemini returned an empty response")
        return LLMResponse(content=content, model=self.model)

# ========================================================================================
# FACTORY
# ========================================================================================

def build_client(settings: Settings) -> LLMClient:
    """Backend selected by `settings.provider`."""
    if settings.provider == "gemini":
        return GeminiClient(
            settings.google_api_key,
            model=settings.gemini_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
    return OpenAIClient(
        settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.llm_timeout,
    )

# ========================================================================================
# CALL WRAPPER
# ========================================================================================

def _backoff_delay(attempt: int, base: float = DEFAULT_BASE_BACKOFF) -> float:
    wait = min(MAX_BACKOFF, base * (2 ** attempt))
    return wait * (0.5 + random.random() * 0.5)


def _classify(error: BaseException) -> LLMError:
    if isinstance(error, LLMError):
        return error
    if isinstance(error, (ConnectionError, OSError)):
        return LLMError(LLMErrorKind.NETWORK, str(error), cause=error)
    return LLMError(LLMErrorKind.MODEL, f"{type(error).__name__}: {error}", cause=error)


async def generate_text(
    client: LLMClient,
    prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    base_backoff: float = DEFAULT_BASE_BACKOFF,
) -> str:
    """
    Call `client` and return the response text.

    Args:
        client: Any object honouring the LLMClient contract
        prompt: Prompt text
        timeout: Upper bound in seconds for the whole call, retries included
        retries: Extra attempts for transient (network) failures
        base_backoff: First backoff delay in seconds

    Returns:
        Response text

    Raises:
        LLMError: TIMEOUT when the bound is exceeded, otherwise the mapped failure
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    async def _attempt() -> str:
        resp = await client.generate_content(prompt)
        text = resp.text()
        if not isinstance(text, str):
            raise LLMError(LLMErrorKind.MODEL, "LLM response text is not a string")
        return text

    attempt = 0
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise LLMError(LLMErrorKind.TIMEOUT, f"LLM call exceeded {timeout:g}s")
        try:
            return await asyncio.wait_for(_attempt(), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise LLMError(LLMErrorKind.TIMEOUT, f"LLM call exceeded {timeout:g}s", cause=e) from e
        except Exception as e:
            err = _classify(e)
            if not err.retryable or attempt >= retries:
                if err is e:
                    raise
                raise err from e
            delay = min(_backoff_delay(attempt, base_backoff), max(0.0, deadline - loop.time()))
            LOGGER.warning(f"LLM call failed (attempt {attempt + 1}/{retries + 1}): {err}; retrying in {delay:.2f}s")
            attempt += 1
            await asyncio.sleep(delay)
