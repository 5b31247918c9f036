"""
LLM Client for an OpenAI-compatible chat completion API.

Provides a wrapper around the OpenAI SDK configured for the grading model.
Includes transport-level retry logic, a hard per-call timeout and an
awaitable variant for use inside the asynchronous grading pipeline.
"""

import asyncio
import logging
import time
from typing import Literal, TypedDict

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, RateLimitError

from essay_grader.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ChatMessage(TypedDict):
    """A role-tagged chat message."""

    role: Literal["system", "user", "assistant"]
    content: str


class LLMError(Exception):
    """Raised when an LLM API call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class LLMClient:
    """
    Client for the text-completion model.

    Uses OpenAI SDK with a custom base URL so any compatible provider works.
    Retries rate limits, connection failures and 5xx responses with
    exponential backoff; every other failure is raised as LLMError.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
        """
        self._settings = settings or get_settings()
        self._client = OpenAI(
            api_key=self._settings.ai_api_key,
            base_url=self._settings.ai_base_url,
            timeout=self._settings.ai_timeout_seconds,
            max_retries=0,
        )

        # Retry configuration
        self._max_retries = self._settings.ai_max_retries
        self._base_delay = 1.0  # seconds
        self._max_delay = 30.0  # seconds

    @property
    def model(self) -> str:
        return self._settings.ai_model

    def complete(
        self,
        messages: list[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a completion for a list of chat messages.

        Args:
            messages: Role-tagged messages to send.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens in response.
            json_mode: Ask the provider for a JSON object. The reply is
                still not guaranteed to be valid JSON.

        Returns:
            The generated text response.

        Raises:
            LLMError: If generation fails after all retries.
        """
        logger.debug(
            "LLM request started (model=%s, temperature=%s, max_tokens=%s, json_mode=%s, messages=%d)",
            self._settings.ai_model,
            temperature,
            max_tokens,
            json_mode,
            len(messages),
        )
        started = time.monotonic()
        content = self._call_with_retry(messages, temperature, max_tokens, json_mode)
        logger.debug(
            "LLM request finished in %.2fs (%d chars)", time.monotonic() - started, len(content)
        )
        return content

    async def acomplete(
        self,
        messages: list[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        """
        Awaitable variant of ``complete``.

        Runs the blocking call in a worker thread and enforces the configured
        hard timeout, so a stalled provider cannot hold a grading job forever.

        Raises:
            LLMError: On failure or timeout.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.complete, messages, temperature, max_tokens, json_mode),
                timeout=self._settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("LLM request timed out after %ss", self._settings.ai_timeout_seconds)
            raise LLMError(
                f"Request timed out after {self._settings.ai_timeout_seconds}s",
                cause=e,
                retryable=True,
            ) from e

    def _call_with_retry(
        self,
        messages: list[ChatMessage],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        """
        Call the API with exponential backoff retry.

        Raises:
            LLMError: If all retries fail.
        """
        last_error: Exception | None = None
        extra: dict[str, object] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}

        for attempt in range(self._max_retries + 1):
            try:
                response = self._client.chat.completions.create(
                    model=self._settings.ai_model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **extra,  # type: ignore[arg-type]
                )

                if response.choices and response.choices[0].message.content:
                    return response.choices[0].message.content

                raise LLMError("Empty response from LLM")

            except LLMError:
                raise

            except APITimeoutError as e:
                logger.warning("LLM request timed out: %s", e)
                raise LLMError("Request timed out", cause=e, retryable=True) from e

            except RateLimitError as e:
                last_error = e
                if attempt < self._max_retries:
                    self._backoff(attempt, e)
                    continue
                raise LLMError(
                    f"Rate limit exceeded after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIConnectionError as e:
                last_error = e
                if attempt < self._max_retries:
                    self._backoff(attempt, e)
                    continue
                raise LLMError(
                    f"Connection failed after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIStatusError as e:
                # Don't retry on client errors (4xx except 429)
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise LLMError(
                        f"API error: {e.message}",
                        cause=e,
                        retryable=False,
                    ) from e

                last_error = e
                if attempt < self._max_retries:
                    self._backoff(attempt, e)
                    continue
                raise LLMError(
                    f"API error after {self._max_retries} retries: {e.message}",
                    cause=e,
                    retryable=True,
                ) from e

            except Exception as e:
                raise LLMError(f"Unexpected error: {e}", cause=e, retryable=False) from e

        raise LLMError(f"Failed after {self._max_retries} retries", cause=last_error)

    def _backoff(self, attempt: int, error: Exception) -> None:
        delay = self._calculate_delay(attempt)
        logger.info("LLM request failed (%s), retrying in %.1fs", type(error).__name__, delay)
        time.sleep(delay)

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._base_delay * (2**attempt)
        return min(delay, self._max_delay)

    def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = self._client.chat.completions.create(
                model=self._settings.ai_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return False
