"""
Resilient wrapper around the OpenAI embedding and chat completion endpoints.

Both operations go through a single ``_call`` path that applies the overall
deadline, retry classification, exponential backoff with jitter and the
circuit breaker, so embeddings and generations behave identically under failure.
"""

import asyncio
import math
import random
import time
from typing import Any, Awaitable, Callable, Optional

import httpx
import openai
from loguru import logger
from openai import AsyncOpenAI

from shared.config import Settings, get_settings
from shared.errors import (
    CircuitOpenError,
    DeadlineExceededError,
    MaxRetriesExceededError,
    PermanentProviderError,
    ResponseValidationError,
    describe,
)

from .breaker import CircuitBreaker

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404})

RETRYABLE_MESSAGES = (
    "connection refused",
    "connection reset",
    "timeout",
    "timed out",
    "temporary failure",
    "unexpected end of stream",
)

CALLER_ABORT_MESSAGES = ("context canceled", "deadline exceeded")

PING_PROMPT = "Explain how AI works in a few words"


def status_code_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an SDK or httpx error, if any."""
    if isinstance(error, openai.APIStatusError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether a failed call is worth repeating.

    Depends only on the error itself, so the same error always gets the same verdict.
    """
    if isinstance(error, (asyncio.CancelledError, DeadlineExceededError)):
        return False

    message = str(error)
    lowered = message.lower()
    if any(marker in lowered for marker in CALLER_ABORT_MESSAGES):
        return False

    status = status_code_of(error)
    if status in RETRYABLE_STATUS_CODES:
        return True
    if status in PERMANENT_STATUS_CODES:
        return False

    if isinstance(
        error,
        (
            openai.APIConnectionError,  # includes APITimeoutError
            httpx.TimeoutException,
            httpx.NetworkError,
            httpx.RemoteProtocolError,
            ConnectionError,
            TimeoutError,
        ),
    ):
        return True

    return "EOF" in message or any(marker in lowered for marker in RETRYABLE_MESSAGES)


class ResilientClient:
    """Embeds text and generates content with retries and a circuit breaker."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self.breaker = breaker or CircuitBreaker(self.settings.circuit_breaker_max)
        self.max_retries = self.settings.client_max_retries
        self.base_delay = self.settings.client_base_delay
        self.max_delay = self.settings.client_max_delay
        self.request_timeout = self.settings.client_request_timeout
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create OpenAI client. Retries are ours, so the SDK's are off."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key.get_secret_value(),
                base_url=self.settings.openai_base_url,
                max_retries=0,
                timeout=self.request_timeout,
            )
        return self._client

    def now(self) -> float:
        """Current time on the clock deadlines are expressed in."""
        return self._clock()

    # -------------------------------------------------------------------------
    # Circuit breaker introspection
    # -------------------------------------------------------------------------

    def circuit_status(self) -> tuple[int, bool]:
        """Return (consecutive_failures, is_open)."""
        return self.breaker.status()

    def reset_circuit(self) -> None:
        self.breaker.reset()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def embed(self, text: str, deadline: Optional[float] = None) -> list[float]:
        """
        Embed text with the configured embedding model.

        Args:
            text: Text to embed; truncated to ``embedding_max_chars``
            deadline: Absolute time on ``now()`` after which the call gives up

        Returns:
            The embedding vector
        """
        trimmed = (text or "").strip()
        if not trimmed:
            raise ValueError("text for embedding cannot be empty")

        max_chars = self.settings.embedding_max_chars
        if len(trimmed) > max_chars:
            logger.warning(
                f"Text length {len(trimmed)} exceeds embedding limit {max_chars}, truncating"
            )
            trimmed = trimmed[:max_chars]

        model = self.settings.embedding_model

        async def request():
            return await self.client.embeddings.create(model=model, input=trimmed)

        return await self._call("embed", request, self._validate_embedding, deadline)

    async def generate(
        self, model: str, prompt: str, deadline: Optional[float] = None
    ) -> str:
        """
        Generate content for a prompt.

        Returns:
            Text of the first choice
        """
        model = (model or "").strip()
        if not model:
            raise ValueError("model name cannot be empty")
        if not (prompt or "").strip():
            raise ValueError("prompt cannot be empty")

        async def request():
            return await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.settings.generation_temperature,
            )

        return await self._call("generate", request, self._validate_generation, deadline)

    async def ping(self) -> str:
        """One-shot generation to check the provider is reachable."""
        return await self.generate(self.settings.generation_model, PING_PROMPT)

    # -------------------------------------------------------------------------
    # Retry machinery
    # -------------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retry ``attempt`` (1-based): exponential, capped, with
        a jitter of +/-12.5% around the nominal value.
        """
        delay = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        jitter = delay * 0.25
        return delay - jitter / 2 + jitter * self._rng.random()

    def _detail(self, error: BaseException) -> str:
        return describe(error, self.settings.is_production)

    async def _call(
        self,
        operation: str,
        request: Callable[[], Awaitable[Any]],
        validate: Callable[[Any], Any],
        deadline: Optional[float],
    ) -> Any:
        failures, is_open = self.breaker.status()
        if is_open:
            logger.bind(event="circuit_rejected", operation=operation, failures=failures).warning(
                f"Circuit breaker open, rejecting {operation}"
            )
            raise CircuitOpenError(failures)

        effective_deadline = self._clock() + self.request_timeout
        if deadline is not None:
            effective_deadline = min(effective_deadline, deadline)

        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                remaining = effective_deadline - self._clock()
                if delay >= remaining:
                    self.breaker.record_failure()
                    raise DeadlineExceededError(
                        f"deadline exceeded before retry {attempt}/{self.max_retries} "
                        f"of {operation} (needed {delay:.2f}s, {max(remaining, 0.0):.2f}s left)"
                    ) from last_error

                logger.bind(
                    event="retry", operation=operation, attempt=attempt, delay=round(delay, 3)
                ).warning(f"Retry attempt {attempt}/{self.max_retries} for {operation} after {delay:.2f}s")
                await self._sleep(delay)

            remaining = effective_deadline - self._clock()
            if remaining <= 0:
                self.breaker.record_failure()
                raise DeadlineExceededError(
                    f"deadline exceeded before attempt {attempt + 1} of {operation}"
                ) from last_error

            try:
                response = await asyncio.wait_for(request(), timeout=remaining)
            except asyncio.TimeoutError as e:
                if self._clock() >= effective_deadline:
                    self.breaker.record_failure()
                    raise DeadlineExceededError(
                        f"deadline exceeded during attempt {attempt + 1} of {operation}"
                    ) from e
                last_error = e
                logger.warning(f"Retryable error on attempt {attempt + 1} of {operation}: {self._detail(e)}")
                continue
            except Exception as e:
                last_error = e
                if not is_retryable(e):
                    self.breaker.record_failure()
                    logger.bind(event="permanent_failure", operation=operation).error(
                        f"Non-retryable error for {operation}: {self._detail(e)}"
                    )
                    raise PermanentProviderError(
                        f"{operation} failed: {e}",
                        operation=operation,
                        status_code=status_code_of(e),
                        retryable=False,
                    ) from e

                logger.warning(f"Retryable error on attempt {attempt + 1} of {operation}: {self._detail(e)}")
                continue

            self.breaker.record_success()
            return validate(response)

        self.breaker.record_failure()
        logger.bind(event="retries_exhausted", operation=operation).error(
            f"Max retries ({self.max_retries}) exceeded for {operation}: {self._detail(last_error)}"
        )
        raise MaxRetriesExceededError(
            f"max retries ({self.max_retries}) exceeded for {operation}: {last_error}",
            operation=operation,
            status_code=status_code_of(last_error) if last_error else None,
            retryable=True,
        ) from last_error

    # -------------------------------------------------------------------------
    # Response validation
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_embedding(response: Any) -> list[float]:
        if response is None:
            raise ResponseValidationError("embedding response is nil")

        data = getattr(response, "data", None) or []
        if not data:
            raise ResponseValidationError("no embeddings returned")

        values = getattr(data[0], "embedding", None) or []
        if not values:
            raise ResponseValidationError("embedding vector is empty")

        vector = []
        for i, value in enumerate(values):
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ResponseValidationError(
                    f"invalid embedding value at index {i}: {value!r}"
                ) from None
            if not math.isfinite(number):
                raise ResponseValidationError(f"invalid embedding value at index {i}: {value}")
            vector.append(number)
        return vector

    @staticmethod
    def _validate_generation(response: Any) -> str:
        if response is None:
            raise ResponseValidationError("generation response is nil")

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ResponseValidationError("no candidates in response")

        message = getattr(choices[0], "message", None)
        if message is None:
            raise ResponseValidationError("candidate content is nil")

        content = getattr(message, "content", None)
        if not content or not content.strip():
            raise ResponseValidationError("no parts in content")
        return content
