"""LLM Layer — all remediation reasoning calls go through this layer.

Uses AsyncAnthropic + Instructor for structured outputs, with retry on
transient API errors and a circuit breaker so a failing provider turns
into fast remediation failures instead of a stalled audit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import anthropic
import instructor
from pydantic import BaseModel

from dq_audit.config import MODEL_MAP, ModelTier, settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Metadata from an LLM call, recorded alongside remediation attempts."""

    model_version: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    stop_reason: str = ""
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CircuitBreaker:
    """Circuit breaker for the reasoning provider.

    States: CLOSED (normal) → OPEN (fail-fast) → HALF_OPEN (one trial call).
    Opens after `failure_threshold` consecutive failures and moves to
    HALF_OPEN once `reset_timeout` seconds have passed.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> str:
        if self._state == self.OPEN and time.monotonic() - self._last_failure_time >= self.reset_timeout:
            self._state = self.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = self.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            logger.warning("Circuit breaker OPEN after %d consecutive failures", self._failure_count)

    def allow_request(self) -> bool:
        return self.state != self.OPEN


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit breaker is open and rejecting requests."""


_RETRYABLE = (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError)


async def _retry_with_backoff(
    coro_factory,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    circuit_breaker: CircuitBreaker | None = None,
):
    """Retry an async call with exponential backoff.

    Args:
        coro_factory: Callable that returns a new coroutine each time.
        max_retries: Maximum number of retries (0 = no retry).
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap.
        circuit_breaker: Optional circuit breaker instance.
    """
    if circuit_breaker and not circuit_breaker.allow_request():
        raise CircuitBreakerOpenError("Circuit breaker is open. Reasoning calls temporarily disabled.")

    for attempt in range(max_retries + 1):
        try:
            result = await coro_factory()
        except _RETRYABLE as e:
            if circuit_breaker:
                circuit_breaker.record_failure()
            if attempt >= max_retries:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                "LLM call attempt %d/%d failed (%s), retrying in %.1fs",
                attempt + 1, max_retries + 1, type(e).__name__, delay,
            )
            await asyncio.sleep(delay)
        except Exception:
            if circuit_breaker:
                circuit_breaker.record_failure()
            raise
        else:
            if circuit_breaker:
                circuit_breaker.record_success()
            return result


class LLMLayer:
    """Centralized LLM access for the remediation engine.

    Only structured completions are needed: the reasoning collaborator
    must answer with a validated RemediationProposal.
    """

    def __init__(self) -> None:
        self.raw_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.client = instructor.from_anthropic(self.raw_client)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

    async def complete_structured(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        response_model: type[BaseModel],
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Structured output with Pydantic validation + auto-retry.

        Args:
            messages: Conversation messages.
            model_tier: "opus", "sonnet", or "haiku".
            response_model: Pydantic model class for output validation.
            system: System prompt.
            max_tokens: Max output tokens.
            max_retries: Instructor retry count on validation failure.
            temperature: Sampling temperature (0.0 = deterministic).

        Returns:
            Tuple of (validated Pydantic model, LLMResponse metadata).
        """
        kwargs: dict[str, Any] = {
            "model": MODEL_MAP[model_tier],
            "max_tokens": max_tokens or settings.default_max_tokens,
            "messages": messages,
            "response_model": response_model,
            "max_retries": max_retries or settings.default_max_retries,
            "temperature": temperature if temperature is not None else settings.default_temperature,
        }
        if system:
            kwargs["system"] = system

        result, raw_response = await _retry_with_backoff(
            coro_factory=lambda: self.client.messages.create_with_completion(**kwargs),
            max_retries=3,
            circuit_breaker=self.circuit_breaker,
        )
        return result, self._extract_metadata(raw_response, model_tier)

    def _extract_metadata(self, response: anthropic.types.Message, model_tier: ModelTier) -> LLMResponse:
        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0)
        output_tokens = getattr(usage, "output_tokens", 0)
        cached = getattr(usage, "cache_read_input_tokens", 0) or 0
        return LLMResponse(
            model_version=response.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cached_input_tokens=cached,
            stop_reason=response.stop_reason or "",
            cost=self.estimate_cost(model_tier, input_tokens, output_tokens, cached),
        )

    def estimate_cost(
        self,
        model_tier: ModelTier,
        input_tokens: int,
        output_tokens: int,
        cached_input_tokens: int = 0,
    ) -> float:
        """Estimate USD cost of one call (prices per million tokens, 2026-02)."""
        prices = {
            "opus":   {"input": 15.0, "output": 75.0, "cache_read": 1.50},
            "sonnet": {"input": 3.0,  "output": 15.0, "cache_read": 0.30},
            "haiku":  {"input": 0.80, "output": 4.0,  "cache_read": 0.08},
        }
        p = prices[model_tier]
        cost = (
            ((input_tokens - cached_input_tokens) / 1_000_000) * p["input"]
            + (cached_input_tokens / 1_000_000) * p["cache_read"]
            + (output_tokens / 1_000_000) * p["output"]
        )
        return round(cost, 6)
