"""AgentCaller: Anthropic SDK wrapper with retry, timeout, and token tracking."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone

import anthropic

from citation_consensus.contracts import TokenUsage

logger = logging.getLogger(__name__)

# Pricing per million tokens
_PRICING: dict[str, dict[str, float]] = {
    "claude-haiku-4-5-20251001": {"input": 0.80, "output": 4.00},
    "claude-sonnet-4-5-20250929": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
}

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.InternalServerError,
    anthropic.APIConnectionError,  # includes APITimeoutError
    asyncio.TimeoutError,
)


def compute_cost(model: str, input_tokens: int, output_tokens: int) -> tuple[float, float]:
    """Return (input_cost, output_cost) in USD. Unknown models cost 0."""
    pricing = _PRICING.get(model)
    if pricing is None:
        return 0.0, 0.0
    return (
        input_tokens * pricing["input"] / 1_000_000,
        output_tokens * pricing["output"] / 1_000_000,
    )


def is_retryable(error: BaseException) -> bool:
    """Transient failures are retried; 4xx other than 429 are not."""
    if isinstance(error, _RETRYABLE):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return False


class AgentCallError(RuntimeError):
    """An agent call that did not produce a response."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        attempts: int,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.attempts = attempts
        self.status_code = status_code


class AgentCaller:
    """Wraps Anthropic API calls with bounded retries and concurrency control.

    Retry budget: ``max_retries`` retries after the first attempt, with
    exponential backoff (min_delay * 2**attempt, capped at max_delay) and
    multiplicative jitter in [1, 2). Every attempt is bounded by ``timeout``.
    """

    def __init__(
        self,
        *,
        api_key: str,
        max_concurrent: int = 10,
        max_retries: int = 3,
        timeout: float = 60.0,
        min_delay: float = 1.0,
        max_delay: float = 10.0,
    ) -> None:
        # SDK-level retries are disabled so the budget below is the only one
        self._client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0, timeout=timeout)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._max_retries = max_retries
        self._timeout = timeout
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._usage_log: list[TokenUsage] = []

    @classmethod
    def from_settings(cls, settings) -> AgentCaller:
        return cls(
            api_key=settings.anthropic_api_key,
            max_concurrent=settings.max_concurrent_requests,
            max_retries=settings.agent_max_retries,
            timeout=settings.agent_timeout,
            min_delay=settings.retry_min_delay,
            max_delay=settings.retry_max_delay,
        )

    async def call(
        self,
        *,
        prompt: str,
        model: str,
        agent_name: str,
        max_tokens: int = 1024,
        temperature: float | None = None,
    ) -> tuple[str, TokenUsage]:
        """Make an API call with retry and token tracking.

        Returns (response_text, token_usage). Raises AgentCallError.
        """
        async with self._semaphore:
            return await self._call_with_retry(
                prompt=prompt,
                model=model,
                agent_name=agent_name,
                max_tokens=max_tokens,
                temperature=temperature,
            )

    def _backoff(self, attempt: int) -> float:
        delay = min(self._max_delay, self._min_delay * (2**attempt))
        return delay * random.uniform(1.0, 2.0) if delay > 0 else 0.0

    async def _call_with_retry(
        self,
        *,
        prompt: str,
        model: str,
        agent_name: str,
        max_tokens: int,
        temperature: float | None,
    ) -> tuple[str, TokenUsage]:
        kwargs: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        total_attempts = self._max_retries + 1
        last_error: BaseException | None = None

        for attempt in range(total_attempts):
            try:
                response = await asyncio.wait_for(
                    self._client.messages.create(**kwargs), timeout=self._timeout
                )
            except Exception as e:
                if not is_retryable(e):
                    status = getattr(e, "status_code", None)
                    logger.error(
                        "Agent %s failed with non-retryable error (status=%s): %s",
                        agent_name,
                        status,
                        e,
                    )
                    raise AgentCallError(
                        f"{agent_name}: non-retryable error: {e}",
                        retryable=False,
                        attempts=attempt + 1,
                        status_code=status,
                    ) from e

                last_error = e
                if attempt + 1 >= total_attempts:
                    break
                wait = self._backoff(attempt)
                logger.warning(
                    "Retrying agent %s (attempt %d/%d) in %.1fs: %s",
                    agent_name,
                    attempt + 2,
                    total_attempts,
                    wait,
                    type(e).__name__,
                )
                await asyncio.sleep(wait)
                continue

            text = ""
            for block in response.content:
                if block.type == "text":
                    text += block.text

            usage = self._track_usage(response, agent_name, model)
            return text, usage

        logger.error("Agent %s exhausted %d attempts: %s", agent_name, total_attempts, last_error)
        raise AgentCallError(
            f"{agent_name}: failed after {total_attempts} attempts: {last_error}",
            retryable=True,
            attempts=total_attempts,
            status_code=getattr(last_error, "status_code", None),
        ) from last_error

    def _track_usage(self, response, agent_name: str, model: str) -> TokenUsage:
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        input_cost, output_cost = compute_cost(model, input_tokens, output_tokens)

        usage = TokenUsage(
            agent=agent_name,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_usd=round(input_cost + output_cost, 6),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._usage_log.append(usage)
        return usage

    @property
    def total_tokens(self) -> int:
        return sum(u["total_tokens"] for u in self._usage_log)

    @property
    def total_cost(self) -> float:
        return sum(u["cost_usd"] for u in self._usage_log)
