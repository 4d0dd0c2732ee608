"""Tests for agents.base.AgentCaller: retry budget, error classes and token tracking."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from citation_consensus.agents.base import (
    AgentCallError,
    AgentCaller,
    compute_cost,
    is_retryable,
)

# --- Helpers ---


def _make_response(
    text: str, input_tokens: int = 100, output_tokens: int = 50
) -> SimpleNamespace:
    """Build a minimal mock response matching Anthropic SDK shape."""
    text_block = SimpleNamespace(type="text", text=text)
    usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
    return SimpleNamespace(content=[text_block], usage=usage)


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return cls("boom", response=httpx.Response(status, request=request), body=None)


def _make_caller(max_retries: int = 2) -> AgentCaller:
    return AgentCaller(
        api_key="test-key",
        max_concurrent=2,
        max_retries=max_retries,
        timeout=5.0,
        min_delay=0.0,
        max_delay=0.0,
    )


_CALL_KWARGS = dict(
    prompt="Validate this citation.",
    model="claude-haiku-4-5-20251001",
    agent_name="citation_authority_validator_v1",
)


class TestCallHappyPath:
    @pytest.mark.asyncio
    async def test_returns_text_and_usage(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(return_value=_make_response("SCORE: 9"))
        text, usage = await caller.call(**_CALL_KWARGS)
        assert text == "SCORE: 9"
        assert usage["agent"] == "citation_authority_validator_v1"
        assert usage["total_tokens"] == 150
        assert usage["cost_usd"] == pytest.approx(100 * 0.80 / 1e6 + 50 * 4.00 / 1e6)
        assert caller._client.messages.create.call_count == 1

    @pytest.mark.asyncio
    async def test_concatenates_text_blocks_only(self):
        caller = _make_caller()
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="thinking", text="ignored"),
                SimpleNamespace(type="text", text="SCORE: "),
                SimpleNamespace(type="text", text="8"),
            ],
            usage=SimpleNamespace(input_tokens=1, output_tokens=1),
        )
        caller._client.messages.create = AsyncMock(return_value=response)
        text, _ = await caller.call(**_CALL_KWARGS)
        assert text == "SCORE: 8"

    @pytest.mark.asyncio
    async def test_passes_temperature_when_set(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(return_value=_make_response("x"))
        await caller.call(**_CALL_KWARGS, temperature=0.0, max_tokens=2048)
        kwargs = caller._client.messages.create.call_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 2048

    @pytest.mark.asyncio
    async def test_usage_accumulates(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(return_value=_make_response("x"))
        await caller.call(**_CALL_KWARGS)
        await caller.call(**_CALL_KWARGS)
        assert caller.total_tokens == 300
        assert caller.total_cost > 0


class TestRetry:
    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(
            side_effect=[_status_error(anthropic.RateLimitError, 429), _make_response("SCORE: 7")]
        )
        text, _ = await caller.call(**_CALL_KWARGS)
        assert text == "SCORE: 7"
        assert caller._client.messages.create.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(
            side_effect=[asyncio.TimeoutError(), _make_response("ok")]
        )
        text, _ = await caller.call(**_CALL_KWARGS)
        assert text == "ok"

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        caller = _make_caller(max_retries=2)
        caller._client.messages.create = AsyncMock(
            side_effect=_status_error(anthropic.InternalServerError, 500)
        )
        with pytest.raises(AgentCallError) as exc_info:
            await caller.call(**_CALL_KWARGS)
        assert exc_info.value.retryable is True
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 500
        assert caller._client.messages.create.call_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        caller = _make_caller()
        caller._client.messages.create = AsyncMock(
            side_effect=_status_error(anthropic.BadRequestError, 400)
        )
        with pytest.raises(AgentCallError) as exc_info:
            await caller.call(**_CALL_KWARGS)
        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == 400
        assert caller._client.messages.create.call_count == 1
        assert caller.total_tokens == 0


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(_status_error(anthropic.RateLimitError, 429))
        assert is_retryable(asyncio.TimeoutError())
        assert not is_retryable(_status_error(anthropic.AuthenticationError, 401))
        assert not is_retryable(ValueError("bad"))

    def test_compute_cost_unknown_model(self):
        assert compute_cost("mystery-model", 1000, 1000) == (0.0, 0.0)

    def test_compute_cost_known_model(self):
        input_cost, output_cost = compute_cost("claude-sonnet-4-5-20250929", 1_000_000, 1_000_000)
        assert input_cost == pytest.approx(3.0)
        assert output_cost == pytest.approx(15.0)
