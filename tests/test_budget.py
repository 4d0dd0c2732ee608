"""Tests for budget/tracker.py: per-model token and cost accounting."""

from __future__ import annotations

import logging

import pytest

from citation_consensus.budget.tracker import CostTracker, calculate_run_cost


def _usage(model: str, input_tokens: int, output_tokens: int, cost: float = 0.0) -> dict:
    return {
        "agent": "a",
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "cost_usd": cost,
        "timestamp": "2026-01-01T00:00:00+00:00",
    }


class TestCostTracker:
    def test_totals(self):
        tracker = CostTracker()
        tracker.record(_usage("claude-haiku-4-5-20251001", 1000, 200, 0.0016))
        tracker.record(_usage("claude-haiku-4-5-20251001", 500, 100, 0.0008))
        assert tracker.total_tokens == 1800
        assert tracker.total_cost == pytest.approx(0.0024)
        assert "1,800" in tracker.summary()

    def test_run_cost_by_model(self):
        tracker = CostTracker()
        tracker.record(_usage("claude-haiku-4-5-20251001", 1_000_000, 0))
        tracker.record(_usage("claude-sonnet-4-5-20250929", 0, 1_000_000))
        cost = tracker.run_cost()
        assert cost["by_model"]["claude-haiku-4-5-20251001"]["input_cost"] == pytest.approx(0.8)
        assert cost["by_model"]["claude-sonnet-4-5-20250929"]["output_cost"] == pytest.approx(15.0)
        assert cost["total"]["total_cost"] == pytest.approx(15.8)
        assert cost["total"]["currency"] == "USD"

    def test_empty(self):
        cost = CostTracker().run_cost()
        assert cost["by_model"] == {}
        assert cost["total"]["total_cost"] == 0.0


class TestCalculateRunCost:
    def test_reads_verdict_usage(self):
        verdicts = [
            {"agent": "a", "token_usage": _usage("claude-haiku-4-5-20251001", 1000, 100)},
            {"agent": "b"},
        ]
        cost = calculate_run_cost(verdicts)
        entry = cost["by_model"]["claude-haiku-4-5-20251001"]
        assert entry["input_tokens"] == 1000
        assert entry["output_tokens"] == 100
        assert entry["total_cost"] == pytest.approx(0.0012)

    def test_summary_logged(self, caplog):
        verdicts = [{"agent": "a", "token_usage": _usage("claude-haiku-4-5-20251001", 1000, 100)}]
        with caplog.at_level(logging.DEBUG, logger="citation_consensus.budget.tracker"):
            calculate_run_cost(verdicts)
        assert "Panel of 1 verdicts" in caplog.text
        assert "Tokens: 1,100" in caplog.text
