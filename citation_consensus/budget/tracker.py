"""Token and cost accounting across a panel's agent calls."""

from __future__ import annotations

import logging

from citation_consensus.agents.base import compute_cost
from citation_consensus.contracts import AgentVerdict, RunCost, TokenUsage

logger = logging.getLogger(__name__)


class CostTracker:
    """Accumulates token usage and prices it per model."""

    def __init__(self) -> None:
        self._usage: list[TokenUsage] = []

    def record(self, usage: TokenUsage) -> None:
        self._usage.append(usage)

    @property
    def total_tokens(self) -> int:
        return sum(u["input_tokens"] + u["output_tokens"] for u in self._usage)

    @property
    def total_cost(self) -> float:
        return sum(u["cost_usd"] for u in self._usage)

    def usage_by_model(self) -> dict[str, dict[str, int]]:
        by_model: dict[str, dict[str, int]] = {}
        for u in self._usage:
            entry = by_model.setdefault(u["model"], {"input_tokens": 0, "output_tokens": 0})
            entry["input_tokens"] += u["input_tokens"]
            entry["output_tokens"] += u["output_tokens"]
        return by_model

    def run_cost(self) -> RunCost:
        """Cost breakdown per model plus the total, in USD."""
        by_model: dict[str, dict[str, float | str]] = {}
        total_in = total_out = 0.0
        for model, tokens in self.usage_by_model().items():
            input_cost, output_cost = compute_cost(
                model, tokens["input_tokens"], tokens["output_tokens"]
            )
            by_model[model] = {
                "input_tokens": tokens["input_tokens"],
                "output_tokens": tokens["output_tokens"],
                "input_cost": round(input_cost, 6),
                "output_cost": round(output_cost, 6),
                "total_cost": round(input_cost + output_cost, 6),
            }
            total_in += input_cost
            total_out += output_cost

        return RunCost(
            by_model=by_model,
            total={
                "input_cost": round(total_in, 6),
                "output_cost": round(total_out, 6),
                "total_cost": round(total_in + total_out, 6),
                "currency": "USD",
            },
        )

    def summary(self) -> str:
        return f"Tokens: {self.total_tokens:,} | Cost: ${self.total_cost:.4f}"


def calculate_run_cost(verdicts: list[AgentVerdict]) -> RunCost:
    """Run cost of a panel from the token usage recorded on each verdict."""
    tracker = CostTracker()
    for v in verdicts:
        usage = v.get("token_usage")
        if usage:
            tracker.record(usage)
    logger.debug("Panel of %d verdicts. %s", len(verdicts), tracker.summary())
    return tracker.run_cost()
