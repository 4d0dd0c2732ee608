"""Stage 3 escalation: M investigators re-examine a disputed citation.

Investigators receive the Stage 2 consensus so they see where the panel
disagreed. Their verdicts are aggregated by scoring.resolution.
"""

from __future__ import annotations

from citation_consensus.agents.base import AgentCaller
from citation_consensus.agents.specs import TIER3_PANEL, AgentSpec
from citation_consensus.budget.tracker import calculate_run_cost
from citation_consensus.contracts import (
    Citation,
    ConsensusResult,
    Tier,
    TierThreeResult,
)
from citation_consensus.deliberate.panel import PanelOutcome, fan_out
from citation_consensus.scoring.resolution import resolve_final_status


async def investigate(
    caller: AgentCaller,
    citation: Citation,
    context: str,
    consensus: ConsensusResult | None,
    *,
    model: str,
    panel: tuple[AgentSpec, ...] = TIER3_PANEL,
) -> PanelOutcome:
    """Run the Stage 3 investigators against one escalated citation."""
    return await fan_out(
        caller,
        panel,
        citation,
        context,
        model=model,
        tier=Tier.TIER3,
        consensus=consensus,
    )


class EscalationEvaluator:
    """Stage 3 evaluator: investigators -> final status -> TierThreeResult."""

    def __init__(
        self,
        caller: AgentCaller,
        *,
        model: str,
        panel: tuple[AgentSpec, ...] = TIER3_PANEL,
    ) -> None:
        self._caller = caller
        self._model = model
        self._panel = panel

    async def __call__(
        self,
        citation: Citation,
        context: str,
        consensus: ConsensusResult | None,
    ) -> TierThreeResult:
        outcome = await investigate(
            self._caller, citation, context, consensus, model=self._model, panel=self._panel
        )
        verdicts = outcome.require_complete()
        return TierThreeResult(
            panel_evaluation=verdicts,
            consensus=resolve_final_status(verdicts),
            run_cost=calculate_run_cost(verdicts),
        )
