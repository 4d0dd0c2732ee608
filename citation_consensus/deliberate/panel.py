"""Stage 2 panel: N validators evaluate one citation in parallel.

All agents run to completion (no early exit). An agent whose call fails
after retries is recorded as missing; a panel with missing verdicts is
never scored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from citation_consensus.agents.base import AgentCaller
from citation_consensus.agents.invoker import invoke_agent
from citation_consensus.agents.specs import TIER2_PANEL, AgentSpec
from citation_consensus.budget.tracker import calculate_run_cost
from citation_consensus.contracts import (
    AgentVerdict,
    Citation,
    ConsensusResult,
    IncompletePanelError,
    Tier,
    TierTwoResult,
)
from citation_consensus.scoring.consensus import calculate_consensus

logger = logging.getLogger(__name__)


@dataclass
class PanelOutcome:
    """Verdicts collected from one panel run, in panel order."""

    tier: Tier
    panel_size: int
    verdicts: list[AgentVerdict] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.missing and len(self.verdicts) == self.panel_size

    def require_complete(self) -> list[AgentVerdict]:
        if not self.complete:
            raise IncompletePanelError(self.tier.value, self.missing)
        return self.verdicts


async def fan_out(
    caller: AgentCaller,
    specs: tuple[AgentSpec, ...],
    citation: Citation,
    context: str,
    *,
    model: str,
    tier: Tier,
    consensus: ConsensusResult | None = None,
) -> PanelOutcome:
    """Invoke every agent concurrently and wait for all of them to settle."""
    results = await asyncio.gather(
        *(
            invoke_agent(caller, spec, citation, context, model=model, consensus=consensus)
            for spec in specs
        ),
        return_exceptions=True,
    )

    outcome = PanelOutcome(tier=tier, panel_size=len(specs))
    for spec, result in zip(specs, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            outcome.missing.append(spec.id)
            outcome.errors[spec.id] = str(result)
            logger.error(
                "Agent %s produced no verdict for citation %s: %s",
                spec.id,
                citation.get("id", "?"),
                result,
            )
        else:
            outcome.verdicts.append(result)
    return outcome


async def run_panel(
    caller: AgentCaller,
    citation: Citation,
    context: str,
    *,
    model: str,
    panel: tuple[AgentSpec, ...] = TIER2_PANEL,
) -> PanelOutcome:
    """Run the Stage 2 panel against one citation."""
    return await fan_out(caller, panel, citation, context, model=model, tier=Tier.TIER2)


class PanelEvaluator:
    """Stage 2 evaluator: panel -> consensus -> TierTwoResult.

    Raises IncompletePanelError when any agent is missing so the queue
    item is retried instead of scored on a partial panel.
    """

    def __init__(
        self,
        caller: AgentCaller,
        *,
        model: str,
        panel: tuple[AgentSpec, ...] = TIER2_PANEL,
    ) -> None:
        self._caller = caller
        self._model = model
        self._panel = panel

    async def __call__(self, citation: Citation, context: str) -> TierTwoResult:
        outcome = await run_panel(
            self._caller, citation, context, model=self._model, panel=self._panel
        )
        verdicts = outcome.require_complete()
        return TierTwoResult(
            panel_evaluation=verdicts,
            consensus=calculate_consensus(verdicts),
            run_cost=calculate_run_cost(verdicts),
        )
