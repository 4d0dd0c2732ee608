"""Tests for deliberate.panel and deliberate.escalation."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from citation_consensus.agents.base import AgentCaller
from citation_consensus.agents.specs import TIER2_PANEL, TIER3_PANEL
from citation_consensus.contracts import (
    IncompletePanelError,
    StageThreeEvaluator,
    StageTwoEvaluator,
    Tier,
)
from citation_consensus.deliberate.escalation import EscalationEvaluator, investigate
from citation_consensus.deliberate.panel import PanelEvaluator, PanelOutcome, run_panel

# --- Helpers ---

_HAIKU = "claude-haiku-4-5-20251001"
_SONNET = "claude-sonnet-4-5-20250929"


def _make_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=500, output_tokens=80),
    )


def _scripted_caller(replies: dict[str, str], failing: tuple[str, ...] = ()) -> AgentCaller:
    """Answer each agent by its display name; agents in ``failing`` get a 400."""
    caller = AgentCaller(api_key="test-key", max_retries=0, min_delay=0.0, max_delay=0.0)

    def respond(**kwargs):
        prompt = kwargs["messages"][0]["content"]
        for name in failing:
            if f"You are the {name}" in prompt:
                request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
                raise anthropic.BadRequestError(
                    "bad request", response=httpx.Response(400, request=request), body=None
                )
        for name, text in replies.items():
            if f"You are the {name}" in prompt:
                return _make_response(text)
        return _make_response(replies.get("*", ""))

    caller._client.messages.create = AsyncMock(side_effect=respond)
    return caller


_CONSENSUS = {
    "agreement_level": "split",
    "confidence_score": 0.5,
    "escalation_trigger": True,
    "recommendation": "CITATION_UNCERTAIN",
    "reasoning": "Panel split.",
    "format": "score",
    "verdict_counts": {"VALID": 2, "INVALID": 2, "UNCERTAIN": 1},
    "panel_size": 5,
}


class TestPanelOutcome:
    def test_complete(self):
        outcome = PanelOutcome(tier=Tier.TIER2, panel_size=1, verdicts=[{"agent": "a"}])
        assert outcome.complete
        assert outcome.require_complete() == [{"agent": "a"}]

    def test_incomplete_raises(self):
        outcome = PanelOutcome(tier=Tier.TIER2, panel_size=2, verdicts=[{"agent": "a"}], missing=["b"])
        with pytest.raises(IncompletePanelError) as exc_info:
            outcome.require_complete()
        assert exc_info.value.missing == ["b"]
        assert "b" in str(exc_info.value)


class TestRunPanel:
    @pytest.mark.asyncio
    async def test_all_agents_answer(self, sample_citations):
        caller = _scripted_caller({"*": "SCORE: 9\nREASONING: fine"})
        outcome = await run_panel(caller, sample_citations[0], "ctx", model=_HAIKU)
        assert outcome.complete
        assert [v["agent"] for v in outcome.verdicts] == [s.id for s in TIER2_PANEL]
        assert caller._client.messages.create.call_count == 5

    @pytest.mark.asyncio
    async def test_failed_agent_is_missing_but_others_finish(self, sample_citations):
        caller = _scripted_caller(
            {"*": "SCORE: 8"}, failing=("Temporal Reality Validator",)
        )
        outcome = await run_panel(caller, sample_citations[0], "ctx", model=_HAIKU)
        assert not outcome.complete
        assert outcome.missing == ["temporal_reality_validator_v1"]
        assert len(outcome.verdicts) == 4
        assert "temporal_reality_validator_v1" in outcome.errors
        assert caller._client.messages.create.call_count == 5


class TestPanelEvaluator:
    @pytest.mark.asyncio
    async def test_unanimous_result(self, sample_citations):
        caller = _scripted_caller({"*": "SCORE: 9\nREASONING: Reporter and year align."})
        evaluator = PanelEvaluator(caller, model=_HAIKU)
        result = await evaluator(sample_citations[0], "ctx")
        assert len(result["panel_evaluation"]) == 5
        assert result["consensus"]["agreement_level"] == "unanimous"
        assert result["consensus"]["escalation_trigger"] is False
        assert result["run_cost"]["total"]["currency"] == "USD"
        assert result["run_cost"]["by_model"][_HAIKU]["input_tokens"] == 2500

    @pytest.mark.asyncio
    async def test_low_dissent_escalates(self, sample_citations):
        caller = _scripted_caller(
            {
                "Temporal Reality Validator": "SCORE: 2\nREASONING: F.4th did not exist in 1962.",
                "*": "SCORE: 9",
            }
        )
        result = await PanelEvaluator(caller, model=_HAIKU)(sample_citations[1], "ctx")
        assert result["consensus"]["agreement_level"] == "strong"
        assert result["consensus"]["escalation_trigger"] is True

    @pytest.mark.asyncio
    async def test_incomplete_panel_is_never_scored(self, sample_citations):
        caller = _scripted_caller({"*": "SCORE: 9"}, failing=("Case Ecology Validator",))
        with pytest.raises(IncompletePanelError):
            await PanelEvaluator(caller, model=_HAIKU)(sample_citations[0], "ctx")

    def test_satisfies_protocol(self):
        caller = _scripted_caller({})
        assert isinstance(PanelEvaluator(caller, model=_HAIKU), StageTwoEvaluator)


class TestEscalation:
    @pytest.mark.asyncio
    async def test_investigators_see_consensus(self, sample_citations):
        caller = _scripted_caller({"*": "RISK_LEVEL: LOW_RISK\nREASONING: ok"})
        outcome = await investigate(caller, sample_citations[1], "ctx", _CONSENSUS, model=_SONNET)
        assert outcome.tier == Tier.TIER3
        assert len(outcome.verdicts) == len(TIER3_PANEL)
        prompt = caller._client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Agreement level: split" in prompt

    @pytest.mark.asyncio
    async def test_final_status_resolution(self, sample_citations):
        caller = _scripted_caller(
            {
                "Senior Litigator Reviewer": "RISK_LEVEL: NEEDS_ADDITIONAL_REVIEW\nREASONING: F.4th began in 2021.",
                "Specialist Legal Researcher": "RISK_LEVEL: NEEDS_ADDITIONAL_REVIEW\nREASONING: Impossible reporter.",
                "Fabrication Pattern Specialist": "RISK_LEVEL: MODERATE_RISK\nREASONING: Pattern only.",
            }
        )
        result = await EscalationEvaluator(caller, model=_SONNET)(sample_citations[1], "ctx", _CONSENSUS)
        assert result["consensus"]["final_risk_level"] == "NEEDS_ADDITIONAL_REVIEW"
        assert result["consensus"]["final_status"] == "FAIL"
        assert result["consensus"]["agreement_level"] == "strong"
        assert result["consensus"]["confidence_score"] == 0.667

    @pytest.mark.asyncio
    async def test_missing_investigator_raises(self, sample_citations):
        caller = _scripted_caller(
            {"*": "RISK_LEVEL: LOW_RISK"}, failing=("Fabrication Pattern Specialist",)
        )
        with pytest.raises(IncompletePanelError) as exc_info:
            await EscalationEvaluator(caller, model=_SONNET)(sample_citations[1], "ctx", _CONSENSUS)
        assert exc_info.value.tier == "tier3"

    def test_satisfies_protocol(self):
        caller = _scripted_caller({})
        assert isinstance(EscalationEvaluator(caller, model=_SONNET), StageThreeEvaluator)
