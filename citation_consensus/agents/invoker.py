"""Agent Invoker: prompt -> call -> parse -> AgentVerdict.

Transport failures propagate as AgentCallError after the caller's retry
budget is spent. Parse failures never raise; they degrade to the
conservative verdict for the tier and are recorded on ``parse_error``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from citation_consensus.agents.base import AgentCaller
from citation_consensus.agents.parser import (
    ParseResult,
    parse_tier2_response,
    parse_tier3_response,
)
from citation_consensus.agents.prompts import build_tier2_prompt, build_tier3_prompt
from citation_consensus.agents.specs import AgentSpec
from citation_consensus.contracts import (
    AgentVerdict,
    Citation,
    ConsensusResult,
    Tier,
    VerdictFormat,
)


def verdict_from_parse(
    parsed: ParseResult,
    *,
    agent: str,
    model: str,
    timestamp: str | None = None,
) -> AgentVerdict:
    """Convert a ParseResult into the tagged AgentVerdict record."""
    verdict = AgentVerdict(
        agent=agent,
        model=model,
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
    )
    if parsed.score is not None:
        verdict["format"] = VerdictFormat.SCORE.value
        verdict["score"] = parsed.score
    else:
        verdict["format"] = VerdictFormat.CATEGORICAL.value
        if parsed.risk_level is not None:
            verdict["risk_level"] = parsed.risk_level.value
        if parsed.verdict is not None:
            verdict["verdict"] = parsed.verdict.value

    if parsed.invalid_reason:
        verdict["invalid_reason"] = parsed.invalid_reason
    if parsed.uncertain_reason:
        verdict["uncertain_reason"] = parsed.uncertain_reason
    if parsed.reasoning:
        verdict["reasoning"] = parsed.reasoning
    if parsed.source_link:
        verdict["source_link"] = parsed.source_link
    if parsed.error:
        verdict["parse_error"] = parsed.error
    return verdict


async def invoke_agent(
    caller: AgentCaller,
    spec: AgentSpec,
    citation: Citation,
    context: str,
    *,
    model: str,
    consensus: ConsensusResult | None = None,
) -> AgentVerdict:
    """Run one agent against one citation.

    Tier 3 agents receive the Stage 2 consensus so they see where the
    panel disagreed. Raises AgentCallError when the call itself fails.
    """
    if spec.tier == Tier.TIER2:
        prompt = build_tier2_prompt(spec, citation, context)
    else:
        prompt = build_tier3_prompt(spec, citation, context, consensus)

    text, usage = await caller.call(
        prompt=prompt,
        model=model,
        agent_name=spec.id,
        max_tokens=spec.max_tokens,
    )

    if spec.tier == Tier.TIER2:
        parsed = parse_tier2_response(text, spec.id)
    else:
        parsed = parse_tier3_response(text, spec.id)

    verdict = verdict_from_parse(parsed, agent=spec.id, model=model)
    verdict["token_usage"] = usage
    return verdict
