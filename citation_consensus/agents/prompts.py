"""Prompt builders for Tier 2 validators and Tier 3 investigators."""

from __future__ import annotations

import json
from typing import Any

from citation_consensus.agents.specs import AgentSpec
from citation_consensus.contracts import Citation, ConsensusResult

TIER2_RULES = """\
Rules:
- Unfamiliarity alone is not evidence of fabrication.
- Generic or common party names are neutral.
- A citation that fits the argument well is normal, not suspicious.
- Low scores require a concrete, objective defect in the citation itself.
"""

TIER2_SCALE = """\
Score how likely the citation is to be authentic, from 1 to 10:
  9-10 = everything aligns; you would rely on it without hesitation
  8    = plausible with no concrete defects
  5-7  = unusual or edge-case features, but nothing impossible
  2-4  = at least one concrete defect suggests fabrication
  1    = impossible on its face

Respond in exactly this format:

SCORE: <integer 1-10>
REASONING: <2-3 sentences naming the specific signals you relied on>
"""

TIER3_RULES = """\
Key rules:
- Use all signals together: authority existence, court, reporter, volume, page, \
year, legal topic, and how the document uses the citation.
- Generic names and a strong fit to the argument are NOT fabrication markers.
- Do not assess as high risk solely because you don't recognize the authority.
- NEEDS_ADDITIONAL_REVIEW requires at least one specific, substantive defect such as \
an impossible court/reporter combination, an impossible year, inconsistent metadata, \
or an authority that clearly cannot exist.
- If your concerns are primarily pattern-based, you MUST choose MODERATE_RISK.
- Prefer MODERATE_RISK when information is incomplete. Do not guess.
"""

TIER3_SCALE = """\
Assess the RISK LEVEL:
- LOW_RISK: appears authentic and reliable; you would rely on it in court.
- MODERATE_RISK: some concerns exist but the citation may still be valid.
- NEEDS_ADDITIONAL_REVIEW: significant concerns suggest fabrication or error.

Respond in exactly this format:

RISK_LEVEL: LOW_RISK | MODERATE_RISK | NEEDS_ADDITIONAL_REVIEW
REASONING: <2-3 sentences explaining your risk assessment>
SOURCE_LINK: <URL where the authority can be found, case citations only, or N/A>
"""


def _format_components(components: dict[str, Any]) -> str:
    if not components:
        return "(none extracted)"
    return json.dumps(components, ensure_ascii=False, sort_keys=True)


def _format_checks(spec: AgentSpec) -> str:
    return "\n".join(f"{i}. {check}" for i, check in enumerate(spec.checks, 1))


def summarize_consensus(consensus: ConsensusResult) -> str:
    """Render the Stage 2 outcome so investigators see where the panel disagreed."""
    lines = [
        f"Agreement level: {consensus.get('agreement_level', 'unknown')}",
        f"Confidence: {consensus.get('confidence_score', 0.0)}",
        f"Recommendation: {consensus.get('recommendation', 'unknown')}",
    ]
    if "average_score" in consensus:
        lines.append(f"Average score: {consensus['average_score']}")
    if consensus.get("score_distribution"):
        dist = ", ".join(f"{k}={v}" for k, v in consensus["score_distribution"].items())
        lines.append(f"Score bands: {dist}")
    if consensus.get("verdict_counts"):
        counts = ", ".join(f"{k}={v}" for k, v in consensus["verdict_counts"].items())
        lines.append(f"Verdicts: {counts}")
    if consensus.get("reasoning"):
        lines.append(f"Panel notes: {consensus['reasoning']}")
    return "\n".join(lines)


def build_tier2_prompt(spec: AgentSpec, citation: Citation, context: str) -> str:
    return f"""\
You are the {spec.name}, one of five independent validators checking whether a
legal citation in a filing is authentic or fabricated.

Your focus: {spec.focus}.

Citation: {citation.get("citationText", "")}
Citation Type: {citation.get("citationType", "unknown")}
Extracted Components: {_format_components(citation.get("extractedComponents", {}))}
Document Context: {context or "(not available)"}

Answer these questions before scoring:
{_format_checks(spec)}

{TIER2_RULES}
{TIER2_SCALE}"""


def build_tier3_prompt(
    spec: AgentSpec,
    citation: Citation,
    context: str,
    consensus: ConsensusResult | None,
) -> str:
    panel = summarize_consensus(consensus) if consensus else "(not available)"
    return f"""\
You are the {spec.name}. A first-pass panel of validators disagreed about this
citation, so it has been escalated for independent investigation.

Your focus: {spec.focus}.

Citation: {citation.get("citationText", "")}
Citation Type: {citation.get("citationType", "unknown")}
Extracted Components: {_format_components(citation.get("extractedComponents", {}))}
Document Context: {context or "(not available)"}

First-pass panel outcome:
{panel}

Investigate using these angles:
{_format_checks(spec)}

{TIER3_RULES}
{TIER3_SCALE}"""
