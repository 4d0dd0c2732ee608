"""Final Status Resolver and the normalizing accessors for both result formats.

Stored results come in two shapes: the current one (numeric ``score`` in
Tier 2, ``risk_level`` / ``final_risk_level`` in Tier 3) and the legacy
one (``verdict`` VALID/INVALID/UNCERTAIN, ``final_status`` VALID/WARN/FAIL,
``confidence`` high/medium/low, ``tier_3_trigger``). Everything outside this
module reads results through the accessors here instead of branching on
format.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from citation_consensus.contracts import (
    AgentVerdict,
    AgreementLevel,
    FinalStatus,
    Recommendation,
    RiskLevel,
    ScoreBand,
    Tier3Consensus,
    Verdict,
    VerdictFormat,
)

_RISK_TO_STATUS = {
    RiskLevel.LOW_RISK: FinalStatus.VALID,
    RiskLevel.MODERATE_RISK: FinalStatus.WARN,
    RiskLevel.NEEDS_ADDITIONAL_REVIEW: FinalStatus.FAIL,
}

_VERDICT_TO_RISK = {
    Verdict.VALID: RiskLevel.LOW_RISK,
    Verdict.UNCERTAIN: RiskLevel.MODERATE_RISK,
    Verdict.INVALID: RiskLevel.NEEDS_ADDITIONAL_REVIEW,
}

_BAND_TO_VERDICT = {
    ScoreBand.HIGH: Verdict.VALID,
    ScoreBand.MEDIUM: Verdict.UNCERTAIN,
    ScoreBand.LOW: Verdict.INVALID,
}

_RECOMMENDATION_TO_RISK = {
    Recommendation.LIKELY_VALID.value: RiskLevel.LOW_RISK,
    Recommendation.UNCERTAIN.value: RiskLevel.MODERATE_RISK,
    Recommendation.LIKELY_HALLUCINATED.value: RiskLevel.NEEDS_ADDITIONAL_REVIEW,
}

# Labels written by the heavy-analysis runs
_HEAVY_LABEL_TO_RISK = {
    "low risk": RiskLevel.LOW_RISK,
    "medium risk": RiskLevel.MODERATE_RISK,
    "human review": RiskLevel.NEEDS_ADDITIONAL_REVIEW,
}

_LEGACY_CONFIDENCE = {"high": 0.9, "medium": 0.6, "low": 0.3}


# --- Scalar conversions ---


def score_band(score: float) -> ScoreBand:
    """Classify a 1-10 score: high >= 8, medium 5-7, low < 5."""
    if score >= 8:
        return ScoreBand.HIGH
    if score >= 5:
        return ScoreBand.MEDIUM
    return ScoreBand.LOW


def band_to_verdict(band: ScoreBand) -> Verdict:
    return _BAND_TO_VERDICT[band]


def score_to_risk(score: float) -> RiskLevel:
    return _VERDICT_TO_RISK[band_to_verdict(score_band(score))]


def risk_to_status(risk: RiskLevel) -> FinalStatus:
    return _RISK_TO_STATUS[risk]


def _as_verdict(value: Any) -> Verdict | None:
    """Read a categorical label, accepting legacy WARN/FAIL statuses."""
    if value is None:
        return None
    label = str(value).strip().upper()
    if label == FinalStatus.WARN.value:
        return Verdict.UNCERTAIN
    if label == FinalStatus.FAIL.value:
        return Verdict.INVALID
    try:
        return Verdict(label)
    except ValueError:
        return None


def _as_risk(value: Any) -> RiskLevel | None:
    if value is None:
        return None
    try:
        return RiskLevel(str(value).strip().upper())
    except ValueError:
        return None


# --- Per-verdict accessors ---


def verdict_format(verdict: Mapping[str, Any]) -> VerdictFormat:
    """Format discriminator, inferred for records written before it existed."""
    tag = verdict.get("format")
    if tag:
        return VerdictFormat(tag)
    score = verdict.get("score")
    if isinstance(score, (int, float)) and not isinstance(score, bool) and 1 <= score <= 10:
        return VerdictFormat.SCORE
    return VerdictFormat.CATEGORICAL


def normalized_verdict(verdict: Mapping[str, Any]) -> Verdict:
    """Tier 2 verdict bucket: scores map through their band, labels pass through.

    Unreadable records count as UNCERTAIN.
    """
    if verdict_format(verdict) == VerdictFormat.SCORE:
        return band_to_verdict(score_band(verdict["score"]))
    return _as_verdict(verdict.get("verdict")) or Verdict.UNCERTAIN


def tier3_agent_risk(verdict: Mapping[str, Any]) -> RiskLevel:
    """Risk level of one investigator verdict, from either format."""
    risk = _as_risk(verdict.get("risk_level"))
    if risk is not None:
        return risk
    if verdict_format(verdict) == VerdictFormat.SCORE:
        return score_to_risk(verdict["score"])
    legacy = _as_verdict(verdict.get("verdict"))
    if legacy is not None:
        return _VERDICT_TO_RISK[legacy]
    return RiskLevel.MODERATE_RISK


# --- Agreement ---


def classify_agreement(top_count: int, panel_size: int) -> AgreementLevel:
    """Agreement from the size of the largest bloc.

    All agree -> unanimous. One dissenter -> strong, provided the remaining
    bloc is still a strict majority (so 2/3 is strong but 1/2 is split).
    """
    if panel_size > 0 and top_count == panel_size:
        return AgreementLevel.UNANIMOUS
    if top_count == panel_size - 1 and top_count * 2 > panel_size:
        return AgreementLevel.STRONG
    return AgreementLevel.SPLIT


# --- Final Status Resolver ---


def resolve_final_status(verdicts: list[AgentVerdict]) -> Tier3Consensus:
    """Aggregate M investigator verdicts into a single risk level.

    The level with the most votes wins; a tie resolves to the most severe
    of the tied levels, so risk is never downgraded by a split vote.
    """
    if not verdicts:
        raise ValueError("cannot resolve a final status from zero verdicts")

    risks = [tier3_agent_risk(v) for v in verdicts]
    counts = Counter(risks)
    top = max(counts.values())
    tied = [level for level, n in counts.items() if n == top]
    final = max(tied, key=lambda level: level.severity)

    panel_size = len(verdicts)
    agreement = classify_agreement(top, panel_size)

    reasoning = (
        f"{counts[final]}/{panel_size} investigators assessed {final.value}"
        f" ({agreement.value})."
    )
    if len(tied) > 1:
        reasoning += f" Tie between {', '.join(sorted(t.value for t in tied))} resolved to the most severe."
    notes = [
        f"{v.get('agent', '?')}: {v['reasoning']}"
        for v in verdicts
        if v.get("reasoning") and tier3_agent_risk(v) == final
    ]
    if notes:
        reasoning += " " + " | ".join(notes)

    return Tier3Consensus(
        agreement_level=agreement.value,
        confidence_score=round(top / panel_size, 3),
        final_risk_level=final.value,
        risk_level_counts={level.value: counts.get(level, 0) for level in RiskLevel},
        final_status=risk_to_status(final).value,
        reasoning=reasoning,
    )


# --- Result-level accessors ---


def needs_escalation(consensus: Mapping[str, Any] | None) -> bool:
    """Escalation decision of a Stage 2 consensus, either format."""
    if not consensus:
        return False
    if "escalation_trigger" in consensus:
        return bool(consensus["escalation_trigger"])
    return bool(consensus.get("tier_3_trigger", False))


def final_risk_level(tier3_result: Mapping[str, Any] | None) -> RiskLevel | None:
    """Final risk of a Stage 3 result.

    Reads ``final_risk_level`` first, then the legacy ``final_status``, and
    falls back to resolving the stored panel.
    """
    if not tier3_result:
        return None
    consensus = tier3_result.get("consensus") or {}
    risk = _as_risk(consensus.get("final_risk_level"))
    if risk is not None:
        return risk
    status = consensus.get("final_status")
    if status:
        legacy = _as_verdict(status)
        if legacy is not None:
            return _VERDICT_TO_RISK[legacy]
    panel = tier3_result.get("panel_evaluation") or []
    if panel:
        return RiskLevel(resolve_final_status(panel)["final_risk_level"])
    return None


def tier3_confidence(tier3_result: Mapping[str, Any] | None) -> float | None:
    """Numeric confidence of a Stage 3 result; legacy labels map to fixed values."""
    if not tier3_result:
        return None
    consensus = tier3_result.get("consensus") or {}
    score = consensus.get("confidence_score")
    if isinstance(score, (int, float)):
        return float(score)
    label = consensus.get("confidence")
    if isinstance(label, str):
        return _LEGACY_CONFIDENCE.get(label.lower())
    return None


def tier2_average_score(validation: Mapping[str, Any] | None) -> float | None:
    if not validation:
        return None
    consensus = validation.get("consensus") or {}
    avg = consensus.get("average_score")
    if isinstance(avg, (int, float)):
        return float(avg)
    panel = validation.get("panel_evaluation") or []
    if panel and all(verdict_format(v) == VerdictFormat.SCORE for v in panel):
        return sum(v["score"] for v in panel) / len(panel)
    return None


def citation_risk_level(citation: Mapping[str, Any]) -> RiskLevel | None:
    """Single risk level for a citation.

    Priority: Stage 3 result, then Stage 2 average score (>= 8 low,
    >= 5 moderate), then the Stage 2 recommendation, then a heavy-analysis
    label. None when the citation has not been evaluated.
    """
    risk = final_risk_level(citation.get("tier_3"))
    if risk is not None:
        return risk

    validation = citation.get("validation")
    if validation:
        avg = tier2_average_score(validation)
        if avg is not None:
            return score_to_risk(avg)
        recommendation = (validation.get("consensus") or {}).get("recommendation")
        if recommendation in _RECOMMENDATION_TO_RISK:
            return _RECOMMENDATION_TO_RISK[recommendation]
        return RiskLevel.MODERATE_RISK

    heavy = citation.get("heavy_analysis") or {}
    label = heavy.get("riskLevel") or heavy.get("risk_level")
    if isinstance(label, str):
        return _HEAVY_LABEL_TO_RISK.get(label.strip().lower()) or _as_risk(label)
    return None


def risk_statistics(citations: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    """Count evaluated citations per risk level."""
    stats = {level.value: 0 for level in RiskLevel}
    total = 0
    for citation in citations:
        risk = citation_risk_level(citation)
        if risk is None:
            continue
        stats[risk.value] += 1
        total += 1
    stats["total"] = total
    return stats
