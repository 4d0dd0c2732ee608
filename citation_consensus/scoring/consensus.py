"""Consensus Calculator: agreement, confidence and escalation for a Stage 2 panel.

Pure functions of the verdict set. A panel is scored on the numeric path
only when every verdict carries a score; any categorical verdict moves the
whole panel onto the categorical path, with scores bucketed to verdicts.
"""

from __future__ import annotations

import statistics
from collections import Counter

from citation_consensus.contracts import (
    AgentVerdict,
    AgreementLevel,
    ConsensusResult,
    Recommendation,
    ScoreBand,
    Verdict,
    VerdictFormat,
)
from citation_consensus.scoring.resolution import (
    band_to_verdict,
    classify_agreement,
    normalized_verdict,
    score_band,
    verdict_format,
)

# Largest population stdev for scores in [1, 10]
_MAX_SCORE_STDEV = 4.5


def numeric_agreement(scores: list[int]) -> tuple[AgreementLevel, ScoreBand]:
    """Agreement level and dominant band of a numeric panel.

    Unanimous iff every score is high or every score is low. All-medium
    panels are strong: the agents agree, but on an equivocal band.
    """
    bands = Counter(score_band(s) for s in scores)
    dominant, top = _dominant(bands, _band_priority)
    n = len(scores)
    if top == n:
        if dominant == ScoreBand.MEDIUM:
            return AgreementLevel.STRONG, dominant
        return AgreementLevel.UNANIMOUS, dominant
    return classify_agreement(top, n), dominant


def score_confidence(scores: list[int]) -> float:
    """1.0 for identical scores, falling linearly with dispersion."""
    if len(scores) < 2:
        return 1.0
    spread = statistics.pstdev(scores)
    return round(max(0.0, min(1.0, 1.0 - spread / _MAX_SCORE_STDEV)), 3)


def _band_priority(band: ScoreBand) -> int:
    # Ties in the dominant bloc resolve toward the more cautious reading
    return {ScoreBand.HIGH: 0, ScoreBand.MEDIUM: 1, ScoreBand.LOW: 2}[band]


def _verdict_priority(verdict: Verdict) -> int:
    return {Verdict.VALID: 0, Verdict.UNCERTAIN: 1, Verdict.INVALID: 2}[verdict]


def _dominant(counts: Counter, priority) -> tuple:
    top = max(counts.values())
    tied = [k for k, n in counts.items() if n == top]
    return max(tied, key=priority), top


def _recommend(agreement: AgreementLevel, dominant: Verdict, valid_count: int) -> Recommendation:
    if agreement == AgreementLevel.SPLIT:
        # A split with at most one VALID vote still leans hallucinated
        if dominant == Verdict.INVALID or valid_count <= 1:
            return Recommendation.LIKELY_HALLUCINATED
        return Recommendation.UNCERTAIN
    if dominant == Verdict.VALID:
        return Recommendation.LIKELY_VALID
    if dominant == Verdict.INVALID:
        return Recommendation.LIKELY_HALLUCINATED
    return Recommendation.UNCERTAIN


def _concerns(verdicts: list[AgentVerdict]) -> list[str]:
    concerns = []
    for v in verdicts:
        bucket = normalized_verdict(v)
        reason = None
        if bucket == Verdict.INVALID:
            reason = v.get("invalid_reason") or v.get("reasoning")
        elif bucket == Verdict.UNCERTAIN:
            reason = v.get("uncertain_reason") or v.get("reasoning")
        if v.get("parse_error"):
            reason = f"unparsed response ({v['parse_error']})"
        if reason:
            concerns.append(f"{v.get('agent', '?')}: {reason[:160]}")
    return concerns


def calculate_consensus(verdicts: list[AgentVerdict]) -> ConsensusResult:
    """Aggregate a complete Stage 2 panel into a ConsensusResult.

    Escalation triggers on a split panel, or when any agent returned a
    low score / INVALID while the panel was not unanimous.
    """
    if not verdicts:
        raise ValueError("cannot compute consensus from zero verdicts")

    n = len(verdicts)
    buckets = [normalized_verdict(v) for v in verdicts]
    verdict_counts = Counter(buckets)
    numeric = all(verdict_format(v) == VerdictFormat.SCORE for v in verdicts)

    result_fields: dict = {}
    if numeric:
        scores = [int(v["score"]) for v in verdicts]
        agreement, band = numeric_agreement(scores)
        dominant = band_to_verdict(band)
        confidence = score_confidence(scores)
        bands = Counter(score_band(s) for s in scores)
        average = round(sum(scores) / n, 2)
        result_fields["score_distribution"] = {b.value: bands.get(b, 0) for b in ScoreBand}
        result_fields["average_score"] = average
        top = bands[band]
        fmt = VerdictFormat.SCORE
    else:
        dominant, top = _dominant(verdict_counts, _verdict_priority)
        agreement = classify_agreement(top, n)
        confidence = round(top / n, 3)
        fmt = VerdictFormat.CATEGORICAL

    dissent_with_red_flag = Verdict.INVALID in verdict_counts and top < n
    escalate = agreement == AgreementLevel.SPLIT or dissent_with_red_flag

    recommendation = _recommend(agreement, dominant, verdict_counts.get(Verdict.VALID, 0))
    counts_text = ", ".join(
        f"{verdict_counts.get(label, 0)} {label.value.lower()}" for label in Verdict
    )
    if numeric:
        reasoning = (
            f"Panel {agreement.value} (average score {result_fields['average_score']}): "
            f"{counts_text}."
        )
    else:
        reasoning = f"Panel {agreement.value}: {counts_text}."
    if escalate:
        reasoning += " Disagreement routes this citation to investigation."
    concerns = _concerns(verdicts)
    if concerns:
        reasoning += f" Concerns: {'; '.join(concerns)}."

    return ConsensusResult(
        agreement_level=agreement.value,
        confidence_score=confidence,
        escalation_trigger=escalate,
        recommendation=recommendation.value,
        reasoning=reasoning,
        format=fmt.value,
        verdict_counts={label.value: verdict_counts.get(label, 0) for label in Verdict},
        panel_size=n,
        **result_fields,
    )
