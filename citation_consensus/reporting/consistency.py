"""Consistency Analyzer: how reproducible are verdicts across repeated runs?

Input is K completed runs over the same citation set. Output is a JSON-able
report with per-citation agreement, per-agent consistency (Tier 2 and
Tier 3 separately) and run-level summary statistics. Nothing here is
persisted; the report is recomputed on demand.

Agent verdicts are normalized into one comparable token stream per
(citation, agent) before any statistics run:
  Tier 2: "SCORE_<n>" for scored verdicts, VALID / INVALID / UNCERTAIN
          otherwise. A stream mixing both is bucketed to verdicts.
  Tier 3: the risk level, with legacy verdicts mapped onto it.
"""

from __future__ import annotations

import statistics
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from citation_consensus.contracts import RiskLevel, Verdict, VerdictFormat
from citation_consensus.scoring.resolution import (
    band_to_verdict,
    citation_risk_level,
    normalized_verdict,
    score_band,
    tier3_agent_risk,
    verdict_format,
)

_SCORE_PREFIX = "SCORE_"


# --- Run input ---


def load_run(data: Mapping[str, Any], run_number: int) -> dict[str, Any]:
    """Accept a run as {citations}, a document, or a stored document-check."""
    if "citations" in data and isinstance(data["citations"], list):
        citations = data["citations"]
        metadata = data.get("metadata") or {}
    else:
        document = data.get("document") or {}
        if "document" in document:  # stored document-check wrapping a document JSON
            document = document["document"]
        citations = document.get("citations") or []
        metadata = document.get("metadata") or {}
    number = data.get("run_number") or metadata.get("testRunNumber") or run_number
    return {"run_number": int(number), "citations": citations}


# --- Token normalization ---


def tier2_token(verdict: Mapping[str, Any]) -> str:
    if verdict_format(verdict) == VerdictFormat.SCORE:
        return f"{_SCORE_PREFIX}{int(verdict['score'])}"
    return normalized_verdict(verdict).value


def tier3_token(verdict: Mapping[str, Any]) -> str:
    return tier3_agent_risk(verdict).value


def _is_score(token: str) -> bool:
    return token.startswith(_SCORE_PREFIX)


def _score_of(token: str) -> int:
    return int(token[len(_SCORE_PREFIX) :])


def normalize_stream(tokens: list[str]) -> list[str]:
    """Bucket scores to verdicts when a stream mixes scores and labels."""
    if any(_is_score(t) for t in tokens) and not all(_is_score(t) for t in tokens):
        return [band_to_verdict(score_band(_score_of(t))).value if _is_score(t) else t for t in tokens]
    return tokens


def stream_consistency(tokens: list[str]) -> tuple[float, bool]:
    """Per-citation consistency percentage and whether the stream is numeric.

    Numeric: 100 while the population stdev is <= 1, then 20 points lost
    per additional point of stdev. Categorical: share of the mode.
    """
    if tokens and all(_is_score(t) for t in tokens):
        scores = [_score_of(t) for t in tokens]
        spread = statistics.pstdev(scores)
        return (100.0 if spread <= 1 else max(0.0, 100.0 - (spread - 1) * 20)), True
    top = max(Counter(tokens).values()) if tokens else 0
    return (top / len(tokens) * 100 if tokens else 0.0), False


# --- Collection ---


def _collect_streams(
    runs: list[dict[str, Any]], slot: str
) -> dict[str, dict[str, list[str]]]:
    token = tier2_token if slot == "validation" else tier3_token
    streams: dict[str, dict[str, list[str]]] = {}
    for run in runs:
        for citation in run["citations"]:
            result = citation.get(slot)
            if not result:
                continue
            per_agent = streams.setdefault(citation["id"], {})
            for verdict in result.get("panel_evaluation") or []:
                per_agent.setdefault(verdict.get("agent", "unknown"), []).append(token(verdict))
    return streams


def agent_consistency(
    streams: dict[str, dict[str, list[str]]],
    baseline_keys: Iterable[str],
) -> list[dict[str, Any]]:
    """Per-agent consistency, most consistent first."""
    stats: dict[str, dict[str, Any]] = {}
    for citation_id, per_agent in streams.items():
        for agent, raw in per_agent.items():
            tokens = normalize_stream(raw)
            entry = stats.setdefault(
                agent,
                {
                    "citations": set(),
                    "multi_run": 0,
                    "consistent": 0,
                    "scores": [],
                    "evaluations": 0,
                    "distribution": Counter(),
                },
            )
            entry["citations"].add(citation_id)
            entry["evaluations"] += len(tokens)
            entry["distribution"].update(tokens)

            if len(tokens) < 2:
                continue
            value, numeric = stream_consistency(tokens)
            entry["multi_run"] += 1
            entry["scores"].append(value)
            if value == 100 or (numeric and value >= 95):
                entry["consistent"] += 1

    report = []
    for agent, entry in stats.items():
        distribution = {key: entry["distribution"].get(key, 0) for key in baseline_keys}
        distribution.update(
            {k: v for k, v in sorted(entry["distribution"].items()) if k not in distribution}
        )
        average = sum(entry["scores"]) / len(entry["scores"]) if entry["scores"] else 0.0
        report.append(
            {
                "agent": agent,
                "unique_citations": len(entry["citations"]),
                "multi_run_citations": entry["multi_run"],
                "consistent_citations": entry["consistent"],
                "average_consistency": round(average, 1),
                "total_evaluations": entry["evaluations"],
                "verdict_distribution": distribution,
            }
        )
    report.sort(key=lambda r: (-r["average_consistency"], r["agent"]))
    return report


def case_link(citation: Mapping[str, Any]) -> str | None:
    """First source link an investigator found, else the heavy-analysis case link."""
    for verdict in (citation.get("tier_3") or {}).get("panel_evaluation") or []:
        link = (verdict.get("source_link") or "").strip()
        if link:
            return link
    heavy = citation.get("heavy_analysis") or {}
    link = heavy.get("caseLink") or heavy.get("case_link")
    if isinstance(link, str) and link.strip():
        return link.strip()
    return None


def citation_agreement(runs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Risk-level distribution, agreement rate and most common level per citation.

    ``source_link_consistent`` is True when at least one run found a case
    link and every run that found one found the same link.
    """
    observed: dict[str, list[RiskLevel]] = {}
    texts: dict[str, str] = {}
    links: dict[str, list[str]] = {}
    for run in runs:
        for citation in run["citations"]:
            risk = citation_risk_level(citation)
            if risk is None:
                continue
            observed.setdefault(citation["id"], []).append(risk)
            texts.setdefault(citation["id"], citation.get("citationText", ""))
            link = case_link(citation)
            if link:
                links.setdefault(citation["id"], []).append(link)

    report = []
    for citation_id, risks in observed.items():
        counts = Counter(risks)
        top = max(counts.values())
        most_common = max(
            (level for level, n in counts.items() if n == top), key=lambda level: level.severity
        )
        report.append(
            {
                "citation_id": citation_id,
                "citation_text": texts[citation_id],
                "runs_evaluated": len(risks),
                "risk_distribution": {level.value: counts.get(level, 0) for level in RiskLevel},
                "agreement_rate": round(top / len(risks), 3),
                "most_common_risk_level": most_common.value,
                "source_link_consistent": len(set(links.get(citation_id, []))) == 1,
            }
        )
    report.sort(key=lambda r: (r["agreement_rate"], r["citation_id"]))
    return report


# --- Run summaries ---


def _result_tokens(result: Mapping[str, Any] | None) -> int:
    if not result:
        return 0
    return sum(
        (v.get("token_usage") or {}).get("total_tokens", 0)
        for v in result.get("panel_evaluation") or []
    )


def _result_cost(result: Mapping[str, Any] | None) -> float:
    if not result:
        return 0.0
    return float(((result.get("run_cost") or {}).get("total") or {}).get("total_cost", 0.0))


def run_summary(run: dict[str, Any]) -> dict[str, Any]:
    counts = Counter()
    validated = tier3 = tokens = 0
    cost = 0.0
    for citation in run["citations"]:
        if not citation.get("validation"):
            continue
        validated += 1
        counts[citation_risk_level(citation) or RiskLevel.MODERATE_RISK] += 1
        if citation.get("tier_3"):
            tier3 += 1
        for slot in ("validation", "tier_3"):
            tokens += _result_tokens(citation.get(slot))
            cost += _result_cost(citation.get(slot))
    return {
        "run_number": run["run_number"],
        "total_citations": len(run["citations"]),
        "validated": validated,
        "low_risk": counts[RiskLevel.LOW_RISK],
        "moderate_risk": counts[RiskLevel.MODERATE_RISK],
        "needs_review": counts[RiskLevel.NEEDS_ADDITIONAL_REVIEW],
        "tier3_reviewed": tier3,
        "total_tokens": tokens,
        "total_cost": round(cost, 6),
    }


def _range(values: list[int]) -> dict[str, float]:
    return {
        "min": min(values),
        "max": max(values),
        "avg": round(sum(values) / len(values), 2),
    }


def _agreement_totals(citations: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(citations)
    full = sum(1 for c in citations if c["agreement_rate"] == 1.0)
    linked = sum(1 for c in citations if c["source_link_consistent"])
    overall = Counter(c["most_common_risk_level"] for c in citations)
    return {
        "full_agreement_citations": full,
        "full_agreement_rate": round(full / total, 3) if total else 0.0,
        "link_consistent_citations": linked,
        "average_agreement_rate": (
            round(sum(c["agreement_rate"] for c in citations) / total, 3) if total else 0.0
        ),
        "overall_risk_distribution": {level.value: overall[level.value] for level in RiskLevel},
    }


def run_statistics(
    summaries: list[dict[str, Any]], citations: list[dict[str, Any]]
) -> dict[str, Any]:
    """Spread of run-level counts plus per-citation agreement totals.

    ``consistency`` is 100% when every run found the same low-risk count.
    ``overall_risk_distribution`` counts each citation once, at its most
    common level.
    """
    low = [s["low_risk"] for s in summaries]
    avg_low = sum(low) / len(low)
    spread = statistics.pstdev(low)
    consistency = 100.0 if spread == 0 else max(0.0, 100.0 - spread / max(avg_low, 1) * 100)
    return {
        "low_risk_range": _range(low),
        "needs_review_range": _range([s["needs_review"] for s in summaries]),
        "consistency": round(consistency, 1),
        **_agreement_totals(citations),
        "total_tokens": sum(s["total_tokens"] for s in summaries),
        "total_cost": round(sum(s["total_cost"] for s in summaries), 6),
    }


def analyze_consistency(runs: list[dict[str, Any]]) -> dict[str, Any]:
    """Build the consistency report for K runs of the same citation set."""
    if not runs:
        raise ValueError("consistency analysis needs at least one run")
    runs = sorted(runs, key=lambda r: r["run_number"])
    summaries = [run_summary(run) for run in runs]
    citations = citation_agreement(runs)

    return {
        "runs_completed": len(runs),
        "runs": summaries,
        "statistics": run_statistics(summaries, citations),
        "citations": citations,
        "agent_consistency": agent_consistency(
            _collect_streams(runs, "validation"), [v.value for v in Verdict]
        ),
        "tier3_agent_consistency": agent_consistency(
            _collect_streams(runs, "tier_3"), [r.value for r in RiskLevel]
        ),
    }
