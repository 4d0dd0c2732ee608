"""Layered response parsers for validator and investigator output.

Tier 2 layers, tried in order:
  score   : "SCORE: n / REASONING: ..." (current format)
  json    : {"label": ..., "reason": ...} (legacy)
  keyword : free-text VALID / INVALID / UNCERTAIN with reason-code lookup (legacy)
  default : UNCERTAIN, with ``error`` set

Tier 3 layers:
  risk_line    : "RISK_LEVEL: ..." (current format)
  risk_text    : a risk level named anywhere in the text
  verdict_line : "VERDICT: ..." (legacy VALID / INVALID / UNCERTAIN or WARN / FAIL)
  default      : MODERATE_RISK, with ``error`` set

Parsers never raise. A response that only reaches the default layer is
logged and carries the failure on ``ParseResult.error``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from citation_consensus.contracts import RiskLevel, Verdict

logger = logging.getLogger(__name__)

INVALID_REASONS: tuple[str, ...] = (
    "reporter_court_mismatch",
    "volume_impossible",
    "page_unreasonable",
    "reporter_timing_wrong",
    "year_implausible",
    "temporal_impossibility",
    "anachronistic_issue",
    "historical_mismatch",
    "future_dated",
    "case_type_implausible",
    "characteristics_mismatch",
    "party_role_impossible",
    "entity_type_impossible",
    "inconsistent_with_knowledge",
    "unknown_authority",
    "doctrine_impossible",
    "jurisdiction_mismatch",
    "cross_dimension_contradiction",
    "structural_incoherence",
    "authority_category_mismatch",
    "impossible_combination",
)

UNCERTAIN_REASONS: tuple[str, ...] = (
    "unusual_volume_page",
    "reporter_edge_case",
    "timing_questionable",
    "names_generic_but_possible",
    "unusual_pairing",
    "characteristics_unclear",
    "early_in_reporter_series",
    "edge_of_legal_development",
    "timing_unusual_but_possible",
    "unfamiliar_but_possible",
    "edge_case_authority",
    "weak_signals_both_ways",
    "mixed_signals",
    "insufficient_evidence",
    "unusual_but_not_invalid",
)

_PREVIEW_CHARS = 200
_JSON_REASON_CHARS = 100

_SCORE_PATTERNS = (
    re.compile(r"SCORE:\s*(\d+)", re.IGNORECASE),
    re.compile(r"SCORE\s*(\d+)", re.IGNORECASE),
)
_BARE_SCORE = re.compile(r"\s*(\d{1,2})\s*\.?\s*")
_REASONING = re.compile(r"REASONING:\s*(.*?)(?:\n\s*\n|\nSCORE:|\Z)", re.IGNORECASE | re.DOTALL)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_REASON_CODE = re.compile(r"(?:invalid|uncertain|reason|code)[:\s]+([a-z_]+)", re.IGNORECASE)

_WORD_VALID = re.compile(r"\bVALID\b")
_WORD_INVALID = re.compile(r"\bINVALID\b")
_WORD_UNCERTAIN = re.compile(r"\bUNCERTAIN\b")

# Most severe first: an ambiguous line resolves toward review.
_RISK_PHRASES: tuple[tuple[RiskLevel, tuple[str, ...]], ...] = (
    (
        RiskLevel.NEEDS_ADDITIONAL_REVIEW,
        ("NEEDS_ADDITIONAL_REVIEW", "NEEDS ADDITIONAL REVIEW", "ADDITIONAL_REVIEW"),
    ),
    (RiskLevel.MODERATE_RISK, ("MODERATE_RISK", "MODERATE RISK")),
    (RiskLevel.LOW_RISK, ("LOW_RISK", "LOW RISK")),
)

_TIER3_LABELS = (
    "RISK_LEVEL:",
    "VERDICT:",
    "REASONING:",
    "SOURCE_LINK:",
    "INVALID_REASON:",
    "UNCERTAIN_REASON:",
)


@dataclass
class ParseResult:
    """Outcome of parsing one agent response.

    ``layer`` names the parser layer that produced the result; ``error`` is
    set only when no layer recognised the response.
    """

    layer: str
    score: int | None = None
    verdict: Verdict | None = None
    risk_level: RiskLevel | None = None
    invalid_reason: str | None = None
    uncertain_reason: str | None = None
    reasoning: str | None = None
    source_link: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ============================================================
# Tier 2
# ============================================================


def _extract_reasoning(text: str) -> str | None:
    match = _REASONING.search(text)
    if not match:
        return None
    reasoning = match.group(1).strip()
    return reasoning or None


def _parse_score(text: str) -> ParseResult | None:
    raw: str | None = None
    for pattern in _SCORE_PATTERNS:
        match = pattern.search(text)
        if match:
            raw = match.group(1)
            break
    if raw is None:
        bare = _BARE_SCORE.fullmatch(text)
        if bare:
            raw = bare.group(1)
    if raw is None:
        return None

    score = int(raw)
    if not 1 <= score <= 10:
        return None
    return ParseResult(layer="score", score=score, reasoning=_extract_reasoning(text))


def _parse_json(text: str) -> ParseResult | None:
    candidate = _FENCE.sub("", text.strip()).strip()
    match = _JSON_OBJECT.search(candidate)
    if match:
        candidate = match.group(0)
    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    label = str(data.get("label", "")).strip().upper()
    try:
        verdict = Verdict(label)
    except ValueError:
        return None

    result = ParseResult(layer="json", verdict=verdict)
    reason = data.get("reason")
    if isinstance(reason, str) and reason:
        if verdict == Verdict.INVALID:
            result.invalid_reason = reason[:_JSON_REASON_CHARS]
        elif verdict == Verdict.UNCERTAIN:
            result.uncertain_reason = reason[:_JSON_REASON_CHARS]
        result.reasoning = reason
    return result


def find_reason_code(text: str, vocabulary: tuple[str, ...]) -> str | None:
    """Find a reason code from a closed vocabulary in free text.

    An explicit ``reason: code`` is honoured only when the code belongs to
    the vocabulary; otherwise each code is looked up in its underscore,
    space and hyphen spellings.
    """
    for match in _REASON_CODE.finditer(text):
        code = match.group(1).lower()
        if code in vocabulary:
            return code

    lowered = text.lower()
    for code in vocabulary:
        variants = (code, code.replace("_", " "), code.replace("_", "-"))
        if any(v in lowered for v in variants):
            return code
    return None


def _parse_keywords(text: str) -> ParseResult | None:
    upper = text.upper()
    if _WORD_UNCERTAIN.search(upper):
        return ParseResult(
            layer="keyword",
            verdict=Verdict.UNCERTAIN,
            uncertain_reason=find_reason_code(text, UNCERTAIN_REASONS),
        )
    if _WORD_INVALID.search(upper):
        return ParseResult(
            layer="keyword",
            verdict=Verdict.INVALID,
            invalid_reason=find_reason_code(text, INVALID_REASONS),
        )
    if _WORD_VALID.search(upper):
        return ParseResult(layer="keyword", verdict=Verdict.VALID)
    return None


def parse_tier2_response(text: str, agent_name: str) -> ParseResult:
    """Parse a validator response into a score or categorical verdict."""
    text = text or ""
    for layer in (_parse_score, _parse_json, _parse_keywords):
        result = layer(text)
        if result is not None:
            if result.reasoning is None and result.layer == "keyword":
                result.reasoning = text.strip()[:500] or None
            return result

    logger.warning(
        "Could not parse verdict from agent %s. Response: %s",
        agent_name,
        text[:_PREVIEW_CHARS],
    )
    return ParseResult(
        layer="default",
        verdict=Verdict.UNCERTAIN,
        error="no score, JSON label or verdict keyword found",
    )


# ============================================================
# Tier 3
# ============================================================


def _risk_from_text(text: str) -> RiskLevel | None:
    upper = text.upper()
    for level, phrases in _RISK_PHRASES:
        if any(p in upper for p in phrases):
            return level
    return None


def _labelled_line(lines: list[str], label: str) -> tuple[int, str] | None:
    for i, line in enumerate(lines):
        if line.upper().startswith(label):
            return i, line[len(label) :].strip()
    return None


def _legacy_verdict(value: str) -> Verdict:
    upper = value.upper()
    if _WORD_INVALID.search(upper) or "FAIL" in upper:
        return Verdict.INVALID
    if _WORD_UNCERTAIN.search(upper) or "WARN" in upper:
        return Verdict.UNCERTAIN
    if _WORD_VALID.search(upper):
        return Verdict.VALID
    return Verdict.UNCERTAIN


def _tier3_reasoning(text: str, lines: list[str]) -> str | None:
    found = _labelled_line(lines, "REASONING:")
    if found is not None:
        start, first = found
        parts = [first] if first else []
        for line in lines[start + 1 :]:
            if line.upper().startswith(_TIER3_LABELS):
                break
            parts.append(line)
        reasoning = " ".join(parts).strip()
        if reasoning:
            return reasoning

    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    return paragraphs[0] if paragraphs else None


def _optional_value(value: str) -> str | None:
    if not value or value.upper() in ("N/A", "NA", "NONE"):
        return None
    return value


def parse_tier3_response(text: str, agent_name: str) -> ParseResult:
    """Parse an investigator response into a risk level (or legacy verdict)."""
    text = text or ""
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    risk_line = _labelled_line(lines, "RISK_LEVEL:")
    risk = _risk_from_text(risk_line[1]) if risk_line else None
    if risk is not None:
        result = ParseResult(layer="risk_line", risk_level=risk)
    elif risk_line is None and (risk := _risk_from_text(text)) is not None:
        result = ParseResult(layer="risk_text", risk_level=risk)
    elif (verdict_line := _labelled_line(lines, "VERDICT:")) is not None:
        result = ParseResult(layer="verdict_line", verdict=_legacy_verdict(verdict_line[1]))
        invalid = _labelled_line(lines, "INVALID_REASON:")
        uncertain = _labelled_line(lines, "UNCERTAIN_REASON:")
        if invalid:
            result.invalid_reason = _optional_value(invalid[1])
        if uncertain:
            result.uncertain_reason = _optional_value(uncertain[1])
    else:
        logger.warning(
            "Could not parse risk level from agent %s. Response: %s",
            agent_name,
            text[:_PREVIEW_CHARS],
        )
        result = ParseResult(
            layer="default",
            risk_level=RiskLevel.MODERATE_RISK,
            error="no RISK_LEVEL, risk phrase or VERDICT line found",
        )

    result.reasoning = _tier3_reasoning(text, lines)
    link = _labelled_line(lines, "SOURCE_LINK:")
    if link is not None:
        value = _optional_value(link[1])
        if value and value.lower().startswith(("http://", "https://")):
            result.source_link = value
    return result
