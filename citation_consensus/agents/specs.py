"""Agent panel definitions: 5 Tier 2 validators and 3 Tier 3 investigators.

Each agent is a frozen dataclass describing an analytical focus, not a
persona. The same model with a different focus produces genuinely
independent judgments; the panels are fixed so that runs are comparable
across time (see reporting.consistency).
"""

from __future__ import annotations

from dataclasses import dataclass

from citation_consensus.contracts import Tier


@dataclass(frozen=True)
class AgentSpec:
    """A single evaluator on a panel."""

    id: str  # stable identifier, recorded on every verdict
    name: str  # display name
    tier: Tier
    focus: str  # what this agent attends to
    checks: tuple[str, ...]  # questions the agent must answer
    max_tokens: int = 1024

    def __post_init__(self) -> None:
        if not self.checks:
            raise ValueError(f"AgentSpec {self.id} must define at least one check")


# --- Tier 2 panel ---

CITATION_AUTHORITY = AgentSpec(
    id="citation_authority_validator_v1",
    name="Citation Authority Validator",
    tier=Tier.TIER2,
    focus="court, reporter, volume, page and year alignment and publication plausibility",
    checks=(
        "Does this court's output get published in this reporter?",
        "Are the volume and page numbers reasonable for the reporter and year?",
        "Was the reporter in use during this year?",
    ),
)

CASE_ECOLOGY = AgentSpec(
    id="case_ecology_validator_v1",
    name="Case Ecology Validator",
    tier=Tier.TIER2,
    focus="party names, case characteristics and litigation plausibility",
    checks=(
        "Are the parties plausible litigants for this kind of dispute?",
        "Do the party roles and entity types fit the court and subject matter?",
        "Do the case characteristics hang together?",
    ),
)

TEMPORAL_REALITY = AgentSpec(
    id="temporal_reality_validator_v1",
    name="Temporal Reality Validator",
    tier=Tier.TIER2,
    focus="historical and temporal consistency of the authority",
    checks=(
        "Could this court have decided this issue in this year?",
        "Is the legal issue anachronistic for the stated date?",
        "Is the citation dated in the future or before the court existed?",
    ),
)

LEGAL_KNOWLEDGE = AgentSpec(
    id="legal_knowledge_validator_v1",
    name="Legal Knowledge Validator",
    tier=Tier.TIER2,
    focus="consistency with established legal doctrine and known authorities",
    checks=(
        "Is the described rule consistent with the doctrine of this jurisdiction?",
        "Is this a known authority, or consistent with how such authorities are published?",
        "Does the jurisdiction match the subject matter?",
    ),
)

REALITY_ASSESSMENT = AgentSpec(
    id="reality_assessment_expert_v1",
    name="Reality Assessment Expert",
    tier=Tier.TIER2,
    focus="holistic cross-dimensional coherence of every component together",
    checks=(
        "Do all components agree with each other, or do dimensions contradict?",
        "Is the structure of the citation coherent as a whole?",
        "Does the authority category match how the document uses it?",
    ),
)

TIER2_PANEL: tuple[AgentSpec, ...] = (
    CITATION_AUTHORITY,
    CASE_ECOLOGY,
    TEMPORAL_REALITY,
    LEGAL_KNOWLEDGE,
    REALITY_ASSESSMENT,
)

# --- Tier 3 panel ---

RIGOROUS_INVESTIGATOR = AgentSpec(
    id="rigorous_legal_investigator_v1",
    name="Senior Litigator Reviewer",
    tier=Tier.TIER3,
    focus=(
        "conservative, detail-level checking of structure and metadata, as a litigator "
        "with 20 years of experience who must defend this brief in court"
    ),
    checks=(
        "Does the court/reporter/statute combination make sense?",
        "Are volume, reporter, page and year plausible together?",
        "Is there any temporal impossibility?",
        "Is there any structural or metadata problem that would embarrass you in court?",
    ),
    max_tokens=2048,
)

HOLISTIC_ANALYST = AgentSpec(
    id="holistic_legal_analyst_v1",
    name="Specialist Legal Researcher",
    tier=Tier.TIER3,
    focus=(
        "holistic synthesis of format, source, doctrinal fit and how the citation "
        "is used in the document, as a senior research attorney"
    ),
    checks=(
        "Does the citation follow the conventions for this type of authority?",
        "Does the cited rule fit the authority type and time period?",
        "Does the document use the authority the way lawyers use similar authorities?",
        "Where can a researcher locate this authority?",
    ),
    max_tokens=2048,
)

PATTERN_EXPERT = AgentSpec(
    id="pattern_recognition_expert_v1",
    name="Fabrication Pattern Specialist",
    tier=Tier.TIER3,
    focus=(
        "known fabrication patterns: impossible metadata, non-existent reporters and "
        "mismatched issues, tied to at least one concrete defect"
    ),
    checks=(
        "Does the citation show impossible metadata or a non-existent reporter?",
        "Do any pattern concerns connect to a concrete structural, temporal or doctrinal defect?",
        "Which Tier 2 disagreements are explained by a real defect, and which are noise?",
    ),
    max_tokens=2048,
)

TIER3_PANEL: tuple[AgentSpec, ...] = (
    RIGOROUS_INVESTIGATOR,
    HOLISTIC_ANALYST,
    PATTERN_EXPERT,
)


def get_panel(tier: Tier) -> tuple[AgentSpec, ...]:
    if tier == Tier.TIER2:
        return TIER2_PANEL
    return TIER3_PANEL
