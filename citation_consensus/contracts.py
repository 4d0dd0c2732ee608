"""Single source of truth for all types, enums, and protocols."""

from __future__ import annotations

from enum import Enum
from typing import Any, NotRequired, Protocol, TypedDict, runtime_checkable

# --- Enums ---


class Tier(str, Enum):
    TIER2 = "tier2"  # panel consensus
    TIER3 = "tier3"  # escalated investigation


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VerdictFormat(str, Enum):
    SCORE = "score"  # current: SCORE 1-10
    CATEGORICAL = "categorical"  # legacy: VALID / INVALID / UNCERTAIN


class Verdict(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    UNCERTAIN = "UNCERTAIN"


class ScoreBand(str, Enum):
    HIGH = "high"  # >= 8
    MEDIUM = "medium"  # 5 - 7
    LOW = "low"  # < 5


class AgreementLevel(str, Enum):
    UNANIMOUS = "unanimous"
    STRONG = "strong"
    SPLIT = "split"


class Recommendation(str, Enum):
    LIKELY_VALID = "CITATION_LIKELY_VALID"
    UNCERTAIN = "CITATION_UNCERTAIN"
    LIKELY_HALLUCINATED = "CITATION_LIKELY_HALLUCINATED"


class RiskLevel(str, Enum):
    """Tier 3 ordinal scale, least to most severe."""

    LOW_RISK = "LOW_RISK"
    MODERATE_RISK = "MODERATE_RISK"
    NEEDS_ADDITIONAL_REVIEW = "NEEDS_ADDITIONAL_REVIEW"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]


_RISK_SEVERITY = {
    RiskLevel.LOW_RISK: 0,
    RiskLevel.MODERATE_RISK: 1,
    RiskLevel.NEEDS_ADDITIONAL_REVIEW: 2,
}


class FinalStatus(str, Enum):
    """Legacy Tier 3 status, one-to-one with RiskLevel."""

    VALID = "VALID"
    WARN = "WARN"
    FAIL = "FAIL"


class CheckStatus(str, Enum):
    CITATIONS_IDENTIFIED = "citations_identified"
    VALIDATING = "validating"
    CITATIONS_VALIDATED = "citations_validated"


# --- Data Types ---


class TokenUsage(TypedDict):
    agent: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_usd: float
    timestamp: str


class Citation(TypedDict):
    """A citation candidate inside a document. Owned by the document."""

    id: str  # "cit_001"
    citationText: str
    citationType: str  # "case" | "statute" | "regulation" | "rule" | "secondary"
    extractedComponents: dict[str, Any]
    tier_1: NotRequired[dict[str, Any]]  # produced upstream
    validation: NotRequired[TierTwoResult | None]  # Stage 2 slot
    tier_3: NotRequired[TierThreeResult | None]  # Stage 3 slot
    heavy_analysis: NotRequired[dict[str, Any]]


class AgentVerdict(TypedDict):
    """One agent's judgment of one citation at one tier.

    Tagged by ``format``: SCORE carries ``score``; CATEGORICAL carries
    ``verdict`` (Tier 2) or ``risk_level`` / legacy ``verdict`` (Tier 3).
    Records written before the tag existed are recognised by
    scoring.resolution.verdict_format().
    """

    agent: str
    model: str
    timestamp: str  # ISO 8601
    format: NotRequired[str]  # VerdictFormat value
    score: NotRequired[int]  # 1-10
    verdict: NotRequired[str]  # Verdict value
    risk_level: NotRequired[str]  # RiskLevel value (Tier 3)
    invalid_reason: NotRequired[str]
    uncertain_reason: NotRequired[str]
    reasoning: NotRequired[str]
    source_link: NotRequired[str]  # Tier 3, case citations
    parse_error: NotRequired[str]
    token_usage: NotRequired[TokenUsage]


class RunCost(TypedDict):
    by_model: dict[str, dict[str, float | str]]
    total: dict[str, float | str]  # input_cost, output_cost, total_cost, currency


class ConsensusResult(TypedDict):
    agreement_level: str  # AgreementLevel value
    confidence_score: float  # 0.0-1.0
    escalation_trigger: bool
    recommendation: str  # Recommendation value
    reasoning: str
    format: str  # VerdictFormat value
    verdict_counts: dict[str, int]  # Verdict value -> count
    score_distribution: NotRequired[dict[str, int]]  # ScoreBand value -> count
    average_score: NotRequired[float]
    panel_size: int


class TierTwoResult(TypedDict):
    panel_evaluation: list[AgentVerdict]
    consensus: ConsensusResult
    run_cost: NotRequired[RunCost]


class Tier3Consensus(TypedDict):
    agreement_level: str
    confidence_score: float
    final_risk_level: NotRequired[str]  # current format
    risk_level_counts: NotRequired[dict[str, int]]
    final_status: NotRequired[str]  # legacy format: VALID / WARN / FAIL
    verdict_counts: NotRequired[dict[str, int]]
    confidence: NotRequired[str]  # legacy: high / medium / low
    reasoning: str


class TierThreeResult(TypedDict):
    panel_evaluation: list[AgentVerdict]
    consensus: Tier3Consensus
    run_cost: NotRequired[RunCost]


class ValidationJob(TypedDict):
    id: str
    check_id: str  # unique: one job per document-check
    status: str  # JobStatus value
    tier2_total: int
    tier2_completed: int
    tier3_total: int
    tier3_completed: int
    error: str | None
    created_at: str
    updated_at: str


class QueueItem(TypedDict):
    id: str
    job_id: str
    citation_id: str
    citation_index: int
    tier: str  # Tier value
    status: str  # ItemStatus value
    retry_count: int
    result: dict[str, Any] | None
    error: str | None
    seq: int  # enqueue order
    created_at: str
    updated_at: str
    processed_at: str | None


class CheckDocument(TypedDict):
    """The owning document-check record: status plus the citation JSON."""

    id: str
    status: str  # CheckStatus value
    document: dict[str, Any]  # {"metadata": ..., "content": [...], "citations": [...]}


class RunEvent(TypedDict):
    item_id: str
    job_id: str
    citation_id: str
    tier: str
    outcome: str  # "completed" | "escalated" | "retrying" | "failed"
    ts: str  # ISO 8601
    elapsed_s: float
    tokens: int
    cost: float
    error: NotRequired[str]


class JobReport(TypedDict):
    job_id: str
    check_id: str
    status: str
    error: str | None
    tier2_total: int
    tier2_completed: int
    tier3_total: int
    tier3_completed: int
    percent_complete: float
    unresolved_citations: list[str]


class BatchResult(TypedDict):
    processed: int
    item_ids: list[str]
    failed: list[str]
    has_more: bool
    remaining_pending: int


# --- Protocols ---


@runtime_checkable
class PipelineStore(Protocol):
    """Persistence seam for jobs, queue items and document-checks.

    Implementations must make each method atomic with respect to the
    others: counter increments, compare-and-set transitions and the
    unique job-per-check constraint are relied on by jobs.queue.
    """

    async def create_job(
        self, job: ValidationJob, items: list[QueueItem]
    ) -> tuple[ValidationJob, bool]: ...

    async def get_job(self, job_id: str) -> ValidationJob | None: ...

    async def get_job_for_check(self, check_id: str) -> ValidationJob | None: ...

    async def update_job(self, job_id: str, **fields: Any) -> ValidationJob: ...

    async def increment_job(self, job_id: str, **deltas: int) -> ValidationJob: ...

    async def add_item(self, item: QueueItem) -> tuple[QueueItem, bool]: ...

    async def get_item(self, item_id: str) -> QueueItem | None: ...

    async def find_item(self, job_id: str, citation_id: str, tier: str) -> QueueItem | None: ...

    async def list_items(self, job_id: str) -> list[QueueItem]: ...

    async def next_pending_item(self) -> QueueItem | None: ...

    async def count_items(self, statuses: tuple[str, ...], job_id: str | None = None) -> int: ...

    async def transition_item(
        self, item_id: str, expected: tuple[str, ...], **fields: Any
    ) -> QueueItem | None: ...

    async def get_check(self, check_id: str) -> CheckDocument | None: ...

    async def save_check(self, check: CheckDocument) -> None: ...

    async def update_citation(
        self, check_id: str, citation_index: int, slot: str, result: dict[str, Any]
    ) -> None: ...

    async def set_check_status(self, check_id: str, status: str) -> None: ...


@runtime_checkable
class StageTwoEvaluator(Protocol):
    """Scores one citation with the Stage 2 panel."""

    async def __call__(self, citation: Citation, context: str) -> TierTwoResult: ...


@runtime_checkable
class StageThreeEvaluator(Protocol):
    """Investigates one escalated citation with the Stage 3 panel."""

    async def __call__(
        self, citation: Citation, context: str, consensus: ConsensusResult | None
    ) -> TierThreeResult: ...


# --- Errors ---


class IncompletePanelError(RuntimeError):
    """A panel returned fewer verdicts than it has agents."""

    def __init__(self, tier: str, missing: list[str]) -> None:
        super().__init__(f"{tier} panel incomplete, missing verdicts from: {', '.join(missing)}")
        self.tier = tier
        self.missing = missing


class InvalidTransitionError(ValueError):
    """A queue item transition outside pending -> processing -> completed/failed."""


class JobNotFoundError(LookupError):
    pass


class EmptyCitationSetError(ValueError):
    pass
