"""QueueWorker: drains the validation queue in bounded batches.

Each batch claims up to ``batch_size`` pending items and processes them
concurrently. ``drain`` repeats batches until one claims nothing, so
items re-enqueued by a failure are picked up by a later batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from citation_consensus.contracts import (
    BatchResult,
    Citation,
    ConsensusResult,
    ItemStatus,
    PipelineStore,
    QueueItem,
    StageThreeEvaluator,
    StageTwoEvaluator,
    Tier,
)
from citation_consensus.event_log.writer import EventLog
from citation_consensus.jobs.queue import JobQueue
from citation_consensus.scoring.resolution import needs_escalation
from citation_consensus.utils.text import extract_document_context

logger = logging.getLogger(__name__)


def _usage_totals(result: dict[str, Any] | None) -> tuple[int, float]:
    if not result:
        return 0, 0.0
    tokens = sum(
        (v.get("token_usage") or {}).get("total_tokens", 0)
        for v in result.get("panel_evaluation", [])
    )
    cost = (result.get("run_cost") or {}).get("total", {}).get("total_cost", 0.0)
    return tokens, float(cost)


class QueueWorker:
    """Processes queue items through Stage 2 and, when escalated, Stage 3."""

    def __init__(
        self,
        queue: JobQueue,
        tier2_evaluator: StageTwoEvaluator,
        tier3_evaluator: StageThreeEvaluator,
        *,
        batch_size: int = 5,
        run_log_dir: str | Path | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._queue = queue
        self._store: PipelineStore = queue.store
        self._tier2 = tier2_evaluator
        self._tier3 = tier3_evaluator
        self._batch_size = batch_size
        self._run_log_dir = Path(run_log_dir) if run_log_dir else None
        self._logs: dict[str, EventLog] = {}
        self._task: asyncio.Task | None = None

    def _event_log(self, job_id: str) -> EventLog | None:
        if self._run_log_dir is None:
            return None
        if job_id not in self._logs:
            self._logs[job_id] = EventLog(self._run_log_dir, job_id)
        return self._logs[job_id]

    async def _load_citation(self, item: QueueItem) -> tuple[Citation, str]:
        job = await self._store.get_job(item["job_id"])
        if job is None:
            raise LookupError(f"job {item['job_id']} not found")
        check = await self._store.get_check(job["check_id"])
        if check is None:
            raise LookupError(f"check {job['check_id']} not found")

        document = check["document"]
        citations = document.get("citations") or []
        index = item["citation_index"]
        if not 0 <= index < len(citations) or citations[index].get("id") != item["citation_id"]:
            raise LookupError(
                f"citation {item['citation_id']} not at index {index} of check {check['id']}"
            )
        citation = citations[index]
        return citation, extract_document_context(document, citation["id"])

    async def _stage_two_consensus(
        self, item: QueueItem, citation: Citation
    ) -> ConsensusResult | None:
        tier2_item = await self._store.find_item(
            item["job_id"], item["citation_id"], Tier.TIER2.value
        )
        result = tier2_item.get("result") if tier2_item else None
        if not result:
            result = citation.get("validation")
        return (result or {}).get("consensus")

    async def process_item(self, item: QueueItem) -> str:
        """Run one claimed item to completion or failure. Returns the outcome."""
        start = time.monotonic()
        result: dict[str, Any] | None = None
        error: str | None = None

        try:
            citation, context = await self._load_citation(item)
            if item["tier"] == Tier.TIER2.value:
                result = await self._tier2(citation, context)
                escalate = needs_escalation(result["consensus"])
                await self._queue.mark_completed(item["id"], result, escalate)
                outcome = "escalated" if escalate else "completed"
            else:
                consensus = await self._stage_two_consensus(item, citation)
                result = await self._tier3(citation, context, consensus)
                await self._queue.mark_completed(item["id"], result, False)
                outcome = "completed"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            failed = await self._queue.mark_failed(item["id"], error)
            outcome = "retrying" if failed["status"] == ItemStatus.PENDING.value else "failed"

        await self._queue.check_job_completion(item["job_id"])

        elapsed = time.monotonic() - start
        tokens, cost = _usage_totals(result)
        event_log = self._event_log(item["job_id"])
        if event_log is not None:
            event_log.emit(
                EventLog.make_event(
                    item_id=item["id"],
                    job_id=item["job_id"],
                    citation_id=item["citation_id"],
                    tier=item["tier"],
                    outcome=outcome,
                    elapsed_s=elapsed,
                    tokens=tokens,
                    cost=cost,
                    error=error,
                )
            )
        logger.info(
            "Item %s (%s, citation %s): %s in %.1fs",
            item["id"],
            item["tier"],
            item["citation_id"],
            outcome,
            elapsed,
        )
        return outcome

    async def process_batch(self) -> BatchResult:
        """Claim up to batch_size items and process them concurrently."""
        claimed: list[QueueItem] = []
        while len(claimed) < self._batch_size:
            item = await self._queue.claim_next()
            if item is None:
                break
            claimed.append(item)

        outcomes = await asyncio.gather(*(self.process_item(i) for i in claimed))
        remaining = await self._store.count_items((ItemStatus.PENDING.value,))

        return BatchResult(
            processed=len(claimed),
            item_ids=[i["id"] for i in claimed],
            failed=[i["id"] for i, o in zip(claimed, outcomes) if o == "failed"],
            has_more=remaining > 0,
            remaining_pending=remaining,
        )

    async def drain(self) -> list[BatchResult]:
        """Process batches until a batch claims nothing."""
        batches: list[BatchResult] = []
        while True:
            batch = await self.process_batch()
            if batch["processed"] == 0:
                break
            batches.append(batch)
            logger.info(
                "Batch processed %d items, %d pending", batch["processed"], batch["remaining_pending"]
            )
        return batches

    def start(self) -> asyncio.Task:
        """Drain in the background without blocking the caller.

        Returns the running task; calling again while it runs returns the same task.
        """
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.drain())
        return self._task
