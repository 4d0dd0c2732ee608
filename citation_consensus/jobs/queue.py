"""JobQueue: validation-job creation and the queue-item state machine.

    pending -> processing -> completed
                          -> pending   (retry, retry_count < max_item_retries)
                          -> failed    (budget spent; owning job fails)

Every transition is a compare-and-set on the store, so two workers racing
for the same item cannot both claim or both complete it.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from citation_consensus.contracts import (
    CheckStatus,
    Citation,
    EmptyCitationSetError,
    InvalidTransitionError,
    ItemStatus,
    JobNotFoundError,
    JobReport,
    JobStatus,
    PipelineStore,
    QueueItem,
    Tier,
    ValidationJob,
)
from citation_consensus.jobs.store import now_iso

logger = logging.getLogger(__name__)

_OPEN = (ItemStatus.PENDING.value, ItemStatus.PROCESSING.value)

# Document slot written by each tier
RESULT_SLOTS = {Tier.TIER2.value: "validation", Tier.TIER3.value: "tier_3"}


def make_item(
    job_id: str,
    citation_id: str,
    citation_index: int,
    tier: Tier,
) -> QueueItem:
    ts = now_iso()
    return QueueItem(
        id=f"qi-{uuid.uuid4().hex[:12]}",
        job_id=job_id,
        citation_id=citation_id,
        citation_index=citation_index,
        tier=tier.value,
        status=ItemStatus.PENDING.value,
        retry_count=0,
        result=None,
        error=None,
        seq=0,  # assigned by the store
        created_at=ts,
        updated_at=ts,
        processed_at=None,
    )


class JobQueue:
    """Queue control surface over an injected PipelineStore."""

    def __init__(self, store: PipelineStore, *, max_item_retries: int = 3) -> None:
        self._store = store
        self.max_item_retries = max_item_retries

    @property
    def store(self) -> PipelineStore:
        return self._store

    # --- Creation ---

    async def create_validation_job(self, check_id: str, citations: list[Citation]) -> str:
        """Create a job with one Tier 2 item per citation; return its id.

        Idempotent per check: a second call returns the existing job id.
        """
        if not citations:
            raise EmptyCitationSetError(f"check {check_id} has no citations to validate")

        existing = await self._store.get_job_for_check(check_id)
        if existing is not None:
            logger.info("Job %s already exists for check %s", existing["id"], check_id)
            return existing["id"]

        ts = now_iso()
        job = ValidationJob(
            id=f"job-{uuid.uuid4().hex[:12]}",
            check_id=check_id,
            status=JobStatus.PENDING.value,
            tier2_total=len(citations),
            tier2_completed=0,
            tier3_total=0,
            tier3_completed=0,
            error=None,
            created_at=ts,
            updated_at=ts,
        )
        items = [
            make_item(job["id"], citation["id"], index, Tier.TIER2)
            for index, citation in enumerate(citations)
        ]

        stored, created = await self._store.create_job(job, items)
        if created:
            logger.info(
                "Created job %s for check %s with %d citations", stored["id"], check_id, len(items)
            )
            await self._store.set_check_status(check_id, CheckStatus.VALIDATING.value)
        return stored["id"]

    # --- Dequeue ---

    async def get_next_queue_item(self) -> QueueItem | None:
        """Oldest pending item, without claiming it."""
        return await self._store.next_pending_item()

    async def mark_processing(self, item_id: str) -> bool:
        """Claim a pending item. False if another worker got there first."""
        item = await self._store.transition_item(
            item_id, (ItemStatus.PENDING.value,), status=ItemStatus.PROCESSING.value
        )
        if item is None:
            return False
        job = await self._store.get_job(item["job_id"])
        if job is not None and job["status"] == JobStatus.PENDING.value:
            await self._store.update_job(job["id"], status=JobStatus.PROCESSING.value)
        return True

    async def claim_next(self) -> QueueItem | None:
        """Dequeue and claim the oldest pending item, or None if drained."""
        while True:
            item = await self.get_next_queue_item()
            if item is None:
                return None
            if await self.mark_processing(item["id"]):
                return await self._store.get_item(item["id"])

    # --- Completion ---

    async def _require_processing(self, item_id: str, action: str) -> QueueItem:
        item = await self._store.get_item(item_id)
        if item is None:
            raise LookupError(f"queue item {item_id} not found")
        if item["status"] != ItemStatus.PROCESSING.value:
            raise InvalidTransitionError(
                f"cannot {action} item {item_id} in state {item['status']}"
            )
        return item

    async def mark_completed(
        self, item_id: str, result: dict[str, Any], needs_escalation: bool
    ) -> QueueItem:
        """Complete a processing item and write its result into the document.

        An escalating Tier 2 completion enqueues the Tier 3 item before the
        Tier 2 item closes, so the job never looks drained in between.
        """
        item = await self._require_processing(item_id, "complete")
        job_id = item["job_id"]

        if item["tier"] == Tier.TIER2.value and needs_escalation:
            tier3 = make_item(job_id, item["citation_id"], item["citation_index"], Tier.TIER3)
            _, created = await self._store.add_item(tier3)
            if created:
                await self._store.increment_job(job_id, tier3_total=1)
                logger.info("Escalated citation %s to Tier 3", item["citation_id"])

        done = await self._store.transition_item(
            item_id,
            (ItemStatus.PROCESSING.value,),
            status=ItemStatus.COMPLETED.value,
            result=result,
            error=None,
            processed_at=now_iso(),
        )
        if done is None:
            raise InvalidTransitionError(f"item {item_id} left processing before completion")

        counter = "tier2_completed" if item["tier"] == Tier.TIER2.value else "tier3_completed"
        job = await self._store.increment_job(job_id, **{counter: 1})
        await self._store.update_citation(
            job["check_id"], item["citation_index"], RESULT_SLOTS[item["tier"]], result
        )
        return done

    async def mark_failed(self, item_id: str, error: str) -> QueueItem:
        """Fail a processing item: re-enqueue it, or fail the job once the budget is spent."""
        item = await self._require_processing(item_id, "fail")

        if item["retry_count"] < self.max_item_retries:
            retry = item["retry_count"] + 1
            updated = await self._store.transition_item(
                item_id,
                (ItemStatus.PROCESSING.value,),
                status=ItemStatus.PENDING.value,
                retry_count=retry,
                error=error,
            )
            logger.warning(
                "Item %s (%s, citation %s) failed, retry %d/%d: %s",
                item_id,
                item["tier"],
                item["citation_id"],
                retry,
                self.max_item_retries,
                error,
            )
        else:
            updated = await self._store.transition_item(
                item_id,
                (ItemStatus.PROCESSING.value,),
                status=ItemStatus.FAILED.value,
                error=error,
                processed_at=now_iso(),
            )
            message = f"Too many failures for citation {item['citation_id']}: {error}"
            await self._store.update_job(item["job_id"], status=JobStatus.FAILED.value, error=message)
            logger.error("Job %s failed. %s", item["job_id"], message)

        if updated is None:
            raise InvalidTransitionError(f"item {item_id} left processing before failure")
        return updated

    async def check_job_completion(self, job_id: str) -> bool:
        """Complete the job once no item is pending or processing.

        A failed job stays failed and reports False.
        """
        job = await self._store.get_job(job_id)
        if job is None:
            return False
        if job["status"] == JobStatus.FAILED.value:
            return False
        if job["status"] == JobStatus.COMPLETED.value:
            return True

        open_items = await self._store.count_items(_OPEN, job_id=job_id)
        if open_items > 0:
            return False

        await self._store.update_job(job_id, status=JobStatus.COMPLETED.value)
        await self._store.set_check_status(job["check_id"], CheckStatus.CITATIONS_VALIDATED.value)
        logger.info(
            "Job %s completed: %d Tier 2, %d Tier 3",
            job_id,
            job["tier2_completed"],
            job["tier3_completed"],
        )
        return True

    # --- Reporting and recovery ---

    async def job_report(self, job_id: str) -> JobReport:
        """Progress, failure reason and unresolved citations for a job."""
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found")
        items = await self._store.list_items(job_id)

        unresolved: list[str] = []
        for item in items:
            if item["status"] != ItemStatus.COMPLETED.value and item["citation_id"] not in unresolved:
                unresolved.append(item["citation_id"])

        total = job["tier2_total"] + job["tier3_total"]
        done = job["tier2_completed"] + job["tier3_completed"]
        return JobReport(
            job_id=job["id"],
            check_id=job["check_id"],
            status=job["status"],
            error=job["error"],
            tier2_total=job["tier2_total"],
            tier2_completed=job["tier2_completed"],
            tier3_total=job["tier3_total"],
            tier3_completed=job["tier3_completed"],
            percent_complete=round(done / total * 100, 1) if total else 0.0,
            unresolved_citations=unresolved,
        )

    async def retry_unvalidated(self, job_id: str) -> int:
        """Re-enqueue every failed item of a job with a fresh retry budget.

        A failed job moves back to processing when anything was re-enqueued.
        Returns the number of items re-enqueued.
        """
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found")

        count = 0
        for item in await self._store.list_items(job_id):
            if item["status"] != ItemStatus.FAILED.value:
                continue
            reset = await self._store.transition_item(
                item["id"],
                (ItemStatus.FAILED.value,),
                status=ItemStatus.PENDING.value,
                retry_count=0,
                error=None,
                processed_at=None,
            )
            if reset is not None:
                count += 1

        if count and job["status"] == JobStatus.FAILED.value:
            await self._store.update_job(job_id, status=JobStatus.PROCESSING.value, error=None)
            await self._store.set_check_status(job["check_id"], CheckStatus.VALIDATING.value)
        logger.info("Re-enqueued %d failed items for job %s", count, job_id)
        return count
