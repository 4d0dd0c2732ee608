"""Tests for jobs.queue: job creation, item state machine and completion."""

from __future__ import annotations

import asyncio

import pytest

from citation_consensus.contracts import (
    EmptyCitationSetError,
    InvalidTransitionError,
    JobNotFoundError,
)


async def _start_job(queue, check) -> str:
    await queue.store.save_check(check)
    return await queue.create_validation_job(check["id"], check["document"]["citations"])


_RESULT = {"panel_evaluation": [], "consensus": {"average_score": 9.0, "escalation_trigger": False}}


class TestCreateValidationJob:
    @pytest.mark.asyncio
    async def test_creates_one_tier2_item_per_citation(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        job = await queue.store.get_job(job_id)
        assert job["status"] == "pending"
        assert job["tier2_total"] == 3
        assert job["tier3_total"] == 0
        items = await queue.store.list_items(job_id)
        assert [(i["citation_id"], i["citation_index"], i["tier"]) for i in items] == [
            ("cit_001", 0, "tier2"),
            ("cit_002", 1, "tier2"),
            ("cit_003", 2, "tier2"),
        ]
        assert (await queue.store.get_check("check-001"))["status"] == "validating"

    @pytest.mark.asyncio
    async def test_idempotent_per_check(self, queue, sample_check):
        first = await _start_job(queue, sample_check)
        second = await queue.create_validation_job("check-001", sample_check["document"]["citations"])
        assert first == second
        assert len(await queue.store.list_items(first)) == 3

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_job(self, queue, sample_check):
        await queue.store.save_check(sample_check)
        citations = sample_check["document"]["citations"]
        ids = await asyncio.gather(
            *(queue.create_validation_job("check-001", citations) for _ in range(5))
        )
        assert len(set(ids)) == 1
        assert await queue.store.count_items(("pending",)) == 3

    @pytest.mark.asyncio
    async def test_empty_citations_rejected(self, queue):
        with pytest.raises(EmptyCitationSetError):
            await queue.create_validation_job("check-empty", [])
        assert await queue.store.get_job_for_check("check-empty") is None


class TestClaiming:
    @pytest.mark.asyncio
    async def test_claim_in_enqueue_order(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        first = await queue.claim_next()
        assert first["citation_id"] == "cit_001"
        assert first["status"] == "processing"
        assert (await queue.store.get_job(job_id))["status"] == "processing"
        assert (await queue.claim_next())["citation_id"] == "cit_002"

    @pytest.mark.asyncio
    async def test_item_claimed_once(self, queue, sample_check):
        await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        results = await asyncio.gather(*(queue.mark_processing(item["id"]) for _ in range(4)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_distinct(self, queue, sample_check):
        await _start_job(queue, sample_check)
        claimed = await asyncio.gather(*(queue.claim_next() for _ in range(5)))
        ids = [c["id"] for c in claimed if c is not None]
        assert len(ids) == 3
        assert len(set(ids)) == 3

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.claim_next() is None


class TestCompletion:
    @pytest.mark.asyncio
    async def test_complete_writes_result_into_document(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.claim_next()
        done = await queue.mark_completed(item["id"], _RESULT, needs_escalation=False)
        assert done["status"] == "completed"
        assert done["processed_at"]
        job = await queue.store.get_job(job_id)
        assert job["tier2_completed"] == 1
        check = await queue.store.get_check("check-001")
        assert check["document"]["citations"][0]["validation"] == _RESULT
        assert "validation" not in check["document"]["citations"][1]

    @pytest.mark.asyncio
    async def test_escalation_enqueues_tier3_once(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.claim_next()
        await queue.mark_completed(item["id"], _RESULT, needs_escalation=True)

        job = await queue.store.get_job(job_id)
        assert job["tier3_total"] == 1
        tier3 = await queue.store.find_item(job_id, "cit_001", "tier3")
        assert tier3["status"] == "pending"
        assert tier3["citation_index"] == 0

    @pytest.mark.asyncio
    async def test_tier3_completion_fills_tier3_slot(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.claim_next()
        await queue.mark_completed(item["id"], _RESULT, needs_escalation=True)
        tier3 = await queue.store.find_item(job_id, "cit_001", "tier3")
        await queue.mark_processing(tier3["id"])
        await queue.mark_completed(tier3["id"], {"consensus": {"final_risk_level": "LOW_RISK"}}, False)

        job = await queue.store.get_job(job_id)
        assert job["tier3_completed"] == 1
        check = await queue.store.get_check("check-001")
        assert check["document"]["citations"][0]["tier_3"]["consensus"]["final_risk_level"] == "LOW_RISK"

    @pytest.mark.asyncio
    async def test_completing_pending_item_rejected(self, queue, sample_check):
        await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        with pytest.raises(InvalidTransitionError):
            await queue.mark_completed(item["id"], _RESULT, needs_escalation=False)

    @pytest.mark.asyncio
    async def test_completing_unknown_item(self, queue):
        with pytest.raises(LookupError):
            await queue.mark_completed("qi-missing", _RESULT, needs_escalation=False)


class TestFailure:
    @pytest.mark.asyncio
    async def test_failure_reenqueues_within_budget(self, queue, sample_check):
        await _start_job(queue, sample_check)
        item = await queue.claim_next()
        failed = await queue.mark_failed(item["id"], "timeout")
        assert failed["status"] == "pending"
        assert failed["retry_count"] == 1
        assert failed["error"] == "timeout"

    @pytest.mark.asyncio
    async def test_failing_pending_item_rejected(self, queue, sample_check):
        await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        with pytest.raises(InvalidTransitionError):
            await queue.mark_failed(item["id"], "boom")
        unchanged = await queue.store.get_item(item["id"])
        assert unchanged["status"] == "pending"
        assert unchanged["retry_count"] == 0
        assert unchanged["error"] is None

    @pytest.mark.asyncio
    async def test_budget_spent_fails_item_and_job(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        for _ in range(queue.max_item_retries):
            await queue.mark_processing(item["id"])
            await queue.mark_failed(item["id"], "boom")

        await queue.mark_processing(item["id"])
        final = await queue.mark_failed(item["id"], "boom")
        assert final["status"] == "failed"
        assert final["retry_count"] == 3
        job = await queue.store.get_job(job_id)
        assert job["status"] == "failed"
        assert job["error"] == "Too many failures for citation cit_001: boom"

    @pytest.mark.asyncio
    async def test_failing_completed_item_rejected(self, queue, sample_check):
        await _start_job(queue, sample_check)
        item = await queue.claim_next()
        await queue.mark_completed(item["id"], _RESULT, needs_escalation=False)
        with pytest.raises(InvalidTransitionError):
            await queue.mark_failed(item["id"], "late")


async def _fail_permanently(queue, item_id: str) -> None:
    for _ in range(queue.max_item_retries + 1):
        await queue.mark_processing(item_id)
        await queue.mark_failed(item_id, "boom")


class TestJobCompletion:
    @pytest.mark.asyncio
    async def test_completes_when_drained(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        while (item := await queue.claim_next()) is not None:
            assert not await queue.check_job_completion(job_id)
            await queue.mark_completed(item["id"], _RESULT, needs_escalation=False)
        assert await queue.check_job_completion(job_id)
        assert (await queue.store.get_job(job_id))["status"] == "completed"
        assert (await queue.store.get_check("check-001"))["status"] == "citations_validated"
        assert await queue.check_job_completion(job_id)

    @pytest.mark.asyncio
    async def test_pending_tier3_keeps_job_open(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        first = await queue.claim_next()
        await queue.mark_completed(first["id"], _RESULT, needs_escalation=True)
        for _ in range(2):
            item = await queue.claim_next()
            await queue.mark_completed(item["id"], _RESULT, needs_escalation=False)
        assert not await queue.check_job_completion(job_id)

    @pytest.mark.asyncio
    async def test_failed_job_never_reports_success(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        await _fail_permanently(queue, item["id"])
        while (other := await queue.claim_next()) is not None:
            await queue.mark_completed(other["id"], _RESULT, needs_escalation=False)
        assert not await queue.check_job_completion(job_id)
        assert (await queue.store.get_job(job_id))["status"] == "failed"

    @pytest.mark.asyncio
    async def test_unknown_job(self, queue):
        assert not await queue.check_job_completion("job-missing")


class TestReportAndRetry:
    @pytest.mark.asyncio
    async def test_report_progress(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.claim_next()
        await queue.mark_completed(item["id"], _RESULT, needs_escalation=True)
        report = await queue.job_report(job_id)
        assert report["tier2_completed"] == 1
        assert report["tier3_total"] == 1
        assert report["percent_complete"] == 25.0
        assert report["unresolved_citations"] == ["cit_002", "cit_003", "cit_001"]

    @pytest.mark.asyncio
    async def test_report_unknown_job(self, queue):
        with pytest.raises(JobNotFoundError):
            await queue.job_report("job-missing")

    @pytest.mark.asyncio
    async def test_retry_unvalidated_revives_job(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        item = await queue.get_next_queue_item()
        await _fail_permanently(queue, item["id"])

        assert await queue.retry_unvalidated(job_id) == 1
        job = await queue.store.get_job(job_id)
        assert job["status"] == "processing"
        assert job["error"] is None
        revived = await queue.store.get_item(item["id"])
        assert revived["status"] == "pending"
        assert revived["retry_count"] == 0
        assert (await queue.store.get_check("check-001"))["status"] == "validating"

    @pytest.mark.asyncio
    async def test_retry_with_nothing_failed(self, queue, sample_check):
        job_id = await _start_job(queue, sample_check)
        assert await queue.retry_unvalidated(job_id) == 0
        assert (await queue.store.get_job(job_id))["status"] == "pending"

    @pytest.mark.asyncio
    async def test_retry_unknown_job(self, queue):
        with pytest.raises(JobNotFoundError):
            await queue.retry_unvalidated("job-missing")
