"""PipelineStore implementations: in-memory and single-JSON-file.

Both serialize every operation behind one asyncio.Lock, which gives the
atomic counter increments, compare-and-set transitions and unique job
creation that jobs.queue relies on. Records handed out are copies; the
only way to change stored state is through the store's methods.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from citation_consensus.contracts import (
    CheckDocument,
    ItemStatus,
    JobNotFoundError,
    QueueItem,
    ValidationJob,
)

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_state() -> dict[str, Any]:
    return {"jobs": {}, "items": {}, "checks": {}, "seq": 0}


class InMemoryStore:
    """PipelineStore backed by dicts. Substitutes for persistence in tests."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state: dict[str, Any] = _empty_state()

    async def _persist(self) -> None:
        """Hook awaited after every mutation while the lock is held."""

    def _next_seq(self) -> int:
        self._state["seq"] += 1
        return self._state["seq"]

    def _require_job(self, job_id: str) -> ValidationJob:
        job = self._state["jobs"].get(job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found")
        return job

    def _item_key_match(self, item: QueueItem, job_id: str, citation_id: str, tier: str) -> bool:
        return item["job_id"] == job_id and item["citation_id"] == citation_id and item["tier"] == tier

    # --- Jobs ---

    async def create_job(
        self, job: ValidationJob, items: list[QueueItem]
    ) -> tuple[ValidationJob, bool]:
        """Insert a job and its items together, unique per check_id.

        Returns (job, created). When a job already exists for the check the
        existing one is returned and nothing is written.
        """
        async with self._lock:
            for existing in self._state["jobs"].values():
                if existing["check_id"] == job["check_id"]:
                    return copy.deepcopy(existing), False
            self._state["jobs"][job["id"]] = copy.deepcopy(job)
            for item in items:
                stored = copy.deepcopy(item)
                stored["seq"] = self._next_seq()
                self._state["items"][stored["id"]] = stored
            await self._persist()
            return copy.deepcopy(job), True

    async def get_job(self, job_id: str) -> ValidationJob | None:
        async with self._lock:
            job = self._state["jobs"].get(job_id)
            return copy.deepcopy(job) if job else None

    async def get_job_for_check(self, check_id: str) -> ValidationJob | None:
        async with self._lock:
            for job in self._state["jobs"].values():
                if job["check_id"] == check_id:
                    return copy.deepcopy(job)
            return None

    async def update_job(self, job_id: str, **fields: Any) -> ValidationJob:
        async with self._lock:
            job = self._require_job(job_id)
            job.update(fields)
            job["updated_at"] = now_iso()
            await self._persist()
            return copy.deepcopy(job)

    async def increment_job(self, job_id: str, **deltas: int) -> ValidationJob:
        async with self._lock:
            job = self._require_job(job_id)
            for counter, delta in deltas.items():
                job[counter] = job.get(counter, 0) + delta
            job["updated_at"] = now_iso()
            await self._persist()
            return copy.deepcopy(job)

    # --- Queue items ---

    async def add_item(self, item: QueueItem) -> tuple[QueueItem, bool]:
        """Insert an item, unique per (job, citation, tier)."""
        async with self._lock:
            for existing in self._state["items"].values():
                if self._item_key_match(existing, item["job_id"], item["citation_id"], item["tier"]):
                    return copy.deepcopy(existing), False
            stored = copy.deepcopy(item)
            stored["seq"] = self._next_seq()
            self._state["items"][stored["id"]] = stored
            await self._persist()
            return copy.deepcopy(stored), True

    async def get_item(self, item_id: str) -> QueueItem | None:
        async with self._lock:
            item = self._state["items"].get(item_id)
            return copy.deepcopy(item) if item else None

    async def find_item(self, job_id: str, citation_id: str, tier: str) -> QueueItem | None:
        async with self._lock:
            for item in self._state["items"].values():
                if self._item_key_match(item, job_id, citation_id, tier):
                    return copy.deepcopy(item)
            return None

    async def list_items(self, job_id: str) -> list[QueueItem]:
        async with self._lock:
            items = [i for i in self._state["items"].values() if i["job_id"] == job_id]
            return [copy.deepcopy(i) for i in sorted(items, key=lambda i: i["seq"])]

    async def next_pending_item(self) -> QueueItem | None:
        """Oldest pending item across all jobs."""
        async with self._lock:
            pending = [
                i for i in self._state["items"].values() if i["status"] == ItemStatus.PENDING.value
            ]
            if not pending:
                return None
            return copy.deepcopy(min(pending, key=lambda i: i["seq"]))

    async def count_items(self, statuses: tuple[str, ...], job_id: str | None = None) -> int:
        async with self._lock:
            return sum(
                1
                for i in self._state["items"].values()
                if i["status"] in statuses and (job_id is None or i["job_id"] == job_id)
            )

    async def transition_item(
        self, item_id: str, expected: tuple[str, ...], **fields: Any
    ) -> QueueItem | None:
        """Compare-and-set: apply ``fields`` only if the status is in ``expected``.

        Returns the updated item, or None when the item is missing or in
        another state.
        """
        async with self._lock:
            item = self._state["items"].get(item_id)
            if item is None or item["status"] not in expected:
                return None
            item.update(fields)
            item["updated_at"] = now_iso()
            await self._persist()
            return copy.deepcopy(item)

    # --- Document-checks ---

    async def get_check(self, check_id: str) -> CheckDocument | None:
        async with self._lock:
            check = self._state["checks"].get(check_id)
            return copy.deepcopy(check) if check else None

    async def save_check(self, check: CheckDocument) -> None:
        async with self._lock:
            self._state["checks"][check["id"]] = copy.deepcopy(check)
            await self._persist()

    async def update_citation(
        self, check_id: str, citation_index: int, slot: str, result: dict[str, Any]
    ) -> None:
        """Write one stage result into one citation, leaving the rest untouched."""
        async with self._lock:
            check = self._state["checks"].get(check_id)
            if check is None:
                logger.warning("Check %s not found; %s result not written back", check_id, slot)
                return
            citations = check["document"].setdefault("citations", [])
            if not 0 <= citation_index < len(citations):
                logger.warning(
                    "Citation index %d out of range for check %s", citation_index, check_id
                )
                return
            citations[citation_index][slot] = copy.deepcopy(result)
            await self._persist()

    async def set_check_status(self, check_id: str, status: str) -> None:
        async with self._lock:
            check = self._state["checks"].get(check_id)
            if check is None:
                logger.warning("Check %s not found; status %s not written", check_id, status)
                return
            check["status"] = status
            await self._persist()


class JsonFileStore(InMemoryStore):
    """PipelineStore persisted to a single human-readable JSON file.

    Loaded once at construction; rewritten atomically (temp file + rename)
    after every mutation. A missing or corrupt file starts an empty store.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._state = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty_state()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Store file %s unreadable (%s); starting empty", self._path, e)
            return _empty_state()
        if not isinstance(data, dict):
            return _empty_state()
        state = _empty_state()
        for key in ("jobs", "items", "checks"):
            if isinstance(data.get(key), dict):
                state[key] = data[key]
        state["seq"] = int(data.get("seq", 0))
        return state

    async def _persist(self) -> None:
        # Snapshot on the loop; the file write runs in a worker thread
        payload = json.dumps(self._state, indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write, payload)

    def _write(self, payload: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self._path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
