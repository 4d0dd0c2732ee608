"""Append-only JSONL event log of processed queue items.

One file per validation job: runs/<job_id>/events.jsonl. The worker appends
one event per queue item it finishes (completed, escalated, retrying or
failed); the status report reads them back as per-tier outcome totals.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from citation_consensus.contracts import RunEvent, Tier

OUTCOMES = ("completed", "escalated", "retrying", "failed")


class EventLog:
    """Queue-item events for a single validation job."""

    _FILENAME = "events.jsonl"

    def __init__(self, log_dir: str | Path, job_id: str) -> None:
        self._dir = Path(log_dir) / job_id
        self.job_id = job_id

    @property
    def path(self) -> Path:
        return self._dir / self._FILENAME

    def emit(self, event: RunEvent) -> None:
        """Append a single event as a JSON line."""
        self._dir.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def read_all(self) -> list[RunEvent]:
        """Read all events. Skips corrupt lines, returns [] on missing file."""
        if not self.path.exists():
            return []
        events: list[RunEvent] = []
        try:
            for line in self.path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        except OSError:
            return []
        return events

    def events(
        self,
        *,
        tier: Tier | str | None = None,
        outcome: str | None = None,
        citation_id: str | None = None,
    ) -> list[RunEvent]:
        """Events matching every given filter, oldest first."""
        tier_value = tier.value if isinstance(tier, Tier) else tier
        return [
            e
            for e in self.read_all()
            if (tier_value is None or e.get("tier") == tier_value)
            and (outcome is None or e.get("outcome") == outcome)
            and (citation_id is None or e.get("citation_id") == citation_id)
        ]

    def summary(self) -> dict[str, Any]:
        """Outcome counts, tokens, cost and time per tier, plus failure messages."""
        per_tier: dict[str, dict[str, Any]] = {}
        errors: list[dict[str, str]] = []
        for event in self.read_all():
            tier = event.get("tier", "unknown")
            entry = per_tier.setdefault(
                tier, {"outcomes": Counter(), "tokens": 0, "cost": 0.0, "elapsed_s": 0.0}
            )
            entry["outcomes"][event.get("outcome", "unknown")] += 1
            entry["tokens"] += event.get("tokens", 0)
            entry["cost"] += event.get("cost", 0.0)
            entry["elapsed_s"] += event.get("elapsed_s", 0.0)
            if event.get("error") and event.get("outcome") in ("retrying", "failed"):
                errors.append({"citation_id": event.get("citation_id", ""), "error": event["error"]})

        return {
            "tiers": {
                tier: {
                    "outcomes": {name: entry["outcomes"].get(name, 0) for name in OUTCOMES},
                    "tokens": entry["tokens"],
                    "cost": round(entry["cost"], 6),
                    "elapsed_s": round(entry["elapsed_s"], 3),
                }
                for tier, entry in sorted(per_tier.items())
            },
            "errors": errors,
        }

    @staticmethod
    def make_event(
        *,
        item_id: str,
        job_id: str,
        citation_id: str,
        tier: str,
        outcome: str,
        elapsed_s: float,
        tokens: int = 0,
        cost: float = 0.0,
        error: str | None = None,
    ) -> RunEvent:
        """Factory for creating a RunEvent with timestamp."""
        event = RunEvent(
            item_id=item_id,
            job_id=job_id,
            citation_id=citation_id,
            tier=tier,
            outcome=outcome,
            ts=datetime.now(timezone.utc).isoformat(),
            elapsed_s=round(elapsed_s, 3),
            tokens=tokens,
            cost=round(cost, 6),
        )
        if error:
            event["error"] = error
        return event
