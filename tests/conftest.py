"""Test fixtures and mocks."""

from __future__ import annotations

import pytest

from citation_consensus.contracts import CheckDocument, CheckStatus, Citation
from citation_consensus.jobs.queue import JobQueue
from citation_consensus.jobs.store import InMemoryStore


@pytest.fixture
def sample_citations() -> list[Citation]:
    return [
        Citation(
            id="cit_001",
            citationText="Brown v. Board of Education, 347 U.S. 483 (1954)",
            citationType="case",
            extractedComponents={
                "parties": "Brown v. Board of Education",
                "volume": "347",
                "reporter": "U.S.",
                "page": "483",
                "year": "1954",
            },
            tier_1={"format_valid": True},
        ),
        Citation(
            id="cit_002",
            citationText="Smith v. Atlantic Widget Co., 912 F.4th 1187 (9th Cir. 1962)",
            citationType="case",
            extractedComponents={
                "parties": "Smith v. Atlantic Widget Co.",
                "volume": "912",
                "reporter": "F.4th",
                "page": "1187",
                "court": "9th Cir.",
                "year": "1962",
            },
            tier_1={"format_valid": True},
        ),
        Citation(
            id="cit_003",
            citationText="42 U.S.C. § 1983",
            citationType="statute",
            extractedComponents={"title": "42", "code": "U.S.C.", "section": "1983"},
            tier_1={"format_valid": True},
        ),
    ]


@pytest.fixture
def sample_document(sample_citations) -> dict:
    return {
        "metadata": {"title": "Motion to Dismiss"},
        "content": [
            {"text": "Plaintiff filed suit in 2023. The district court denied relief."},
            {
                "text": "Segregated schools are inherently unequal. "
                "[CITATION:cit_001]Brown v. Board of Education, 347 U.S. 483 (1954)"
                "[/CITATION:cit_001] controls here."
            },
            {
                "text": "The Ninth Circuit agreed in "
                "[CITATION:cit_002]Smith v. Atlantic Widget Co., 912 F.4th 1187 "
                "(9th Cir. 1962)[/CITATION:cit_002]. Section "
                "[CITATION:cit_003]42 U.S.C. § 1983[/CITATION:cit_003] provides a remedy."
            },
        ],
        "citations": sample_citations,
    }


@pytest.fixture
def sample_check(sample_document) -> CheckDocument:
    return CheckDocument(
        id="check-001",
        status=CheckStatus.CITATIONS_IDENTIFIED.value,
        document=sample_document,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def queue(store) -> JobQueue:
    return JobQueue(store, max_item_retries=3)
