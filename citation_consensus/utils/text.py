"""Document text utilities: citation-marker stripping and context snippets."""

from __future__ import annotations

import re
from typing import Any

_OPEN_MARKER = re.compile(r"\[CITATION:[^\]\[]*\]?")
_CLOSE_MARKER = re.compile(r"\[/CITATION:[^\]\[]*\]?")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def strip_citation_markers(text: str) -> str:
    """Remove [CITATION:id] / [/CITATION:id] markers, including truncated ones."""
    text = _CLOSE_MARKER.sub("", text)
    text = _OPEN_MARKER.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def _paragraph_text(paragraph: Any) -> str:
    if isinstance(paragraph, dict):
        return str(paragraph.get("text", ""))
    return str(paragraph or "")


def find_citation_paragraph(document: dict[str, Any], citation_id: str) -> int | None:
    """Index of the paragraph holding the citation's opening marker."""
    marker = f"[CITATION:{citation_id}]"
    for i, paragraph in enumerate(document.get("content") or []):
        if marker in _paragraph_text(paragraph):
            return i
    return None


def last_sentences(text: str, count: int = 2) -> str:
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    return ". ".join(sentences[-count:])


def extract_document_context(
    document: dict[str, Any],
    citation_id: str,
    include_preceding: bool = True,
) -> str:
    """Context snippet for a citation prompt.

    The paragraph containing the citation with every marker stripped,
    optionally preceded by the last two sentences of the previous
    paragraph. Returns "" when the citation is not marked in the document.
    """
    index = find_citation_paragraph(document, citation_id)
    if index is None:
        return ""

    content = document.get("content") or []
    context = strip_citation_markers(_paragraph_text(content[index]))

    if include_preceding and index > 0:
        previous = strip_citation_markers(_paragraph_text(content[index - 1]))
        preceding = last_sentences(previous)
        if preceding:
            context = f"{preceding}. {context}"
    return context
