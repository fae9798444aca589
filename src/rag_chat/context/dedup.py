"""Collapse retrieval matches into one context document per source."""

from __future__ import annotations

from collections.abc import Iterable

from rag_chat.types import ContextDocument, DedupResult, Match


def deduplicate(matches: Iterable[Match | ContextDocument]) -> DedupResult:
    """Keep the first-seen entry for every source id, preserving order.

    Accepts already-deduplicated documents as well, in which case the input is
    returned unchanged.
    """

    documents: dict[str, ContextDocument] = {}
    for item in matches:
        if item.source_id in documents:
            continue
        if isinstance(item, ContextDocument):
            documents[item.source_id] = item
        else:
            documents[item.source_id] = ContextDocument(
                source_id=item.source_id, full_text=item.full_text
            )
    return DedupResult(documents=list(documents.values()), source_ids=list(documents))
