"""Retrieval client over a lazily initialized, process-wide vector index."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from rag_chat.config import RetrievalConfig
from rag_chat.errors import RetrievalUnavailableError
from rag_chat.retrieval.vector_store import VectorIndex
from rag_chat.types import Match

logger = logging.getLogger(__name__)


class IndexHandle:
    """Shared vector index client, created on first use exactly once.

    Concurrent first callers block on the same lock; only one of them runs the
    factory. A failed initialization is not cached, so a later request retries.
    """

    def __init__(self, factory: Callable[[], VectorIndex]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._index: VectorIndex | None = None
        self.init_count = 0

    @classmethod
    def of(cls, index: VectorIndex) -> IndexHandle:
        return cls(lambda: index)

    @property
    def initialized(self) -> bool:
        return self._index is not None

    def get(self) -> VectorIndex:
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is None:
                try:
                    self._index = self._factory()
                except Exception as exc:
                    logger.error("Vector index initialization failed: %s", exc)
                    raise RetrievalUnavailableError(f"Vector index unavailable: {exc}") from exc
                self.init_count += 1
                logger.info("Vector index client initialized")
            return self._index


class _RawMatchModel(BaseModel):
    distance: float
    metadata: dict[str, Any]


_RAW_MATCHES = TypeAdapter(list[_RawMatchModel])


class _MatchFields(BaseModel):
    source_id: str = Field(min_length=1)
    chunk_text: str
    chunk_index: int = Field(ge=0)
    document_text: str = ""


class RetrievalClient:
    """Runs nearest-neighbor lookups and validates what comes back."""

    def __init__(self, handle: IndexHandle, config: RetrievalConfig | None = None) -> None:
        self.handle = handle
        self.config = config or RetrievalConfig()

    def lookup(self, embedding: list[float], top_k: int | None = None) -> list[Match]:
        """Return matches best first (increasing distance).

        Raises `RetrievalUnavailableError` on transport failure or malformed
        metadata; partial results are never returned.
        """

        k = self.config.top_k if top_k is None else top_k
        if k < 1:
            raise ValueError("top_k must be positive")
        index = self.handle.get()
        try:
            raw_matches = index.query(embedding, k)
        except RetrievalUnavailableError:
            raise
        except Exception as exc:
            logger.error("Vector index query failed: %s", exc)
            raise RetrievalUnavailableError(f"Vector index query failed: {exc}") from exc

        try:
            parsed = _RAW_MATCHES.validate_python(raw_matches)
        except ValidationError as exc:
            logger.error("Malformed vector index response: %s", exc)
            raise RetrievalUnavailableError("Vector index returned a malformed response") from exc

        matches = [self._validate(raw, position) for position, raw in enumerate(parsed[:k])]
        return sorted(matches, key=lambda match: match.embedding_distance)

    def _validate(self, raw: _RawMatchModel, position: int) -> Match:
        metadata = raw.metadata
        try:
            fields = _MatchFields.model_validate(
                {
                    "source_id": metadata.get(self.config.source_field),
                    "chunk_text": metadata.get(self.config.chunk_field),
                    "chunk_index": metadata.get(self.config.chunk_index_field, position),
                    "document_text": metadata.get(self.config.text_field) or "",
                }
            )
        except ValidationError as exc:
            logger.error("Malformed match metadata at position %d: %s", position, exc)
            raise RetrievalUnavailableError("Vector index returned malformed match metadata") from exc
        return Match(
            source_id=fields.source_id,
            chunk_text=fields.chunk_text,
            chunk_index=fields.chunk_index,
            embedding_distance=raw.distance,
            document_text=fields.document_text,
        )
