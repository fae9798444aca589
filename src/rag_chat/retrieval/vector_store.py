"""Vector index interfaces and concrete adapters."""

from __future__ import annotations

from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol, cast

from rag_chat.retrieval.embedder import Embedder

RawMatch = dict[str, Any]


class VectorIndex(Protocol):
    """Nearest-neighbor lookup contract.

    Results are loosely typed dicts with `id`, `distance` and `metadata` keys,
    best match first. They are validated by `RetrievalClient`.
    """

    def query(self, vector: list[float], k: int) -> list[RawMatch]:
        """Return the `k` nearest records to `vector`."""


@dataclass(slots=True)
class _StoredVector:
    record_id: str
    embedding: list[float]
    metadata: dict[str, Any]


class InMemoryVectorIndex:
    """Deterministic index used for tests and local prototyping.

    Distance is cosine distance (1 - cosine similarity).
    """

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def __len__(self) -> int:
        return len(self._store)

    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        if not len(ids) == len(embeddings) == len(metadatas):
            raise ValueError("ids, embeddings and metadatas must have the same length")
        for record_id, embedding, metadata in zip(ids, embeddings, metadatas, strict=True):
            self._store[record_id] = _StoredVector(
                record_id=record_id, embedding=embedding, metadata=dict(metadata)
            )

    def query(self, vector: list[float], k: int) -> list[RawMatch]:
        ranked = sorted(
            self._store.values(),
            key=lambda record: 1.0 - _cosine_similarity(vector, record.embedding),
        )
        return [
            {
                "id": record.record_id,
                "distance": 1.0 - _cosine_similarity(vector, record.embedding),
                "metadata": dict(record.metadata),
            }
            for record in ranked[:k]
        ]


class FaissVectorIndex:
    """FAISS index via LangChain community integration.

    Keeps the same query contract as `InMemoryVectorIndex`. The chunk text is
    stored as the LangChain document content; everything else lives in the
    document metadata.
    """

    def __init__(self, embedder: Embedder, *, folder_path: str | None = None) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _EmbeddingAdapter(Embeddings):
            def __init__(self, adapter_embedder: Embedder) -> None:
                self._embedder = adapter_embedder

            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                return cast(list[list[float]], self._embedder.embed_documents(texts))

            def embed_query(self, text: str) -> list[float]:
                return cast(list[float], self._embedder.embed_query(text))

        self._faiss_cls = FAISS
        self._embeddings = _EmbeddingAdapter(embedder)
        self._index: Any | None = None
        if folder_path:
            self._index = FAISS.load_local(
                folder_path,
                self._embeddings,
                allow_dangerous_deserialization=True,
            )

    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        if not len(ids) == len(embeddings) == len(metadatas):
            raise ValueError("ids, embeddings and metadatas must have the same length")
        texts = [str(metadata.get("chunk", "")) for metadata in metadatas]
        pairs = list(zip(texts, embeddings, strict=True))
        if self._index is None:
            self._index = self._faiss_cls.from_embeddings(
                text_embeddings=pairs,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=ids,
            )
            return
        self._index.add_embeddings(text_embeddings=pairs, metadatas=metadatas, ids=ids)

    def query(self, vector: list[float], k: int) -> list[RawMatch]:
        if self._index is None:
            return []
        docs_and_scores = self._index.similarity_search_with_score_by_vector(vector, k=k)
        results: list[RawMatch] = []
        for rank, (doc, score) in enumerate(docs_and_scores):
            metadata = dict(doc.metadata)
            metadata.setdefault("chunk", doc.page_content)
            results.append(
                {
                    "id": str(getattr(doc, "id", None) or f"faiss-{rank}"),
                    "distance": float(score),
                    "metadata": metadata,
                }
            )
        return results


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
