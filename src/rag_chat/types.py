"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True, slots=True)
class Message:
    """One conversation turn."""

    role: Role
    content: str


@dataclass(frozen=True, slots=True)
class Match:
    """A validated nearest-neighbor hit returned by the vector index.

    `document_text` carries the full text of the originating source when the
    index stores it alongside the chunk; otherwise it equals `chunk_text`.
    """

    source_id: str
    chunk_text: str
    chunk_index: int
    embedding_distance: float
    document_text: str = ""

    @property
    def full_text(self) -> str:
        return self.document_text or self.chunk_text


@dataclass(frozen=True, slots=True)
class ContextDocument:
    """One document per distinct source, represented by its first-seen match."""

    source_id: str
    full_text: str


@dataclass(slots=True)
class DedupResult:
    documents: list[ContextDocument]
    source_ids: list[str]


@dataclass(slots=True)
class Budget:
    """Token accounting for one allocation pass."""

    total_limit: int
    reserved_for_generation: int
    consumed: int = 0

    def fits(self, tokens: int) -> bool:
        return self.consumed + tokens + self.reserved_for_generation <= self.total_limit

    def consume(self, tokens: int) -> None:
        if tokens < 0:
            raise ValueError("token counts are non-negative")
        self.consumed += tokens


@dataclass(slots=True)
class Allocation:
    """Result of budget selection: admitted turns in chronological order."""

    turns: list[Message]
    budget: Budget
    considered: int = 0

    @property
    def dropped(self) -> int:
        return self.considered - len(self.turns)


class ChunkKind(str, Enum):
    TEXT = "text"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """A unit of generated text or a terminal marker."""

    kind: ChunkKind
    text: str = ""
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is not ChunkKind.TEXT

    @classmethod
    def of(cls, text: str) -> StreamChunk:
        return cls(kind=ChunkKind.TEXT, text=text)

    @classmethod
    def end(cls) -> StreamChunk:
        return cls(kind=ChunkKind.END)

    @classmethod
    def failure(cls, error: str) -> StreamChunk:
        return cls(kind=ChunkKind.ERROR, error=error)


@dataclass(slots=True)
class PreparedChat:
    """Everything the generation stage needs, produced before any byte is sent."""

    model_id: str
    prompt: str
    temperature: float
    source_ids: list[str]
    admitted_turns: list[Message]
    prompt_tokens: int
    summarized: bool = False
    documents: list[ContextDocument] = field(default_factory=list)
