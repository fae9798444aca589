"""Configuration models for the chat backend."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class RetrievalConfig(BaseModel):
    """Configures nearest-neighbor lookup against the vector index."""

    top_k: int = Field(default=3, ge=1, le=20)
    source_field: str = "url"
    chunk_field: str = "chunk"
    text_field: str = "text"
    chunk_index_field: str = "chunk_index"


class BudgetConfig(BaseModel):
    """Configures token budgeting for prompt and conversation history."""

    generation_reserve: int = Field(default=1000, ge=0)
    default_temperature: float = Field(default=1.0, ge=0.0, le=2.0)


class SummarizerConfig(BaseModel):
    """Configures the size-triggered context summarizer."""

    threshold_tokens: int = Field(default=14_000, ge=1)
    separator: str = "\n"


class RelayConfig(BaseModel):
    """Configures streaming delivery to the caller."""

    disconnect_poll_seconds: float = Field(default=0.25, gt=0.0)


class Settings(BaseModel):
    """Process-level settings, read from the environment once at startup."""

    openai_api_key: str | None = None
    chat_model: str = "gpt-3.5-turbo-16k"
    embedding_model: str = "text-embedding-ada-002"
    faiss_path: str | None = None
    environment: str = "development"
    log_level: str = "INFO"
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    @property
    def llm_configured(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> Settings:
        top_k = os.getenv("RAG_CHAT_TOP_K")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            chat_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo-16k"),
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"),
            faiss_path=os.getenv("RAG_CHAT_FAISS_PATH") or None,
            environment=os.getenv("ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            retrieval=RetrievalConfig(top_k=int(top_k)) if top_k else RetrievalConfig(),
        )
