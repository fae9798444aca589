"""FastAPI entrypoint for streaming chat, health and metrics endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.background import BackgroundTask

from rag_chat.config import Settings
from rag_chat.context.summarizer import ConditionalSummarizer
from rag_chat.context.tokenizer import TokenizerRegistry
from rag_chat.errors import ChatError
from rag_chat.generation.fallback import ExtractiveOracle
from rag_chat.generation.oracle import CompletionOracle, LangChainOracle
from rag_chat.generation.relay import StreamRelay
from rag_chat.obs.log_config import setup_logging
from rag_chat.obs.tracing import RequestTrace, TraceStore
from rag_chat.pipeline import ChatPipeline
from rag_chat.retrieval.client import IndexHandle, RetrievalClient
from rag_chat.retrieval.embedder import Embedder, HashingEmbedder, OpenAIEmbedder
from rag_chat.retrieval.vector_store import FaissVectorIndex, InMemoryVectorIndex, VectorIndex
from rag_chat.types import ChunkKind, Message

logger = logging.getLogger(__name__)


class ModelSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    token_limit: int = Field(alias="tokenLimit", gt=0)


class MessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model: ModelSpec
    messages: list[MessageIn] = Field(min_length=1)
    prompt: str = ""
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    @field_validator("messages")
    @classmethod
    def _last_message_is_question(cls, value: list[MessageIn]) -> list[MessageIn]:
        if value[-1].role != "user":
            raise ValueError("the last message must come from the user")
        return value

    def to_messages(self) -> list[Message]:
        return [Message(role=m.role, content=m.content) for m in self.messages]


def sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def encode_sse(relay: StreamRelay) -> AsyncIterator[str]:
    """Frame relay chunks as Server-Sent Events, one frame per chunk."""
    async for chunk in relay:
        if chunk.kind is ChunkKind.TEXT:
            yield sse("token", chunk.text)
        elif chunk.kind is ChunkKind.END:
            yield sse("done", {"chunks": relay.delivered})
        else:
            yield sse("error", {"error": "Generation stream failed", "detail": chunk.error})


def _create_embedder(settings: Settings) -> Embedder:
    if settings.llm_configured:
        return OpenAIEmbedder(model=settings.embedding_model, api_key=settings.openai_api_key)
    return HashingEmbedder()


def _create_oracle(settings: Settings) -> CompletionOracle:
    if settings.llm_configured:
        return LangChainOracle(api_key=settings.openai_api_key, summary_model=settings.chat_model)
    return ExtractiveOracle()


def build_pipeline(
    settings: Settings,
    *,
    index: VectorIndex | None = None,
    embedder: Embedder | None = None,
    oracle: CompletionOracle | None = None,
    tokenizers: TokenizerRegistry | None = None,
) -> ChatPipeline:
    """Wire the default pipeline; explicit collaborators override the settings."""

    embedder = embedder or _create_embedder(settings)
    oracle = oracle or _create_oracle(settings)

    if index is not None:
        handle = IndexHandle.of(index)
    elif settings.faiss_path:
        faiss_path = settings.faiss_path
        handle = IndexHandle(lambda: FaissVectorIndex(embedder, folder_path=faiss_path))
    else:
        handle = IndexHandle(InMemoryVectorIndex)

    return ChatPipeline(
        tokenizers=tokenizers or TokenizerRegistry(),
        embedder=embedder,
        retrieval=RetrievalClient(handle, settings.retrieval),
        oracle=oracle,
        summarizer=ConditionalSummarizer(oracle, config=settings.summarizer),
        trace_store=TraceStore(),
        retrieval_config=settings.retrieval,
        budget_config=settings.budget,
        relay_config=settings.relay,
    )


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: ChatPipeline | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(environment=settings.environment, level=settings.log_level)
    pipeline = pipeline or build_pipeline(settings)

    app = FastAPI(title="RAG Chat", version="0.1.0")
    app.state.pipeline = pipeline
    app.state.settings = settings

    @app.exception_handler(ChatError)
    async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": exc.__class__.__name__},
        )

    @app.exception_handler(Exception)
    async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred. Please try again later."},
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": settings.llm_configured,
            "oracle_mode": "langchain" if settings.llm_configured else "extractive",
            "index_initialized": pipeline.retrieval.handle.initialized,
        }

    @app.post("/chat")
    async def chat(body: ChatRequest, request: Request) -> StreamingResponse:
        messages = body.to_messages()
        trace = RequestTrace(model_id=body.model.id, turn_count=len(messages))
        prepared = await pipeline.prepare(
            model_id=body.model.id,
            token_limit=body.model.token_limit,
            messages=messages,
            system_prompt=body.prompt,
            temperature=body.temperature,
            trace=trace,
        )
        relay = pipeline.relay(prepared, is_disconnected=request.is_disconnected, trace=trace)
        await relay.open()
        return StreamingResponse(
            encode_sse(relay),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "X-Source-Ids": json.dumps(prepared.source_ids),
            },
            background=BackgroundTask(relay.aclose),
        )

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return pipeline.trace_store.summary()

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(trace) for trace in pipeline.trace_store.list_recent(limit=limit)]}

    return app


app = create_app()
