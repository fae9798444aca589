import asyncio

import pytest
from conftest import TEST_MODEL, RecordingOracle

from rag_chat.config import BudgetConfig, RetrievalConfig, SummarizerConfig
from rag_chat.context.summarizer import ConditionalSummarizer
from rag_chat.errors import RetrievalUnavailableError, UnsupportedModelError
from rag_chat.generation.relay import RelayState
from rag_chat.pipeline import ChatPipeline
from rag_chat.retrieval.client import IndexHandle, RetrievalClient
from rag_chat.retrieval.embedder import HashingEmbedder
from rag_chat.types import ChunkKind, Message


class _RecordingIndex:
    def __init__(self, rows=None, *, fail: bool = False) -> None:
        self.rows = rows or []
        self.fail = fail
        self.calls = []

    def query(self, vector, k):
        self.calls.append(k)
        if self.fail:
            raise TimeoutError("index timed out")
        return self.rows[:k]


class _RecordingEmbedder(HashingEmbedder):
    def __init__(self) -> None:
        super().__init__()
        self.queries = []

    def embed_query(self, text: str) -> list[float]:
        self.queries.append(text)
        return super().embed_query(text)


ROWS = [
    {"distance": 0.1, "metadata": {"url": "https://kb/a", "chunk": "A1", "text": "Alpha doc."}},
    {"distance": 0.2, "metadata": {"url": "https://kb/b", "chunk": "B1", "text": "Beta doc."}},
    {"distance": 0.3, "metadata": {"url": "https://kb/a", "chunk": "A2", "text": "Alpha again."}},
]

HISTORY = [
    Message(role="user", content="first question about alpha"),
    Message(role="assistant", content="first answer about alpha"),
    Message(role="user", content="what about beta?"),
]


def _pipeline(tokenizers, index, oracle, embedder=None, **kwargs) -> ChatPipeline:
    return ChatPipeline(
        tokenizers=tokenizers,
        embedder=embedder or HashingEmbedder(),
        retrieval=RetrievalClient(IndexHandle.of(index)),
        oracle=oracle,
        retrieval_config=RetrievalConfig(top_k=3),
        **kwargs,
    )


def test_unknown_model_fails_before_any_retrieval(tokenizers) -> None:
    index = _RecordingIndex(ROWS)
    embedder = _RecordingEmbedder()
    pipeline = _pipeline(tokenizers, index, RecordingOracle(), embedder=embedder)

    with pytest.raises(UnsupportedModelError):
        asyncio.run(
            pipeline.prepare(model_id="unknown-model", token_limit=4096, messages=HISTORY)
        )

    assert index.calls == []
    assert embedder.queries == []
    assert tokenizers.active == 0
    assert pipeline.trace_store.summary()["failed"] == 1


def test_prepare_assembles_deduplicated_context_and_history(tokenizers) -> None:
    index = _RecordingIndex(ROWS)
    embedder = _RecordingEmbedder()
    pipeline = _pipeline(tokenizers, index, RecordingOracle(), embedder=embedder)

    prepared = asyncio.run(
        pipeline.prepare(
            model_id=TEST_MODEL,
            token_limit=4096,
            messages=HISTORY,
            system_prompt="You are a helpful assistant.",
        )
    )

    assert embedder.queries == ["what about beta?"]
    assert index.calls == [3]
    assert prepared.source_ids == ["https://kb/a", "https://kb/b"]
    assert "Alpha doc.\nBeta doc." in prepared.prompt
    assert "Alpha again." not in prepared.prompt
    assert "QUESTION: what about beta?" in prepared.prompt
    assert prepared.prompt.startswith("You are a helpful assistant.")
    assert prepared.admitted_turns == HISTORY[:-1]
    assert "assistant: first answer about alpha" in prepared.prompt
    assert prepared.temperature == BudgetConfig().default_temperature
    assert tokenizers.active == 0


def test_tight_budget_drops_older_history(tokenizers) -> None:
    pipeline = _pipeline(
        tokenizers,
        _RecordingIndex(ROWS),
        RecordingOracle(),
        budget_config=BudgetConfig(generation_reserve=0),
    )

    async def _go():
        base = await pipeline.prepare(
            model_id=TEST_MODEL, token_limit=100_000, messages=HISTORY[-1:]
        )
        return await pipeline.prepare(
            model_id=TEST_MODEL,
            token_limit=base.prompt_tokens + 5,
            messages=HISTORY,
        )

    prepared = asyncio.run(_go())

    # "assistant:" plus four words; the older user turn no longer fits.
    assert prepared.admitted_turns == [HISTORY[1]]
    assert prepared.prompt_tokens == len(prepared.prompt.split())


def test_oversized_context_is_replaced_by_summary(tokenizers) -> None:
    big = " ".join(["filler"] * 60)
    rows = [{"distance": 0.1, "metadata": {"url": "https://kb/big", "chunk": "c", "text": big}}]
    oracle = RecordingOracle(summary="the gist")
    pipeline = _pipeline(
        tokenizers,
        _RecordingIndex(rows),
        oracle,
        summarizer=ConditionalSummarizer(oracle, config=SummarizerConfig(threshold_tokens=50)),
    )

    prepared = asyncio.run(
        pipeline.prepare(model_id=TEST_MODEL, token_limit=4096, messages=HISTORY[-1:])
    )

    assert prepared.summarized
    assert "the gist" in prepared.prompt
    assert big not in prepared.prompt
    assert len(oracle.complete_calls) == 1


def test_retrieval_outage_surfaces_before_generation(tokenizers) -> None:
    oracle = RecordingOracle()
    pipeline = _pipeline(tokenizers, _RecordingIndex(fail=True), oracle)

    with pytest.raises(RetrievalUnavailableError):
        asyncio.run(pipeline.prepare(model_id=TEST_MODEL, token_limit=4096, messages=HISTORY))

    assert oracle.stream_calls == []
    assert tokenizers.active == 0


def test_relay_streams_answer_with_request_model(tokenizers) -> None:
    oracle = RecordingOracle(["The", " answer", " is", " 4."])
    pipeline = _pipeline(tokenizers, _RecordingIndex(ROWS), oracle)

    async def _go():
        prepared = await pipeline.prepare(
            model_id=TEST_MODEL, token_limit=4096, messages=HISTORY, temperature=0.2
        )
        relay = pipeline.relay(prepared)
        return relay, [chunk async for chunk in relay]

    relay, chunks = asyncio.run(_go())

    assert "".join(c.text for c in chunks if c.kind is ChunkKind.TEXT) == "The answer is 4."
    assert relay.state is RelayState.COMPLETED
    assert oracle.stream_calls[0]["model_id"] == TEST_MODEL
    assert oracle.stream_calls[0]["temperature"] == 0.2
    trace = pipeline.trace_store.list_recent(limit=1)[0]
    assert trace.outcome == "completed"
    assert trace.chunks_relayed == 4


def test_role_prefixes_count_against_the_limit(tokenizers) -> None:
    history = [
        Message(role="user" if i % 2 == 0 else "assistant", content=f"w{i}") for i in range(600)
    ]
    question = HISTORY[-1]
    pipeline = _pipeline(
        tokenizers,
        _RecordingIndex(ROWS),
        RecordingOracle(),
        budget_config=BudgetConfig(generation_reserve=100),
    )

    async def _go():
        base = await pipeline.prepare(
            model_id=TEST_MODEL, token_limit=100_000, messages=[question]
        )
        limit = base.prompt_tokens + 100 + 600
        prepared = await pipeline.prepare(
            model_id=TEST_MODEL, token_limit=limit, messages=[*history, question]
        )
        return limit, prepared

    limit, prepared = asyncio.run(_go())

    # Content alone fits all 600 turns; rendered as "role: word" only half of them do.
    assert len(prepared.prompt.split()) + 100 <= limit
    assert prepared.prompt_tokens == len(prepared.prompt.split())
    assert prepared.admitted_turns == history[-300:]
