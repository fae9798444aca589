import asyncio

import pytest
from conftest import TEST_MODEL, RecordingOracle

from rag_chat.config import SummarizerConfig
from rag_chat.context.summarizer import ConditionalSummarizer
from rag_chat.errors import SummarizationFailure
from rag_chat.generation.fallback import ExtractiveOracle
from rag_chat.types import ContextDocument


def _documents(*word_counts: int) -> list[ContextDocument]:
    return [
        ContextDocument(source_id=f"doc-{i}", full_text=" ".join(["word"] * count))
        for i, count in enumerate(word_counts)
    ]


def _run(summarizer, documents, tokenizers):
    async def _go():
        with tokenizers.open(TEST_MODEL) as tokenizer:
            return await summarizer.maybe_summarize(documents, "what is it?", tokenizer)

    return asyncio.run(_go())


def test_below_threshold_returns_concatenation_verbatim(tokenizers) -> None:
    oracle = RecordingOracle()
    summarizer = ConditionalSummarizer(oracle, config=SummarizerConfig(threshold_tokens=14_000))
    documents = _documents(4_000, 5_000)

    result = _run(summarizer, documents, tokenizers)

    assert result.text == "\n".join(doc.full_text for doc in documents)
    assert result.document_tokens == 9_000
    assert not result.summarized
    assert oracle.complete_calls == []


def test_above_threshold_returns_oracle_output(tokenizers) -> None:
    oracle = RecordingOracle(summary="short version")
    summarizer = ConditionalSummarizer(oracle, config=SummarizerConfig(threshold_tokens=14_000))

    result = _run(summarizer, _documents(12_000, 8_000), tokenizers)

    assert result.text == "short version"
    assert result.summarized
    assert len(oracle.complete_calls) == 1
    assert "what is it?" in oracle.complete_calls[0]


def test_exactly_at_threshold_is_not_summarized(tokenizers) -> None:
    oracle = RecordingOracle()
    summarizer = ConditionalSummarizer(oracle, config=SummarizerConfig(threshold_tokens=100))

    result = _run(summarizer, _documents(100), tokenizers)

    assert not result.summarized


def test_oracle_failure_raises_summarization_failure(tokenizers) -> None:
    oracle = RecordingOracle(fail_summary=True)
    summarizer = ConditionalSummarizer(oracle, config=SummarizerConfig(threshold_tokens=10))

    with pytest.raises(SummarizationFailure):
        _run(summarizer, _documents(50), tokenizers)


def test_offline_summary_is_drawn_from_the_documents(tokenizers) -> None:
    summarizer = ConditionalSummarizer(
        ExtractiveOracle(max_sentences=2), config=SummarizerConfig(threshold_tokens=5)
    )
    documents = [
        ContextDocument(
            source_id="https://kb/keys",
            full_text="Encryption keys rotate quarterly. Old keys are kept for a year.",
        ),
        ContextDocument(source_id="https://kb/audit", full_text="Audits run every month."),
    ]

    result = _run(summarizer, documents, tokenizers)

    assert result.summarized
    assert result.text == "Encryption keys rotate quarterly. Old keys are kept for a year."
    assert "Condense" not in result.text
    assert "INQUIRY" not in result.text
