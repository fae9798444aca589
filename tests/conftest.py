from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from rag_chat.context.tokenizer import TokenizerRegistry

TEST_MODEL = "test-model"


class WhitespaceCodec:
    """One token per whitespace-separated word."""

    def encode(self, text: str) -> list[int]:
        return list(range(len(text.split())))


class RecordingOracle:
    """Oracle fake that records calls and streams scripted chunks."""

    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        summary: str = "condensed context",
        fail_after: int | None = None,
        fail_summary: bool = False,
    ) -> None:
        self.chunks = chunks if chunks is not None else ["The", " answer", " is", " 4."]
        self.summary = summary
        self.fail_after = fail_after
        self.fail_summary = fail_summary
        self.complete_calls: list[str] = []
        self.stream_calls: list[dict[str, object]] = []
        self.produced: list[str] = []
        self.closed = False

    async def complete(self, prompt: str) -> str:
        self.complete_calls.append(prompt)
        if self.fail_summary:
            raise RuntimeError("summary backend down")
        return self.summary

    async def stream(
        self, prompt: str, *, model_id: str, temperature: float
    ) -> AsyncIterator[str]:
        self.stream_calls.append(
            {"prompt": prompt, "model_id": model_id, "temperature": temperature}
        )
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError("oracle dropped the stream")
                self.produced.append(chunk)
                yield chunk
        finally:
            self.closed = True


@pytest.fixture
def tokenizers() -> TokenizerRegistry:
    return TokenizerRegistry({TEST_MODEL: lambda _: WhitespaceCodec()}, default_factory=None)
