"""Deterministic oracle used when no external LLM is configured."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_SOURCES_BLOCK = re.compile(r"SOURCES:\n(?P<body>.*?)\n\nSOURCE URLS:", flags=re.DOTALL)
_TEXT_BLOCK = re.compile(
    r"^TEXT:\n(?P<body>.*?)\n\nCONDENSED TEXT:", flags=re.DOTALL | re.MULTILINE
)

NO_EVIDENCE_ANSWER = "I could not find verifiable evidence in the indexed documents."


class ExtractiveOracle:
    """Answers by quoting the leading sentences of the retrieved context.

    Keeps the same contract as `LangChainOracle` so the service runs locally and
    in tests without network access. Output is always drawn from the prompt's
    own sources.
    """

    def __init__(self, *, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    async def complete(self, prompt: str) -> str:
        match = _TEXT_BLOCK.search(prompt)
        body = match.group("body") if match else prompt
        return " ".join(_sentences(body)[: self.max_sentences])

    async def stream(
        self, prompt: str, *, model_id: str, temperature: float
    ) -> AsyncIterator[str]:
        del model_id, temperature  # output is deterministic.
        match = _SOURCES_BLOCK.search(prompt)
        body = match.group("body") if match else ""
        sentences = _sentences(body)[: self.max_sentences]
        answer = " ".join(sentences) if sentences else NO_EVIDENCE_ANSWER
        words = answer.split(" ")
        for i, word in enumerate(words):
            yield word if i == 0 else f" {word}"


def _sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]
