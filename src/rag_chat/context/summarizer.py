"""Size-triggered summarization of the combined retrieval context."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from rag_chat.config import SummarizerConfig
from rag_chat.context.prompt import PromptComposer
from rag_chat.context.tokenizer import Tokenizer
from rag_chat.errors import SummarizationFailure
from rag_chat.generation.oracle import CompletionOracle
from rag_chat.types import ContextDocument

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SummaryResult:
    text: str
    document_tokens: int
    summarized: bool


class ConditionalSummarizer:
    """Shrinks the concatenated documents when they exceed a token threshold.

    The decision is made on document tokens alone. The condensed output is
    returned verbatim and is not re-measured; keeping the final prompt inside the
    model ceiling is left to the budget stage and the generation reserve.
    """

    def __init__(
        self,
        oracle: CompletionOracle,
        *,
        config: SummarizerConfig | None = None,
        composer: PromptComposer | None = None,
    ) -> None:
        self.oracle = oracle
        self.config = config or SummarizerConfig()
        self.composer = composer or PromptComposer()

    async def maybe_summarize(
        self,
        documents: Sequence[ContextDocument],
        focus_question: str,
        tokenizer: Tokenizer,
    ) -> SummaryResult:
        document_tokens = sum(tokenizer.count(doc.full_text) for doc in documents)
        combined = self.config.separator.join(doc.full_text for doc in documents)
        if document_tokens <= self.config.threshold_tokens:
            return SummaryResult(text=combined, document_tokens=document_tokens, summarized=False)

        logger.info(
            "Context of %d tokens exceeds %d; summarizing",
            document_tokens,
            self.config.threshold_tokens,
        )
        prompt = self.composer.compose_summary(document=combined, inquiry=focus_question)
        try:
            summary = await self.oracle.complete(prompt)
        except Exception as exc:
            raise SummarizationFailure(f"Summarization failed: {exc}") from exc
        return SummaryResult(text=summary, document_tokens=document_tokens, summarized=True)
