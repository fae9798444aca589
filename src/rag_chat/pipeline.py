"""Per-request chat pipeline.

retrieval -> dedup -> optional summarize -> budget selection -> prompt render
-> generation -> relay. Every stage before generation runs to completion
before the caller sees a byte, so its failures map to an error status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from rag_chat.config import BudgetConfig, RelayConfig, RetrievalConfig
from rag_chat.context.budget import BudgetAllocator
from rag_chat.context.dedup import deduplicate
from rag_chat.context.prompt import PromptComposer
from rag_chat.context.summarizer import ConditionalSummarizer
from rag_chat.context.tokenizer import TokenizerRegistry
from rag_chat.errors import ChatError, RetrievalUnavailableError
from rag_chat.generation.oracle import CompletionOracle
from rag_chat.generation.relay import DisconnectCheck, RelayState, StreamRelay
from rag_chat.obs.tracing import RequestTrace, Timer, TraceStore
from rag_chat.retrieval.client import RetrievalClient
from rag_chat.retrieval.embedder import Embedder
from rag_chat.types import Message, PreparedChat

logger = logging.getLogger(__name__)


class ChatPipeline:
    """Assembles a bounded context for one request and streams the answer."""

    def __init__(
        self,
        *,
        tokenizers: TokenizerRegistry,
        embedder: Embedder,
        retrieval: RetrievalClient,
        oracle: CompletionOracle,
        summarizer: ConditionalSummarizer | None = None,
        allocator: BudgetAllocator | None = None,
        composer: PromptComposer | None = None,
        trace_store: TraceStore | None = None,
        retrieval_config: RetrievalConfig | None = None,
        budget_config: BudgetConfig | None = None,
        relay_config: RelayConfig | None = None,
    ) -> None:
        self.tokenizers = tokenizers
        self.embedder = embedder
        self.retrieval = retrieval
        self.oracle = oracle
        self.composer = composer or PromptComposer()
        self.summarizer = summarizer or ConditionalSummarizer(oracle, composer=self.composer)
        self.budget_config = budget_config or BudgetConfig()
        self.allocator = allocator or BudgetAllocator(self.budget_config)
        self.trace_store = trace_store or TraceStore()
        self.retrieval_config = retrieval_config or RetrievalConfig()
        self.relay_config = relay_config or RelayConfig()

    async def prepare(
        self,
        *,
        model_id: str,
        token_limit: int,
        messages: Sequence[Message],
        system_prompt: str = "",
        temperature: float | None = None,
        trace: RequestTrace | None = None,
    ) -> PreparedChat:
        """Run every pre-generation stage.

        The latest message is the question; earlier messages are history
        candidates for the budget allocator.
        """

        if not messages:
            raise ValueError("messages must not be empty")
        trace = trace or RequestTrace(model_id=model_id, turn_count=len(messages))
        timer = Timer()
        question = messages[-1].content
        history = list(messages[:-1])

        try:
            # Resolving the codec first rejects unknown models before any retrieval call.
            with self.tokenizers.open(model_id) as tokenizer:
                vector = await self._embed(question)
                matches = await asyncio.to_thread(
                    self.retrieval.lookup, vector, self.retrieval_config.top_k
                )
                dedup = deduplicate(matches)

                summary = await self.summarizer.maybe_summarize(
                    dedup.documents, question, tokenizer
                )
                base_prompt = self.composer.compose(
                    context=summary.text,
                    question=question,
                    source_ids=dedup.source_ids,
                    system_prompt=system_prompt,
                )
                allocation = self.allocator.select(
                    tokenizer.count(base_prompt), history, token_limit, tokenizer
                )

                def render(turns: Sequence[Message]) -> str:
                    return self.composer.compose(
                        context=summary.text,
                        question=question,
                        turns=turns,
                        source_ids=dedup.source_ids,
                        system_prompt=system_prompt,
                    )

                admitted, prompt, prompt_tokens = self.allocator.fit_rendered(
                    allocation, render, tokenizer
                )
        except ChatError as exc:
            self._record_failure(trace, timer, exc)
            raise

        trace.admitted_turns = len(admitted)
        trace.prompt_tokens = prompt_tokens
        trace.document_tokens = summary.document_tokens
        trace.summarized = summary.summarized
        trace.source_ids = list(dedup.source_ids)
        logger.info(
            "Prepared prompt: %d matches, %d sources, %d/%d turns admitted",
            len(matches),
            len(dedup.source_ids),
            len(admitted),
            len(history),
            extra=trace.log_context(),
        )

        return PreparedChat(
            model_id=model_id,
            prompt=prompt,
            temperature=(
                self.budget_config.default_temperature if temperature is None else temperature
            ),
            source_ids=dedup.source_ids,
            admitted_turns=admitted,
            prompt_tokens=prompt_tokens,
            summarized=summary.summarized,
            documents=dedup.documents,
        )

    def relay(
        self,
        prepared: PreparedChat,
        *,
        is_disconnected: DisconnectCheck | None = None,
        trace: RequestTrace | None = None,
    ) -> StreamRelay:
        """Start generation and wrap its stream in a relay."""

        trace = trace or RequestTrace(model_id=prepared.model_id, turn_count=len(prepared.admitted_turns))
        timer = Timer()

        def _finish(relay: StreamRelay) -> None:
            trace.chunks_relayed = relay.delivered
            if relay.state is RelayState.COMPLETED:
                trace.outcome = "completed"
            elif relay.disconnected:
                trace.outcome = "disconnected"
            else:
                trace.outcome = "failed"
                trace.error = str(relay.error) if relay.error else None
            trace.latency_ms = timer.stop()
            self.trace_store.add(trace)

        source = self.oracle.stream(
            prepared.prompt,
            model_id=prepared.model_id,
            temperature=prepared.temperature,
        )
        return StreamRelay(
            source,
            is_disconnected=is_disconnected,
            config=self.relay_config,
            on_finish=_finish,
            log_context=trace.log_context(),
        )

    async def _embed(self, text: str) -> list[float]:
        try:
            return await asyncio.to_thread(self.embedder.embed_query, text)
        except Exception as exc:
            raise RetrievalUnavailableError(f"Query embedding failed: {exc}") from exc

    def _record_failure(self, trace: RequestTrace, timer: Timer, exc: ChatError) -> None:
        trace.outcome = "failed"
        trace.error = exc.message
        trace.latency_ms = timer.stop()
        self.trace_store.add(trace)
        logger.error(
            "%s before streaming: %s",
            exc.__class__.__name__,
            exc.message,
            extra=trace.log_context(),
        )
