"""Recency-first selection of conversation turns under a token budget."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from rag_chat.config import BudgetConfig
from rag_chat.context.tokenizer import Tokenizer
from rag_chat.types import Allocation, Budget, Message

logger = logging.getLogger(__name__)


class BudgetAllocator:
    """Admits the longest run of most recent turns that fits the budget.

    Turns are walked newest to oldest and the walk stops at the first turn that
    does not fit, so the result is always a contiguous suffix of the history.
    Older turns are never considered once one is rejected, even if they would
    fit on their own.
    """

    def __init__(self, config: BudgetConfig | None = None) -> None:
        self.config = config or BudgetConfig()

    def select(
        self,
        rendered_prompt_tokens: int,
        turns: Sequence[Message],
        model_token_limit: int,
        tokenizer: Tokenizer,
        *,
        generation_reserve: int | None = None,
    ) -> Allocation:
        reserve = self.config.generation_reserve if generation_reserve is None else generation_reserve
        budget = Budget(total_limit=model_token_limit, reserved_for_generation=reserve)

        if not budget.fits(rendered_prompt_tokens):
            logger.warning(
                "Prompt of %d tokens plus %d reserved exceeds limit %d; no history admitted",
                rendered_prompt_tokens,
                reserve,
                model_token_limit,
            )
            return Allocation(turns=[], budget=budget, considered=len(turns))
        budget.consume(rendered_prompt_tokens)

        admitted: list[Message] = []
        for turn in reversed(turns):
            turn_tokens = tokenizer.count(turn.content)
            if not budget.fits(turn_tokens):
                break
            budget.consume(turn_tokens)
            admitted.append(turn)
        admitted.reverse()

        if len(admitted) < len(turns):
            logger.debug("Admitted %d of %d turns", len(admitted), len(turns))
        return Allocation(turns=admitted, budget=budget, considered=len(turns))

    def fit_rendered(
        self,
        allocation: Allocation,
        render: Callable[[Sequence[Message]], str],
        tokenizer: Tokenizer,
    ) -> tuple[list[Message], str, int]:
        """Drop the oldest admitted turns until the rendered prompt fits.

        `select` charges each turn for its content only; the rendered history
        also carries role prefixes and separators. Returns the surviving
        turns (still a recent suffix), the final prompt and its token count.
        """

        turns = list(allocation.turns)
        limit = allocation.budget.total_limit - allocation.budget.reserved_for_generation

        def measure(dropped: int) -> tuple[str, int]:
            prompt = render(turns[dropped:])
            return prompt, tokenizer.count(prompt)

        prompt, tokens = measure(0)
        if tokens <= limit or not turns:
            return turns, prompt, tokens

        # Rendered size only shrinks as older turns are dropped.
        low, high = 1, len(turns)
        while low < high:
            mid = (low + high) // 2
            if measure(mid)[1] <= limit:
                high = mid
            else:
                low = mid + 1
        prompt, tokens = measure(low)
        logger.debug(
            "Rendered prompt over budget; dropped %d more turns (%d tokens)", low, tokens
        )
        return turns[low:], prompt, tokens
