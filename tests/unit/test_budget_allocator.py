import random

from conftest import TEST_MODEL

from rag_chat.config import BudgetConfig
from rag_chat.context.budget import BudgetAllocator
from rag_chat.context.prompt import flatten_turns
from rag_chat.types import Message


def _turn(words: int, role: str = "user") -> Message:
    return Message(role=role, content=" ".join(["w"] * words))


def test_admits_most_recent_turns_that_fit(tokenizers) -> None:
    turns = [_turn(10), _turn(10, "assistant"), _turn(10), _turn(10, "assistant")]
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=20))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(50, turns, 100, tokenizer)

    assert allocation.turns == turns[1:]
    assert allocation.budget.consumed == 80
    assert allocation.dropped == 1


def test_stops_at_first_turn_that_does_not_fit(tokenizers) -> None:
    small_old, big, small_new = _turn(2), _turn(50, "assistant"), _turn(2)
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=10))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(10, [small_old, big, small_new], 40, tokenizer)

    # small_old would fit on its own but is never considered.
    assert allocation.turns == [small_new]


def test_prompt_over_budget_admits_nothing(tokenizers) -> None:
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=1000))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(3500, [_turn(1)], 4096, tokenizer)

    assert allocation.turns == []
    assert allocation.budget.consumed + allocation.budget.reserved_for_generation <= 4096


def test_explicit_reserve_overrides_config(tokenizers) -> None:
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=1000))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(10, [_turn(5)], 20, tokenizer, generation_reserve=0)

    assert len(allocation.turns) == 1


def test_selection_respects_limit_and_is_a_recent_suffix(tokenizers) -> None:
    rng = random.Random(7)
    allocator = BudgetAllocator()

    with tokenizers.open(TEST_MODEL) as tokenizer:
        for _ in range(300):
            history = [_turn(rng.randint(0, 60)) for _ in range(rng.randint(0, 12))]
            limit = rng.randint(1, 400)
            reserve = rng.randint(0, 120)
            prompt_tokens = rng.randint(0, 300)

            allocation = allocator.select(
                prompt_tokens, history, limit, tokenizer, generation_reserve=reserve
            )

            admitted = allocation.turns
            used = sum(tokenizer.count(turn.content) for turn in admitted)
            if admitted:
                assert prompt_tokens + used <= limit - reserve
                assert admitted == history[len(history) - len(admitted):]
            assert allocation.budget.consumed + reserve <= limit or allocation.budget.consumed == 0


def test_fit_rendered_drops_oldest_until_rendered_prompt_fits(tokenizers) -> None:
    turns = [_turn(1, "user" if i % 2 == 0 else "assistant") for i in range(600)]
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=100))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(50, turns, 1000, tokenizer)
        kept, prompt, tokens = allocator.fit_rendered(
            allocation, lambda admitted: f"question\n{flatten_turns(admitted)}", tokenizer
        )

    assert len(allocation.turns) == 600
    # One prefix token per turn: 1 + 2 * 449 = 899 <= 900.
    assert tokens == len(prompt.split())
    assert tokens + 100 <= 1000
    assert kept == turns[-449:]


def test_fit_rendered_keeps_allocation_that_already_fits(tokenizers) -> None:
    turns = [_turn(3), _turn(3, "assistant")]
    allocator = BudgetAllocator(BudgetConfig(generation_reserve=0))

    with tokenizers.open(TEST_MODEL) as tokenizer:
        allocation = allocator.select(1, turns, 100, tokenizer)
        kept, prompt, tokens = allocator.fit_rendered(
            allocation, lambda admitted: f"question\n{flatten_turns(admitted)}", tokenizer
        )

    assert kept == turns
    assert prompt == "question\nuser: w w w\nassistant: w w w"
    assert tokens == 9
