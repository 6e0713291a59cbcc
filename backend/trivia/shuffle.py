"""Deterministic per-question option shuffling.

Every client derives the same option order from public data (session code,
question index and the canonical option list), so nothing per-player is ever
stored. The hash and generator are plain 31-bit integer arithmetic so a
browser client can reproduce them bit for bit.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

_MASK_31 = 0x7FFFFFFF
_MASK_32 = 0xFFFFFFFF


def hash_seed(session_code: str, question_index: int) -> int:
    """djb2 over ``"<CODE>:<index>"``, folded into 31 bits."""
    value = 5381
    for char in f"{session_code.upper()}:{question_index}":
        value = ((value << 5) + value + ord(char)) & _MASK_32
    return value & _MASK_31


def seeded_generator(seed: int) -> Callable[[], int]:
    state = seed & _MASK_31

    def next_value() -> int:
        nonlocal state
        state = (state * 1103515245 + 12345) & _MASK_31
        return state

    return next_value


def shuffle_order(count: int, session_code: str, question_index: int) -> List[int]:
    """Return canonical option indexes in display order."""
    order = list(range(count))
    if count < 2:
        return order

    next_value = seeded_generator(hash_seed(session_code, question_index))
    for i in range(count - 1, 0, -1):
        j = next_value() % (i + 1)
        order[i], order[j] = order[j], order[i]
    return order


def shuffle_options(options: Sequence[T], session_code: str, question_index: int) -> List[T]:
    return [options[i] for i in shuffle_order(len(options), session_code, question_index)]


def shuffled_correct_index(
    correct_index: Optional[int], option_count: int, session_code: str, question_index: int
) -> Optional[int]:
    if correct_index is None or not 0 <= correct_index < option_count:
        return None
    return shuffle_order(option_count, session_code, question_index).index(correct_index)
