"""Fisher-Yates shuffle variants for trial sequences."""

import logging
import random
from typing import Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _fisher_yates(items: list[T], start: int, end: int, rng: random.Random) -> None:
    for i in range(end - 1, start, -1):
        j = start + rng.randint(0, i - start)
        items[i], items[j] = items[j], items[i]


def shuffle_trials(trials: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy of ``trials``."""
    items = list(trials)
    _fisher_yates(items, 0, len(items), rng or random.Random())
    return items


def seeded_shuffle(trials: Sequence[T], seed: int) -> list[T]:
    """Reproducible shuffle: the same seed always yields the same order."""
    return shuffle_trials(trials, random.Random(seed))


def block_shuffle(
    trials: Sequence[T],
    block_size: int,
    rng: random.Random | None = None,
) -> list[T]:
    """Shuffle within contiguous blocks of ``block_size``.

    Items never cross block boundaries; the last block may be shorter. A
    non-positive block size falls back to a full shuffle.
    """
    rng = rng or random.Random()
    if block_size <= 0:
        logger.warning(f"Invalid block size {block_size}; using full randomization")
        return shuffle_trials(trials, rng)

    items = list(trials)
    for start in range(0, len(items), block_size):
        _fisher_yates(items, start, min(start + block_size, len(items)), rng)
    return items
