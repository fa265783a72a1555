"""
smackdown/seeding.py - Reproducible random seeding

Bracket generation takes an injected random.Random so draws can be replayed
from a seed. Nothing here touches the module-level random state.
"""

import random
from typing import Sequence, TypeVar

T = TypeVar("T")


def make_rng(seed: int | str | None = None) -> random.Random:
    """Seeded RNG. seed=None draws from system entropy (unreproducible)."""
    return random.Random(seed)


def shuffle(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Shuffle into a new list. The input is left untouched."""
    rng = rng or make_rng()
    shuffled = list(items)
    rng.shuffle(shuffled)
    return shuffled
