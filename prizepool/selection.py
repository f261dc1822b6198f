"""
prizepool/selection.py - Expected-value weighted item draw.
"""

import math
from collections.abc import Sequence

from .models import CatalogItem
from .rng import SeededRandom


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def select_weighted(
    items: Sequence[CatalogItem],
    ev_min: float,
    ev_max: float,
    rng: SeededRandom,
) -> CatalogItem | None:
    """Pick one item with probability proportional to its clamped EV.

    Consumes exactly one draw from `rng` whenever `items` is non-empty, so
    the stream stays aligned no matter which branch is taken. A zero total
    weight degrades to a uniform pick from the same draw.
    """
    if not items:
        return None

    weights = [clamp(item.expected_value, ev_min, ev_max) for item in items]
    total = sum(weights)
    r = rng.next()

    if total <= 0:
        return items[min(math.floor(r * len(items)), len(items) - 1)]

    roll = r * total
    for item, weight in zip(items, weights):
        roll -= weight
        if roll < 0:
            return item
    # Float residue on the last bucket
    return items[-1]
