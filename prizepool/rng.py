"""
prizepool/rng.py - Seeded PRNG for reproducible prize draws.

The stream is a pure function of the seed text and the number of draws
taken: seed text -> 32-bit string hash -> linear congruential recurrence.
Only plain integer arithmetic is involved, so the same seed yields the same
floats on every platform.
"""

import secrets
import string

# Numerical Recipes LCG constants, modulus 2**32
_LCG_A = 1664525
_LCG_C = 1013904223
_LCG_M = 2**32

# Used when the seed folds to 0 (e.g. the empty seed)
_ZERO_SEED_STATE = 0x2545F491

SEED_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
SEED_LENGTH = 10


def seed_to_state(seed: str) -> int:
    """Fold seed text into a non-zero 32-bit starting state.

    Classic `h = h * 31 + unit` string hash over UTF-16 code units, wrapped
    to a signed 32-bit int after every step, then made non-negative.
    """
    data = seed.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 2**31:
        h -= 2**32
    state = abs(h)
    return state or _ZERO_SEED_STATE


class SeededRandom:
    """Deterministic stream of floats in [0, 1)."""

    def __init__(self, seed: str):
        self._state = seed_to_state(seed)

    def next(self) -> float:
        self._state = (self._state * _LCG_A + _LCG_C) % _LCG_M
        return self._state / _LCG_M

    __call__ = next


def generate_seed(length: int = SEED_LENGTH) -> str:
    """Fresh base-62 seed for events that don't pin one."""
    return "".join(secrets.choice(SEED_ALPHABET) for _ in range(length))
