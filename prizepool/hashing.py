"""
prizepool/hashing.py - Content hash over an allocation decision.

Serialization format "prizepool/v1" (the hash input, UTF-8 encoded):

    ["prizepool/v1", scope_id, seed,
     [[player, item_code, item_name, level, qty, cogs], ...]]

compact JSON (no whitespace, ASCII-escaped), line order as allocated.
Strings are emitted as strings, qty as a base-10 integer, cogs as a string
with exactly two decimals ("12.50"). Positional arrays keep field order fixed
without relying on key sorting, and the explicit coercions mean a port that
stores cogs as a number or as text still hashes identically.
"""

import hashlib
import json
from collections.abc import Iterable

from .models import AllocationLine

HASH_FORMAT = "prizepool/v1"
SHORT_HASH_LENGTH = 12


def _line_fields(line: AllocationLine) -> list:
    return [
        str(line.player),
        str(line.item_code),
        str(line.item_name),
        str(line.level),
        int(line.qty),
        f"{float(line.cogs):.2f}",
    ]


def serialize(scope_id: str, seed: str, lines: Iterable[AllocationLine]) -> bytes:
    payload = [HASH_FORMAT, str(scope_id), str(seed), [_line_fields(line) for line in lines]]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def content_hash(scope_id: str, seed: str, lines: Iterable[AllocationLine]) -> str:
    """SHA-256 hex digest of the v1 serialization."""
    return hashlib.sha256(serialize(scope_id, seed, lines)).hexdigest()


def short_hash(digest: str) -> str:
    return digest[:SHORT_HASH_LENGTH]
