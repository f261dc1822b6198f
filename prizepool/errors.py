"""
prizepool/errors.py - Error codes and failure values for the prize engine.

Helpers raise PrizeError. The public PrizeDesk methods catch it at the
boundary and hand back a Failure, so callers only ever branch on `.ok`.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    BATCH_NOT_FOUND = "BATCH_NOT_FOUND"
    NO_PLAYERS = "NO_PLAYERS"
    NO_PRIZES = "NO_PRIZES"
    NO_PREVIEW = "NO_PREVIEW"
    HASH_MISMATCH = "HASH_MISMATCH"
    BUDGET_RED = "BUDGET_RED"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    STOCK_CONFLICT = "STOCK_CONFLICT"
    THROTTLE_INVALID = "THROTTLE_INVALID"


@dataclass(frozen=True)
class Failure:
    """A caller-visible failure. Never raised, always returned."""

    code: ErrorCode
    message: str
    hint: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "hint": self.hint}


class PrizeError(Exception):
    """Raised inside the engine; converted to a Failure at the boundary."""

    def __init__(self, code: ErrorCode, message: str, hint: str | None = None):
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message
        self.hint = hint

    def failure(self) -> Failure:
        return Failure(self.code, self.message, self.hint)
