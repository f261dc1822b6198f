"""
prizepool/models.py - Data types shared by the allocator, protocol and store.

Everything the allocator sees is a snapshot: frozen dataclasses built from
store rows before any computation starts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Band(str, Enum):
    """Risk band of a proposed spend against its budget."""

    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"


class EventType(str, Enum):
    CONSTRUCTED = "CONSTRUCTED"
    LIMITED = "LIMITED"
    HYBRID = "HYBRID"


# Assignment slot for end-of-event prizes; rounds use "R1", "R2", ...
END_SLOT = "END"


# ============================================================================
# Inputs
# ============================================================================


@dataclass(frozen=True)
class RosterEntry:
    name: str
    rank: int  # 1 = best finish


@dataclass(frozen=True)
class CatalogItem:
    code: str
    name: str
    level: str  # "L0".."L3"
    cogs: float
    expected_value: float
    stock: int
    eligible_for_round: bool = False
    eligible_for_end: bool = True
    min_player_threshold: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "CatalogItem":
        return cls(
            code=row["code"],
            name=row["name"],
            level=row["level"] or "L0",
            cogs=round(float(row["cogs"] or 0), 2),
            expected_value=float(row["expected_value"] if row["expected_value"] is not None else 1.0),
            stock=max(0, int(row["stock"] or 0)),
            eligible_for_round=bool(row["eligible_round"]),
            eligible_for_end=bool(row["eligible_end"]),
            min_player_threshold=int(row["min_players"] or 0),
        )


@dataclass(frozen=True)
class ThrottlePolicy:
    """Process-wide knobs. May change between preview and commit."""

    risk_percentage: float = 0.95
    ev_clamp_min: float = 0.80
    ev_clamp_max: float = 2.25
    consolation_ratio: float = 0.20
    entry_fee: float = 15.0  # default when the event has none
    kit_cost_per_player: float = 0.0
    hybrid_cap_enabled: bool = True


@dataclass(frozen=True)
class EventInfo:
    event_id: str
    name: str = ""
    event_type: EventType = EventType.CONSTRUCTED
    entry_fee: float | None = None
    kit_cost_per_player: float | None = None
    seed: str | None = None


# ============================================================================
# Outputs
# ============================================================================


@dataclass(frozen=True)
class AllocationLine:
    player: str
    item_code: str
    item_name: str
    level: str
    qty: int
    cogs: float

    @property
    def total(self) -> float:
        return round(self.cogs * self.qty, 2)

    def to_dict(self) -> dict:
        return {
            "player": self.player,
            "item_code": self.item_code,
            "item_name": self.item_name,
            "level": self.level,
            "qty": self.qty,
            "cogs": self.cogs,
        }


@dataclass(frozen=True)
class PreviewArtifact:
    artifact_id: str
    scope_id: str
    seed: str
    preview_hash: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class LedgerEntry:
    """One spent-pool row. Append-only; reversals are new rows."""

    scope_id: str
    item_code: str
    item_name: str
    level: str
    qty: int
    cogs: float
    timestamp: str
    batch_id: str
    reverted: bool = False
    scope_type: str = EventType.CONSTRUCTED.value


@dataclass
class Preview:
    scope_id: str
    seed: str
    allocation: list[AllocationLine]
    spend: float
    budget: float
    band: Band
    hash: str
    players: int
    ratio: float = 0.0
    hybrid_cap: float = 0.0

    @property
    def ok(self) -> bool:
        return True


@dataclass
class CommitReceipt:
    scope_id: str
    allocated: int
    spend: float
    budget: float
    band: Band
    batch_id: str
    assignments: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True
