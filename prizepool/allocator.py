"""
prizepool/allocator.py - Deterministic per-player prize allocation.

Given a roster, a catalog snapshot, a budget and a seed, allocate() hands out
at most one item per player by rank tier. allocate_grants() hands out fixed
per-seat quantities from a round template instead. Every RNG draw happens in
input order, so the result depends only on the inputs and the seed.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .models import AllocationLine, CatalogItem, RosterEntry, ThrottlePolicy
from .rng import SeededRandom
from .selection import select_weighted

logger = logging.getLogger(__name__)

SCOPE_END = "end"
SCOPE_ROUND = "round"

_LEVEL_RE = re.compile(r"^L(\d+)$")


def level_ordinal(level: str) -> int:
    """'L3' -> 3. Anything unparseable sorts as the floor."""
    m = _LEVEL_RE.match(level or "")
    return int(m.group(1)) if m else 0


@dataclass(frozen=True)
class TierRules:
    """Rank -> target level mapping.

    `thresholds` is checked in order: the first (max_rank, level) with
    rank <= max_rank wins; otherwise `base_level`.
    """

    thresholds: tuple[tuple[int, str], ...] = ((4, "L3"), (8, "L2"))
    base_level: str = "L1"
    floor_level: str = "L0"

    @classmethod
    def flat(cls, level: str, floor_level: str = "L0") -> "TierRules":
        """Every rank targets the same level (round prizes)."""
        return cls(thresholds=(), base_level=level, floor_level=floor_level)

    def target_for(self, rank: int) -> str:
        for max_rank, level in self.thresholds:
            if rank <= max_rank:
                return level
        return self.base_level

    def next_lower(self, level: str) -> str:
        floor = level_ordinal(self.floor_level)
        n = level_ordinal(level) - 1
        if n <= floor:
            return self.floor_level
        return f"L{n}"


END_TIERS = TierRules()


def eligible_items(
    catalog: Iterable[CatalogItem], player_count: int, scope_kind: str = SCOPE_END
) -> list[CatalogItem]:
    """Catalog items that may be drawn for this kind of scope at all."""
    out = []
    for item in catalog:
        if item.stock <= 0:
            continue
        if scope_kind == SCOPE_ROUND:
            if not item.eligible_for_round:
                continue
        elif not item.eligible_for_end:
            continue
        if player_count < item.min_player_threshold:
            continue
        out.append(item)
    return out


@dataclass(frozen=True)
class Grant:
    """A fixed handout: `qty` units of one item at `level` for one player."""

    entry: RosterEntry
    level: str
    qty: int = 1


@dataclass
class _Pool:
    """In-memory stock counters over an eligible catalog snapshot."""

    by_level: dict[str, list[CatalogItem]]
    stock: dict[str, int] = field(default_factory=dict)

    @classmethod
    def of(cls, catalog: Iterable[CatalogItem]) -> "_Pool":
        by_level: dict[str, list[CatalogItem]] = defaultdict(list)
        stock = {}
        for item in catalog:
            by_level[item.level or "L0"].append(item)
            stock[item.code] = item.stock
        return cls(by_level=dict(by_level), stock=stock)

    def in_stock(self, level: str, qty: int = 1) -> list[CatalogItem]:
        return [item for item in self.by_level.get(level, []) if self.stock[item.code] >= qty]

    def take(self, item: CatalogItem, qty: int = 1) -> None:
        self.stock[item.code] -= qty


def _line(entry: RosterEntry, item: CatalogItem, qty: int) -> AllocationLine:
    return AllocationLine(
        player=entry.name,
        item_code=item.code,
        item_name=item.name,
        level=item.level,
        qty=qty,
        cogs=item.cogs,
    )


def allocate(
    roster: Sequence[RosterEntry],
    catalog: Sequence[CatalogItem],
    budget: float,
    policy: ThrottlePolicy,
    seed: str,
    tiers: TierRules = END_TIERS,
    scope_kind: str = SCOPE_END,
    player_count: int | None = None,
) -> list[AllocationLine]:
    """Allocate one prize per player where stock and budget allow.

    Only items eligible for `scope_kind` at `player_count` (default: roster
    size) are drawn. Players whose tier (and fallback tier) is empty, or
    whose drawn item costs more than what is left, are skipped. Returns []
    for an empty roster or catalog; the caller decides what that means.
    """
    if player_count is None:
        player_count = len(roster)
    catalog = eligible_items(catalog, player_count, scope_kind)
    if not roster or not catalog:
        return []

    rng = SeededRandom(seed)
    pool = _Pool.of(catalog)
    remaining = budget
    lines: list[AllocationLine] = []

    for entry in sorted(roster, key=lambda e: e.rank):
        level = tiers.target_for(entry.rank)
        candidates = pool.in_stock(level)

        if not candidates:
            if rng.next() < policy.consolation_ratio:
                level = tiers.next_lower(level)
            else:
                level = tiers.floor_level
            candidates = pool.in_stock(level)
            logger.debug(f"{entry.name}: target tier empty, falling back to {level}")

        if not candidates:
            logger.debug(f"{entry.name}: nothing in stock at {level}, skipped")
            continue

        item = select_weighted(candidates, policy.ev_clamp_min, policy.ev_clamp_max, rng)
        if item is None:
            continue

        if item.cogs > remaining:
            logger.debug(
                f"{entry.name}: {item.code} costs {item.cogs:.2f}, only {remaining:.2f} left, skipped"
            )
            continue

        lines.append(_line(entry, item, 1))
        pool.take(item)
        remaining = round(remaining - item.cogs, 2)

    return lines


def allocate_grants(
    grants: Sequence[Grant],
    catalog: Sequence[CatalogItem],
    budget: float,
    policy: ThrottlePolicy,
    seed: str,
    scope_kind: str = SCOPE_ROUND,
    player_count: int | None = None,
) -> list[AllocationLine]:
    """Hand out fixed per-seat quantities, in grant order.

    Each grant draws one item at its level with at least `qty` units on
    hand, weighted by clamped EV, and takes all `qty` units of it. No tier
    fallback: a grant with no such item, or whose qty * cogs exceeds what
    is left of the budget, is skipped.
    """
    if player_count is None:
        player_count = len({g.entry for g in grants})
    catalog = eligible_items(catalog, player_count, scope_kind)
    if not grants or not catalog:
        return []

    rng = SeededRandom(seed)
    pool = _Pool.of(catalog)
    remaining = budget
    lines: list[AllocationLine] = []

    for grant in grants:
        if grant.qty <= 0:
            continue
        candidates = pool.in_stock(grant.level, grant.qty)
        if not candidates:
            logger.debug(f"{grant.entry.name}: no {grant.level} item with {grant.qty} in stock, skipped")
            continue

        item = select_weighted(candidates, policy.ev_clamp_min, policy.ev_clamp_max, rng)
        cost = round(item.cogs * grant.qty, 2)
        if cost > remaining:
            logger.debug(
                f"{grant.entry.name}: {grant.qty} x {item.code} costs {cost:.2f}, "
                f"only {remaining:.2f} left, skipped"
            )
            continue

        lines.append(_line(grant.entry, item, grant.qty))
        pool.take(item, grant.qty)
        remaining = round(remaining - cost, 2)

    return lines


def total_spend(lines: Iterable[AllocationLine]) -> float:
    return round(sum(line.total for line in lines), 2)
