"""
prizepool/seats.py - Seat labels for round prizes.

Round prizes go to fixed finishing seats rather than the whole roster, e.g.
round 1 pays "1st", round 2 pays "1st & 4th". Labels are parsed into rank
numbers and resolved against the roster.

A round may instead carry a template: rows of (seat label, quantity per
level), e.g. "5-8th" gets two L0 items each.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from .allocator import Grant, level_ordinal
from .errors import ErrorCode, PrizeError
from .models import RosterEntry

DEFAULT_ROUND_SEATS = {1: "1st", 2: "1st & 4th", 3: "1st"}

_RANGE_RE = re.compile(r"^(\d+)\s*-\s*(\d+)(?:st|nd|rd|th)?$")
_SINGLE_RE = re.compile(r"^(\d+)(?:st|nd|rd|th)?$")


def parse_seats(label: str) -> list[int]:
    """'1st & 4th' -> [1, 4]; '5-8th' -> [5, 6, 7, 8]."""
    seats: list[int] = []
    for part in re.split(r"\s*(?:&|,|\+|\band\b)\s*", label.strip().lower()):
        if not part:
            continue
        m = _RANGE_RE.match(part)
        if m:
            lo, hi = int(m.group(1)), int(m.group(2))
            if lo < 1 or hi < lo:
                raise ValueError(f"Bad seat range: {part!r}")
            seats.extend(range(lo, hi + 1))
            continue
        m = _SINGLE_RE.match(part)
        if m and int(m.group(1)) >= 1:
            seats.append(int(m.group(1)))
            continue
        raise ValueError(f"Bad seat label: {part!r}")
    if not seats:
        raise ValueError(f"Empty seat label: {label!r}")
    return seats


def seats_for_round(round_no: int, round_seats: dict[int, str]) -> list[int]:
    """Seats paid in a round. Unknown rounds have no destination field."""
    label = round_seats.get(round_no)
    if label is None:
        raise PrizeError(
            ErrorCode.SCHEMA_INVALID,
            f"Round {round_no} has no prize field",
            f"Configured rounds: {sorted(round_seats)}",
        )
    try:
        return parse_seats(label)
    except ValueError as e:
        raise PrizeError(ErrorCode.SCHEMA_INVALID, str(e)) from e


def select_seated(roster: Sequence[RosterEntry], seats: Sequence[int]) -> list[RosterEntry]:
    """Roster entries sitting in the given seats.

    A seat matches the entry with that rank; if no entry has it, the entry at
    that roster position (rank order) is used. Missing seats are dropped.
    """
    ordered = sorted(roster, key=lambda e: e.rank)
    by_rank = {e.rank: e for e in ordered}
    picked: list[RosterEntry] = []
    for seat in seats:
        entry = by_rank.get(seat)
        if entry is None and seat <= len(ordered):
            entry = ordered[seat - 1]
        if entry is not None and entry not in picked:
            picked.append(entry)
    return picked


@dataclass(frozen=True)
class SeatPrize:
    """One template row: every player in `seat` gets `qty` items per level."""

    seat: str
    quantities: tuple[tuple[str, int], ...]

    @classmethod
    def of(cls, seat: str, quantities: dict[str, int]) -> "SeatPrize":
        ordered = sorted(quantities.items(), key=lambda kv: level_ordinal(kv[0]))
        return cls(seat=seat, quantities=tuple((level, int(qty)) for level, qty in ordered))


def template_grants(roster: Sequence[RosterEntry], rows: Sequence[SeatPrize]) -> list[Grant]:
    """Expand template rows into grants: row order, then seat order, then level."""
    grants: list[Grant] = []
    for row in rows:
        try:
            seats = parse_seats(row.seat)
        except ValueError as e:
            raise PrizeError(ErrorCode.SCHEMA_INVALID, str(e)) from e
        for entry in select_seated(roster, seats):
            for level, qty in row.quantities:
                if qty > 0:
                    grants.append(Grant(entry=entry, level=level, qty=qty))
    return grants
