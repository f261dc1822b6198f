"""Tests for prizepool/seats.py - round seat labels."""

import pytest

from prizepool.allocator import Grant
from prizepool.errors import ErrorCode, PrizeError
from prizepool.models import RosterEntry
from prizepool.seats import (
    DEFAULT_ROUND_SEATS,
    SeatPrize,
    parse_seats,
    seats_for_round,
    select_seated,
    template_grants,
)


class TestParseSeats:
    def test_single(self):
        assert parse_seats("1st") == [1]

    def test_pair(self):
        assert parse_seats("1st & 4th") == [1, 4]

    def test_comma_and_word(self):
        assert parse_seats("1st, 2nd and 3rd") == [1, 2, 3]

    def test_range(self):
        assert parse_seats("5-8th") == [5, 6, 7, 8]

    def test_bare_numbers(self):
        assert parse_seats("2 + 3") == [2, 3]

    @pytest.mark.parametrize("label", ["", "first", "0th", "8-5th"])
    def test_bad_labels(self, label):
        with pytest.raises(ValueError):
            parse_seats(label)


class TestSeatsForRound:
    def test_defaults(self):
        assert seats_for_round(1, DEFAULT_ROUND_SEATS) == [1]
        assert seats_for_round(2, DEFAULT_ROUND_SEATS) == [1, 4]
        assert seats_for_round(3, DEFAULT_ROUND_SEATS) == [1]

    def test_unknown_round(self):
        with pytest.raises(PrizeError) as exc:
            seats_for_round(7, DEFAULT_ROUND_SEATS)
        assert exc.value.code == ErrorCode.SCHEMA_INVALID

    def test_bad_label_is_schema_error(self):
        with pytest.raises(PrizeError) as exc:
            seats_for_round(1, {1: "winner"})
        assert exc.value.code == ErrorCode.SCHEMA_INVALID


class TestSelectSeated:
    def test_by_rank(self):
        roster = [RosterEntry(f"P{i}", i) for i in range(1, 9)]
        picked = select_seated(roster, [1, 4])
        assert [e.name for e in picked] == ["P1", "P4"]

    def test_position_fallback_for_gapped_ranks(self):
        roster = [RosterEntry("A", 1), RosterEntry("B", 3), RosterEntry("C", 5), RosterEntry("D", 7)]
        picked = select_seated(roster, [1, 4])
        assert [e.name for e in picked] == ["A", "D"]

    def test_missing_seat_dropped(self):
        roster = [RosterEntry("A", 1), RosterEntry("B", 2)]
        assert [e.name for e in select_seated(roster, [1, 4])] == ["A"]

    def test_no_duplicates(self):
        roster = [RosterEntry("A", 1)]
        assert len(select_seated(roster, [1, 1])) == 1


# ============================================================================
# Templates
# ============================================================================


def _players(n):
    return [RosterEntry(f"P{i}", i) for i in range(1, n + 1)]


class TestTemplateGrants:
    def test_levels_sorted_low_to_high(self):
        row = SeatPrize.of("1st", {"L3": 1, "L0": 2})
        assert row.quantities == (("L0", 2), ("L3", 1))

    def test_expands_rows_then_seats(self):
        roster = _players(6)
        rows = [SeatPrize.of("1st", {"L3": 1}), SeatPrize.of("5-8th", {"L0": 2})]
        assert template_grants(roster, rows) == [
            Grant(roster[0], "L3", 1),
            Grant(roster[4], "L0", 2),
            Grant(roster[5], "L0", 2),
        ]

    def test_zero_quantity_dropped(self):
        assert template_grants(_players(2), [SeatPrize.of("1st", {"L1": 0})]) == []

    def test_bad_seat_is_schema_error(self):
        with pytest.raises(PrizeError) as exc:
            template_grants(_players(2), [SeatPrize.of("first", {"L1": 1})])
        assert exc.value.code == ErrorCode.SCHEMA_INVALID
