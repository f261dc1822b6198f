"""
prizepool/budget.py - Prize budget ceiling and risk-band math.

Pure functions, no store access. Money is float currency rounded to cents.
"""

import logging
from dataclasses import dataclass

from .models import Band, EventInfo, EventType, ThrottlePolicy

logger = logging.getLogger(__name__)

GREEN_CEILING = 0.90
AMBER_CEILING = 0.95

# Hybrid events carve a small side pool out of the budget
HYBRID_CAP_RATE = 0.10
HYBRID_CAP_MAX = 15.00


@dataclass(frozen=True)
class BandInfo:
    band: Band
    ratio: float

    @property
    def percent_formatted(self) -> str:
        return f"{self.ratio * 100:.1f}%"


def to_cents(amount: float) -> float:
    return round(amount, 2)


def derive_budget(
    entry_fee: float,
    kit_cost_per_player: float,
    player_count: int,
    risk_percentage: float,
) -> float:
    """(entry - kit) * players * risk, never negative."""
    if player_count <= 0:
        return 0.0
    raw = (entry_fee - kit_cost_per_player) * player_count * risk_percentage
    return to_cents(max(0.0, raw))


def budget_for_event(event: EventInfo, player_count: int, policy: ThrottlePolicy) -> float:
    """Budget ceiling for an event, falling back to policy defaults for fees."""
    entry_fee = event.entry_fee if event.entry_fee is not None else policy.entry_fee
    kit_cost = (
        event.kit_cost_per_player
        if event.kit_cost_per_player is not None
        else policy.kit_cost_per_player
    )
    return derive_budget(entry_fee, kit_cost, player_count, policy.risk_percentage)


def hybrid_cap(event: EventInfo, budget: float, enabled: bool = True) -> float:
    """min(budget * 10%, 15.00) for HYBRID events, 0 otherwise or when disabled."""
    if not enabled or event.event_type != EventType.HYBRID:
        return 0.0
    return to_cents(min(budget * HYBRID_CAP_RATE, HYBRID_CAP_MAX))


def classify_band(spend: float, budget: float, player_count: int | None = None) -> BandInfo:
    """Classify spend against budget.

    GREEN <= 90% < AMBER <= 95% < RED. With no budget, any spend is RED;
    with no players (or nothing spent from nothing) it is GREEN.
    """
    if player_count == 0:
        return BandInfo(Band.GREEN, 0.0)
    if budget <= 0:
        if spend > 0:
            return BandInfo(Band.RED, 0.0)
        return BandInfo(Band.GREEN, 0.0)

    # Cents-level inputs; trim float noise so 108.30/114.00 lands on 0.95
    ratio = round(spend / budget, 9)
    if ratio <= GREEN_CEILING:
        band = Band.GREEN
    elif ratio <= AMBER_CEILING:
        band = Band.AMBER
    else:
        band = Band.RED
    return BandInfo(band, ratio)
