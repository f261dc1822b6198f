"""
prizepool/throttle.py - Throttle key/value defaults, validation and parsing.

The store keeps the policy as string key/value pairs (it is operator-edited
data, not config). This module turns those pairs into a ThrottlePolicy.
"""

from .errors import ErrorCode, PrizeError
from .models import ThrottlePolicy

THROTTLE_DEFAULTS = {
    "RL_Percentage": "0.95",
    "EF_Clamp_Min": "0.80",
    "EF_Clamp_Max": "2.25",
    "Consolation_L1_Ratio": "0.20",
    "Default_Entry_Fee": "15",
    "Default_Kit_Cost": "0",
    "Hybrid_Cap_Enabled": "TRUE",
}

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def _float(value, key: str, errors: list[str]) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be a number")
        return None


def _flag(value) -> bool | None:
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def validate_throttle(updates: dict) -> list[str]:
    """Range-check a partial update. Returns error messages (empty if valid)."""
    errors: list[str] = []
    unknown = sorted(set(updates) - set(THROTTLE_DEFAULTS))
    if unknown:
        errors.append(f"Unknown throttle keys: {', '.join(unknown)}")

    ranges = {
        "RL_Percentage": (0.0, 1.0),
        "EF_Clamp_Min": (0.5, 2.0),
        "EF_Clamp_Max": (1.0, 3.0),
        "Consolation_L1_Ratio": (0.0, 1.0),
    }
    for key, (lo, hi) in ranges.items():
        if key in updates:
            val = _float(updates[key], key, errors)
            if val is not None and not lo <= val <= hi:
                errors.append(f"{key} must be between {lo} and {hi}")

    for key in ("Default_Entry_Fee", "Default_Kit_Cost"):
        if key in updates:
            val = _float(updates[key], key, errors)
            if val is not None and val < 0:
                errors.append(f"{key} must not be negative")

    if "Hybrid_Cap_Enabled" in updates and _flag(updates["Hybrid_Cap_Enabled"]) is None:
        errors.append("Hybrid_Cap_Enabled must be TRUE or FALSE")

    if "EF_Clamp_Min" in updates and "EF_Clamp_Max" in updates:
        lo = _float(updates["EF_Clamp_Min"], "EF_Clamp_Min", [])
        hi = _float(updates["EF_Clamp_Max"], "EF_Clamp_Max", [])
        if lo is not None and hi is not None and lo >= hi:
            errors.append("EF_Clamp_Min must be less than EF_Clamp_Max")

    return errors


def check_throttle(updates: dict) -> None:
    errors = validate_throttle(updates)
    if errors:
        raise PrizeError(ErrorCode.THROTTLE_INVALID, "Invalid throttle parameters", "; ".join(errors))


def with_defaults(kv: dict) -> dict[str, str]:
    merged = dict(THROTTLE_DEFAULTS)
    for key, value in kv.items():
        if value is not None and value != "":
            merged[key] = str(value)
    return merged


def policy_from_kv(kv: dict) -> ThrottlePolicy:
    """Build a ThrottlePolicy from stored pairs, filling defaults."""
    merged = with_defaults(kv)
    errors = validate_throttle({k: merged[k] for k in THROTTLE_DEFAULTS})
    if errors:
        raise PrizeError(ErrorCode.THROTTLE_INVALID, "Stored throttle is invalid", "; ".join(errors))
    return ThrottlePolicy(
        risk_percentage=float(merged["RL_Percentage"]),
        ev_clamp_min=float(merged["EF_Clamp_Min"]),
        ev_clamp_max=float(merged["EF_Clamp_Max"]),
        consolation_ratio=float(merged["Consolation_L1_Ratio"]),
        entry_fee=float(merged["Default_Entry_Fee"]),
        kit_cost_per_player=float(merged["Default_Kit_Cost"]),
        hybrid_cap_enabled=bool(_flag(merged["Hybrid_Cap_Enabled"])),
    )
