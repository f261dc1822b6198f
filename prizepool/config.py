"""
prizepool/config.py - Local configuration management

Reads operator config from a platform-appropriate config directory:
  - macOS/Linux: ~/.prizepool/config.toml
  - Windows: %APPDATA%\\prizepool\\config.toml

The throttle policy (risk %, EV clamp, consolation ratio, fee defaults) is
NOT here: it lives in the store so operators can change it between preview
and commit. This file only covers where things live and how tiers map.

Example:
    [store]
    path = "~/.prizepool/prizepool.db"

    [artifacts]
    ttl_hours = 24

    [tiers]
    top_rank = 4
    mid_rank = 8
    top_level = "L3"
    mid_level = "L2"
    base_level = "L1"
    floor_level = "L0"

    [rounds]
    level = "L1"
    seats = { "1" = "1st", "2" = "1st & 4th", "3" = "1st" }

    # Optional: fixed quantities per seat and level, replacing seats for that round
    [rounds.template]
    "4" = [{ seat = "1st", L3 = 1 }, { seat = "5-8th", L0 = 2 }]

    [server]
    port = 8000
"""

import logging
import os
import re
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .allocator import TierRules
from .seats import DEFAULT_ROUND_SEATS, SeatPrize

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "prizepool"
    return Path.home() / ".prizepool"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"
DEFAULT_DB_PATH = str(CONFIG_DIR / "prizepool.db")

DEFAULT_TTL_HOURS = 24
DEFAULT_PORT = 8000

_LEVEL_KEY = re.compile(r"^L\d+$")


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class TierConfig:
    """Rank thresholds for end-of-event prizes."""

    top_rank: int = 4
    mid_rank: int = 8
    top_level: str = "L3"
    mid_level: str = "L2"
    base_level: str = "L1"
    floor_level: str = "L0"

    def rules(self) -> TierRules:
        return TierRules(
            thresholds=((self.top_rank, self.top_level), (self.mid_rank, self.mid_level)),
            base_level=self.base_level,
            floor_level=self.floor_level,
        )


@dataclass
class RoundConfig:
    """Which seats each round pays, and at what level."""

    level: str = "L1"
    seats: dict[int, str] = field(default_factory=lambda: dict(DEFAULT_ROUND_SEATS))
    template: dict[int, tuple[SeatPrize, ...]] = field(default_factory=dict)


@dataclass
class PrizepoolConfig:
    """Top-level configuration."""

    db_path: str = DEFAULT_DB_PATH
    ttl_hours: float = DEFAULT_TTL_HOURS
    tiers: TierConfig = field(default_factory=TierConfig)
    rounds: RoundConfig = field(default_factory=RoundConfig)
    port: int = DEFAULT_PORT

    def round_rules(self) -> TierRules:
        return TierRules.flat(self.rounds.level, floor_level=self.tiers.floor_level)


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    return str(Path(path).expanduser())


def _section(raw: dict, name: str) -> dict:
    data = raw.get(name, {})
    return data if isinstance(data, dict) else {}


def _parse_tiers(data: dict) -> TierConfig:
    d = TierConfig()
    return TierConfig(
        top_rank=int(data.get("top_rank", d.top_rank)),
        mid_rank=int(data.get("mid_rank", d.mid_rank)),
        top_level=data.get("top_level", d.top_level),
        mid_level=data.get("mid_level", d.mid_level),
        base_level=data.get("base_level", d.base_level),
        floor_level=data.get("floor_level", d.floor_level),
    )


def _parse_rounds(data: dict) -> RoundConfig:
    rounds = RoundConfig(level=data.get("level", "L1"))
    seats = data.get("seats")
    if isinstance(seats, dict):
        parsed = {}
        for key, label in seats.items():
            try:
                parsed[int(key)] = str(label)
            except ValueError:
                logger.warning(f"Ignoring round seat key {key!r} (not a round number)")
        rounds.seats = parsed
    template = data.get("template")
    if isinstance(template, dict):
        rounds.template = _parse_template(template)
    return rounds


def _parse_template(data: dict) -> dict[int, tuple[SeatPrize, ...]]:
    template = {}
    for key, rows in data.items():
        try:
            round_no = int(key)
        except ValueError:
            logger.warning(f"Ignoring round template key {key!r} (not a round number)")
            continue
        parsed = []
        for row in rows if isinstance(rows, list) else []:
            seat = row.get("seat") if isinstance(row, dict) else None
            quantities = {k: v for k, v in row.items() if k != "seat"} if seat else {}
            bad = [k for k, v in quantities.items() if not _LEVEL_KEY.match(k) or not isinstance(v, int) or v < 0]
            if not seat or bad:
                logger.warning(f"Ignoring round {round_no} template row {row!r}")
                continue
            parsed.append(SeatPrize.of(str(seat), quantities))
        template[round_no] = tuple(parsed)
    return template


def load_config(path: Path | None = None) -> PrizepoolConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.prizepool/config.toml)

    Returns:
        PrizepoolConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return PrizepoolConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return PrizepoolConfig()

    store = _section(raw, "store")
    artifacts = _section(raw, "artifacts")
    server = _section(raw, "server")

    return PrizepoolConfig(
        db_path=_expand(store.get("path")) or DEFAULT_DB_PATH,
        ttl_hours=float(artifacts.get("ttl_hours", DEFAULT_TTL_HOURS)),
        tiers=_parse_tiers(_section(raw, "tiers")),
        rounds=_parse_rounds(_section(raw, "rounds")),
        port=int(server.get("port", DEFAULT_PORT)),
    )
