"""Tests for prizepool.config - local config file management."""

import textwrap
from pathlib import Path

import pytest

from prizepool.config import (
    DEFAULT_DB_PATH,
    PrizepoolConfig,
    load_config,
)
from prizepool.seats import SeatPrize


@pytest.fixture
def config_dir(tmp_path):
    """Temporary directory for config files."""
    return tmp_path


def _write_config(config_dir: Path, content: str) -> Path:
    """Write a config.toml and return the path."""
    config_path = config_dir / "config.toml"
    config_path.write_text(textwrap.dedent(content))
    return config_path


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, config_dir):
        cfg = load_config(config_dir / "nonexistent.toml")
        assert isinstance(cfg, PrizepoolConfig)
        assert cfg.db_path == DEFAULT_DB_PATH
        assert cfg.ttl_hours == 24
        assert cfg.port == 8000
        assert cfg.rounds.seats == {1: "1st", 2: "1st & 4th", 3: "1st"}

    def test_full_config(self, config_dir):
        path = _write_config(config_dir, """\
            [store]
            path = "/var/lib/prizepool/shop.db"

            [artifacts]
            ttl_hours = 2

            [tiers]
            top_rank = 2
            mid_rank = 6

            [rounds]
            level = "L0"
            seats = { "1" = "1st & 2nd", "4" = "5-8th" }

            [server]
            port = 9100
        """)
        cfg = load_config(path)
        assert cfg.db_path == "/var/lib/prizepool/shop.db"
        assert cfg.ttl_hours == 2
        assert cfg.port == 9100
        assert cfg.tiers.top_rank == 2
        assert cfg.tiers.mid_rank == 6
        assert cfg.tiers.top_level == "L3"
        assert cfg.rounds.level == "L0"
        assert cfg.rounds.seats == {1: "1st & 2nd", 4: "5-8th"}

    def test_tilde_expansion(self, config_dir):
        path = _write_config(config_dir, """\
            [store]
            path = "~/prizes/prizepool.db"
        """)
        cfg = load_config(path)
        assert "~" not in cfg.db_path
        assert cfg.db_path.endswith("prizes/prizepool.db")

    def test_bad_toml_returns_defaults(self, config_dir):
        path = _write_config(config_dir, """\
            [store
            path = oops
        """)
        cfg = load_config(path)
        assert cfg.db_path == DEFAULT_DB_PATH

    def test_bad_round_key_ignored(self, config_dir):
        path = _write_config(config_dir, """\
            [rounds]
            seats = { "1" = "1st", "final" = "1st" }
        """)
        cfg = load_config(path)
        assert cfg.rounds.seats == {1: "1st"}

    def test_round_template(self, config_dir):
        path = _write_config(config_dir, """\
            [rounds.template]
            "4" = [{ seat = "1st", L3 = 1 }, { seat = "5-8th", L0 = 2 }]
        """)
        cfg = load_config(path)
        assert cfg.rounds.template == {
            4: (SeatPrize("1st", (("L3", 1),)), SeatPrize("5-8th", (("L0", 2),))),
        }
        # Seats for other rounds are untouched
        assert cfg.rounds.seats == {1: "1st", 2: "1st & 4th", 3: "1st"}

    def test_bad_template_rows_ignored(self, config_dir):
        path = _write_config(config_dir, """\
            [rounds.template]
            "4" = [{ seat = "1st", L3 = 1 }, { L0 = 2 }, { seat = "2nd", gold = 1 }, { seat = "3rd", L1 = -1 }]
            "final" = [{ seat = "1st", L3 = 1 }]
        """)
        cfg = load_config(path)
        assert cfg.rounds.template == {4: (SeatPrize("1st", (("L3", 1),)),)}


class TestTierRules:
    def test_config_tiers_to_rules(self, config_dir):
        path = _write_config(config_dir, """\
            [tiers]
            top_rank = 1
            mid_rank = 3
        """)
        rules = load_config(path).tiers.rules()
        assert [rules.target_for(r) for r in (1, 2, 3, 4)] == ["L3", "L2", "L2", "L1"]

    def test_round_rules_are_flat(self):
        rules = PrizepoolConfig().round_rules()
        assert rules.target_for(1) == rules.target_for(50) == "L1"
