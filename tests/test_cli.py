"""Tests for prizepool/cli.py - end-to-end through argparse and a temp DB."""

import textwrap

import pytest

from backoffice.db import BackofficeDB
from prizepool.cli import main


@pytest.fixture
def base_args(tmp_path):
    """Global flags pointing at a temp DB and no config file."""
    return ["--db", str(tmp_path / "prizepool.db"), "--config", str(tmp_path / "missing.toml")]


def _run(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content))
    return str(path)


@pytest.fixture
def loaded(tmp_path, base_args):
    """An 8-player event with a small catalog."""
    roster = _write(tmp_path, "roster.csv", "Rank,Player\n" + "".join(f"{i},P{i}\n" for i in range(1, 9)))
    catalog = _write(tmp_path, "catalog.csv", """\
        code,name,level,cogs,expected_value,stock,eligible_round
        L3-A,Booster Box,L3,10,1.0,10,
        L2-A,Deck Box,L2,5,1.0,10,
        L1-A,Sleeves,L1,2,1.0,10,yes
    """)
    assert _run(base_args + ["event", "EVT", "--entry-fee", "15", "--seed", "FIXED"]) == 0
    assert _run(base_args + ["import-roster", "EVT", roster]) == 0
    assert _run(base_args + ["import-catalog", catalog]) == 0
    return base_args


class TestImports:
    def test_loaded_state(self, tmp_path, loaded):
        db = BackofficeDB(str(tmp_path / "prizepool.db"))
        assert len(db.get_roster("EVT")) == 8
        assert db.get_catalog_item("L1-A").eligible_for_round is True
        assert db.get_catalog_item("L3-A").eligible_for_round is False
        db.close()

    def test_catalog_missing_columns(self, tmp_path, base_args):
        bad = _write(tmp_path, "bad.csv", "code,name\nX,Thing\n")
        assert _run(base_args + ["import-catalog", bad]) == 1

    def test_roster_bad_rank(self, tmp_path, base_args):
        assert _run(base_args + ["event", "EVT"]) == 0
        bad = _write(tmp_path, "roster.csv", "rank,player\nfirst,Alice\n")
        assert _run(base_args + ["import-roster", "EVT", bad]) == 1

    def test_roster_unknown_event(self, tmp_path, base_args):
        roster = _write(tmp_path, "roster.csv", "rank,player\n1,Alice\n")
        assert _run(base_args + ["import-roster", "NOPE", roster]) == 1


class TestPreviewCommit:
    def test_preview_then_commit(self, loaded, capsys):
        assert _run(loaded + ["preview", "EVT"]) == 0
        out = capsys.readouterr().out
        assert "114.00" in out
        assert "GREEN" in out
        hash_line = next(line for line in out.splitlines() if line.startswith("Hash:"))
        digest = hash_line.split()[-1]

        assert _run(loaded + ["commit", "EVT", digest]) == 0
        # Artifact is consumed
        assert _run(loaded + ["commit", "EVT", digest]) == 1

    def test_commit_wrong_hash(self, loaded):
        assert _run(loaded + ["preview", "EVT"]) == 0
        assert _run(loaded + ["commit", "EVT", "abc"]) == 1

    def test_round_preview(self, loaded, capsys):
        assert _run(loaded + ["preview", "EVT", "--round", "2"]) == 0
        out = capsys.readouterr().out
        assert "EVT:R2" in out


class TestThrottleCommand:
    def test_set(self, tmp_path, base_args):
        assert _run(base_args + ["throttle", "--set", "RL_Percentage=0.9"]) == 0
        db = BackofficeDB(str(tmp_path / "prizepool.db"))
        assert db.get_throttle()["RL_Percentage"] == "0.9"
        db.close()

    def test_invalid(self, base_args):
        assert _run(base_args + ["throttle", "--set", "RL_Percentage=7"]) == 1

    def test_malformed_pair(self, base_args):
        assert _run(base_args + ["throttle", "--set", "RL_Percentage"]) == 1


class TestMaintenance:
    def test_revert_unknown_batch(self, base_args):
        assert _run(base_args + ["revert", "nope"]) == 1

    def test_sweep(self, base_args):
        assert _run(base_args + ["sweep"]) == 0
