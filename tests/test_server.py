"""Tests for backoffice/server.py - HTTP surface over PrizeDesk.

Uses FastAPI's TestClient - no server process needed.
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from backoffice.db import BackofficeDB
from backoffice.server import app
from prizepool.protocol import PrizeDesk


@pytest.fixture
def db():
    """Fresh in-memory DB for each test."""
    return BackofficeDB(":memory:")


@pytest.fixture
def client(db):
    """FastAPI test client backed by an in-memory DB."""
    import backoffice.server as srv

    # Create a bare app without lifespan so it doesn't overwrite _desk
    from fastapi import FastAPI

    test_app = FastAPI()
    # Copy all routes from the real app
    for route in app.routes:
        test_app.routes.append(route)

    srv._desk = PrizeDesk(db, clock=lambda: datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))
    with TestClient(test_app) as c:
        yield c
    srv._desk = None


def _seed_event(client, players=8):
    client.post("/events", json={"event_id": "EVT", "name": "Friday Night", "entry_fee": 15})
    client.put(
        "/events/EVT/roster",
        json={"players": [{"rank": i, "name": f"P{i}"} for i in range(1, players + 1)]},
    )
    for code, level, cogs in (("L3-A", "L3", 10.0), ("L2-A", "L2", 5.0), ("L1-A", "L1", 2.0)):
        client.put(f"/catalog/{code}", json={"name": code, "level": level, "cogs": cogs, "stock": 10})
    client.put(
        "/catalog/R-A",
        json={"name": "Round pack", "level": "L1", "cogs": 1.0, "stock": 10,
              "eligible_for_round": True, "eligible_for_end": False},
    )


# ======================================================================
# Setup endpoints
# ======================================================================


class TestSetup:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "artifacts": 0}

    def test_roster_for_unknown_event(self, client):
        resp = client.put("/events/NOPE/roster", json={"players": [{"rank": 1, "name": "A"}]})
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "EVENT_NOT_FOUND"

    def test_duplicate_ranks_rejected(self, client):
        client.post("/events", json={"event_id": "EVT"})
        resp = client.put(
            "/events/EVT/roster",
            json={"players": [{"rank": 1, "name": "A"}, {"rank": 1, "name": "B"}]},
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "SCHEMA_INVALID"

    def test_catalog_listing(self, client):
        _seed_event(client)
        items = client.get("/catalog").json()["items"]
        assert [i["code"] for i in items] == ["L1-A", "L2-A", "L3-A", "R-A"]

    def test_catalog_cogs_rounded_to_cents(self, client):
        client.put("/catalog/X", json={"name": "X", "level": "L1", "cogs": 4.999, "stock": 1})
        items = client.get("/catalog").json()["items"]
        assert items[0]["cogs"] == 5.0


class TestThrottle:
    def test_defaults(self, client):
        data = client.get("/throttle").json()
        assert data["RL_Percentage"] == "0.95"
        assert data["Hybrid_Cap_Enabled"] == "TRUE"

    def test_update(self, client):
        resp = client.put("/throttle", json={"RL_Percentage": 0.9})
        assert resp.status_code == 200
        assert resp.json()["RL_Percentage"] == "0.9"

    def test_invalid(self, client):
        resp = client.put("/throttle", json={"RL_Percentage": 1.5})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "THROTTLE_INVALID"


# ======================================================================
# Preview / commit
# ======================================================================


class TestPrizes:
    def test_preview_and_commit(self, client):
        _seed_event(client)
        resp = client.post("/events/EVT/prizes/preview", json={"seed": "FIXED"})
        assert resp.status_code == 200
        preview = resp.json()
        assert preview["budget"] == 114.0
        assert preview["band"] == "GREEN"
        assert len(preview["allocation"]) == 8

        resp = client.post("/events/EVT/prizes/commit", json={"hash": preview["hash"]})
        assert resp.status_code == 200
        assert resp.json()["allocated"] == 8

        assignments = client.get("/events/EVT/assignments").json()["assignments"]
        assert assignments["P1"]["END"] == "L3-A"
        assert client.get("/events/EVT/ledger").json()["spend"] == 60.0

    def test_preview_without_body(self, client):
        _seed_event(client)
        resp = client.post("/events/EVT/prizes/preview")
        assert resp.status_code == 200

    def test_no_players(self, client):
        client.post("/events", json={"event_id": "EVT"})
        resp = client.post("/events/EVT/prizes/preview", json={})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "NO_PLAYERS"

    def test_unknown_event(self, client):
        resp = client.post("/events/NOPE/prizes/preview", json={})
        assert resp.status_code == 404

    def test_commit_without_preview(self, client):
        _seed_event(client)
        resp = client.post("/events/EVT/prizes/commit", json={"hash": "abc"})
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NO_PREVIEW"

    def test_hash_mismatch(self, client):
        _seed_event(client)
        client.post("/events/EVT/prizes/preview", json={})
        resp = client.post("/events/EVT/prizes/commit", json={"hash": "abc"})
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["code"] == "HASH_MISMATCH"
        assert detail["hint"]

    def test_round_flow(self, client):
        _seed_event(client)
        preview = client.post("/events/EVT/rounds/2/preview", json={}).json()
        assert preview["scope_id"] == "EVT:R2"
        assert [line["player"] for line in preview["allocation"]] == ["P1", "P4"]
        resp = client.post("/events/EVT/rounds/2/commit", json={"hash": preview["hash"]})
        assert resp.status_code == 200


class TestAdmin:
    def test_revert(self, client):
        _seed_event(client)
        preview = client.post("/events/EVT/prizes/preview", json={}).json()
        batch_id = client.post("/events/EVT/prizes/commit", json={"hash": preview["hash"]}).json()["batch_id"]

        resp = client.post(f"/batches/{batch_id}/revert")
        assert resp.json() == {"success": True, "count": 8}
        assert client.get("/events/EVT/ledger").json()["spend"] == 0.0

        resp = client.post(f"/batches/{batch_id}/revert")
        assert resp.status_code == 200
        assert resp.json() == {"success": False, "count": 0}

    def test_revert_unknown_batch(self, client):
        resp = client.post("/batches/20260101-000000-ABCDEF/revert")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "BATCH_NOT_FOUND"

    def test_sweep(self, client):
        resp = client.post("/admin/sweep")
        assert resp.json() == {"success": True, "count": 0}
