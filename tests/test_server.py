"""
tests/test_server.py - Tournament API endpoint tests.

Uses FastAPI's TestClient, no server process needed. Each test gets an
app with an in-memory DB and a verifier wired to FakeChain.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import CONTRACT, make_verifier, sign
from metaserve.config import MetaserveConfig
from metaserve.messages import build_registration_message
from metaserve.ownership import OwnershipOracle
from tournament_api.server import create_app

TIMESTAMP = 1717000000


@pytest.fixture
def client():
    """FastAPI test client backed by an in-memory DB."""
    config = MetaserveConfig(database_path=":memory:")
    app = create_app(config, verifier=make_verifier(), oracle=OwnershipOracle(endpoint=None))
    with TestClient(app) as c:
        yield c


def _create(client, slug="spring-cup", **overrides) -> dict:
    body = {
        "slug": slug,
        "title": "Spring Cup",
        "capacity": 16,
        "starts_at": "2026-05-01T18:00:00Z",
    }
    body.update(overrides)
    resp = client.post("/api/tournaments", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _register_body(account, tournament_id, token_id="1") -> dict:
    message = build_registration_message(tournament_id, CONTRACT, token_id, TIMESTAMP)
    return {
        "wallet_address": account.address,
        "contract_address": CONTRACT,
        "token_id": token_id,
        "signature": sign(account, message),
        "timestamp": TIMESTAMP,
    }


def _register(client, account, tournament_id, token_id="1") -> dict:
    resp = client.post(
        f"/api/tournaments/{tournament_id}/register",
        json=_register_body(account, tournament_id, token_id),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


# ======================================================================
# Health / tournaments
# ======================================================================


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}


class TestTournaments:
    def test_create(self, client):
        data = _create(client)
        assert data["status"] == "OPEN"
        assert data["slug"] == "spring-cup"
        assert data["max_entries_per_wallet"] == 3
        assert data["starts_at"] == "2026-05-01T18:00:00+00:00"

    def test_create_invalid(self, client):
        resp = client.post(
            "/api/tournaments",
            json={"slug": "ab", "title": "Spring Cup", "capacity": 16, "starts_at": "2026-05-01T18:00:00Z"},
        )
        assert resp.status_code == 400
        assert "slug" in resp.json()["error"]

    def test_create_missing_field(self, client):
        resp = client.post("/api/tournaments", json={"slug": "spring-cup"})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_duplicate_slug(self, client):
        _create(client)
        resp = client.post(
            "/api/tournaments",
            json={"slug": "spring-cup", "title": "Again", "capacity": 4, "starts_at": "2026-05-01T18:00:00Z"},
        )
        assert resp.status_code == 409

    def test_list_ordered_by_start(self, client):
        _create(client, slug="late-cup", starts_at="2026-07-01T00:00:00Z")
        _create(client, slug="early-cup", starts_at="2026-03-01T00:00:00Z")
        resp = client.get("/api/tournaments")
        assert [t["slug"] for t in resp.json()] == ["early-cup", "late-cup"]

    def test_detail(self, client, account):
        t = _create(client)
        _register(client, account, t["id"], "42")
        data = client.get(f"/api/tournaments/{t['id']}").json()
        assert data["id"] == t["id"]
        assert data["matches"] == []
        [entry] = data["entries"]
        assert entry["wallet_address"] == account.address.lower()
        assert entry["token_id"] == "42"

    def test_detail_not_found(self, client):
        resp = client.get("/api/tournaments/missing")
        assert resp.status_code == 404
        assert "error" in resp.json()


# ======================================================================
# Registration
# ======================================================================


class TestRegister:
    def test_register(self, client, account):
        t = _create(client)
        entry = _register(client, account, t["id"])
        assert entry["contract_address"] == CONTRACT.lower()

    def test_integer_token_id(self, client, account):
        t = _create(client)
        body = _register_body(account, t["id"], "7")
        body["token_id"] = 7
        resp = client.post(f"/api/tournaments/{t['id']}/register", json=body)
        assert resp.status_code == 200
        assert resp.json()["token_id"] == "7"

    def test_bad_signature(self, client, account, other_account):
        t = _create(client)
        body = _register_body(other_account, t["id"])
        body["wallet_address"] = account.address
        resp = client.post(f"/api/tournaments/{t['id']}/register", json=body)
        assert resp.status_code == 400
        assert resp.json() == {"error": "signature verification failed"}

    def test_quota(self, client, account):
        t = _create(client, max_entries_per_wallet=1)
        _register(client, account, t["id"], "1")
        resp = client.post(
            f"/api/tournaments/{t['id']}/register", json=_register_body(account, t["id"], "2")
        )
        assert resp.status_code == 400

    def test_duplicate_card(self, client, account):
        t = _create(client)
        _register(client, account, t["id"], "1")
        resp = client.post(
            f"/api/tournaments/{t['id']}/register", json=_register_body(account, t["id"], "1")
        )
        assert resp.status_code == 409

    def test_locked(self, client, account):
        t = _create(client)
        assert client.post(f"/api/tournaments/{t['id']}/lock").status_code == 200
        resp = client.post(
            f"/api/tournaments/{t['id']}/register", json=_register_body(account, t["id"])
        )
        assert resp.status_code == 409

    def test_unknown_tournament(self, client, account):
        resp = client.post("/api/tournaments/missing/register", json=_register_body(account, "missing"))
        assert resp.status_code == 404


# ======================================================================
# Bracket lifecycle
# ======================================================================


class TestLifecycle:
    def test_double_lock(self, client):
        t = _create(client)
        client.post(f"/api/tournaments/{t['id']}/lock")
        resp = client.post(f"/api/tournaments/{t['id']}/lock")
        assert resp.status_code == 409

    def test_full_flow(self, client, account):
        t = _create(client)
        a = _register(client, account, t["id"], "1")
        b = _register(client, account, t["id"], "2")
        client.post(f"/api/tournaments/{t['id']}/lock")

        resp = client.post(
            f"/api/tournaments/{t['id']}/matches",
            json={"matches": [{"round": "F", "entry_a_id": a["id"], "entry_b_id": b["id"]}]},
        )
        assert resp.status_code == 200
        [final] = resp.json()
        assert final["status"] == "PENDING"
        assert client.get(f"/api/tournaments/{t['id']}").json()["status"] == "IN_PROGRESS"

        resp = client.patch(
            f"/api/matches/{final['id']}/result",
            json={"sets_a": 3, "sets_b": 1, "winner_entry_id": a["id"], "scoreline": "3-1"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"

        resp = client.post(f"/api/tournaments/{t['id']}/finish")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tournament"]["status"] == "FINISHED"
        [log] = data["distributions"]
        assert log["entry_id"] == a["id"]
        assert log["final_owner"] == "unknown"

        history = client.get(f"/api/tournaments/{t['id']}/distributions").json()
        assert history == data["distributions"]

    def test_seed_open_rejected(self, client):
        t = _create(client)
        resp = client.post(f"/api/tournaments/{t['id']}/matches", json={"matches": []})
        assert resp.status_code == 409

    def test_seed_bad_round(self, client):
        t = _create(client)
        client.post(f"/api/tournaments/{t['id']}/lock")
        resp = client.post(f"/api/tournaments/{t['id']}/matches", json={"matches": [{"round": "R3"}]})
        assert resp.status_code == 400

    def test_result_unknown_match(self, client):
        resp = client.patch(
            "/api/matches/missing/result", json={"sets_a": 1, "sets_b": 0, "winner_entry_id": "x"}
        )
        assert resp.status_code == 404

    def test_finish_empty(self, client):
        t = _create(client)
        client.post(f"/api/tournaments/{t['id']}/lock")
        client.post(f"/api/tournaments/{t['id']}/matches", json={"matches": []})
        resp = client.post(f"/api/tournaments/{t['id']}/finish")
        assert resp.status_code == 200
        assert resp.json()["distributions"] == []

    def test_finish_open_rejected(self, client):
        t = _create(client)
        assert client.post(f"/api/tournaments/{t['id']}/finish").status_code == 409

    def test_distributions_not_found(self, client):
        assert client.get("/api/tournaments/missing/distributions").status_code == 404


class TestStartup:
    def test_lifespan_uses_config_set_after_build(self, tmp_path):
        app = create_app(
            MetaserveConfig(database_path=":memory:"),
            verifier=make_verifier(),
            oracle=OwnershipOracle(endpoint=None),
        )
        db_path = tmp_path / "swapped.db"
        app.state.config = MetaserveConfig(database_path=str(db_path))
        with TestClient(app) as c:
            assert c.get("/api/health").status_code == 200
            assert app.state.service.db.path == str(db_path)
        assert db_path.exists()
