import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app import create_app
from citycore import config
from citycore.building_catalog import ROAD, SMALL_HOUSE
from citycore.game_state import GameSession
from citycore.persistence import InMemoryCityStore
from citycore.resources import ResourceType


@pytest.fixture
def session():
    return GameSession.new_city(16, 16, store=InMemoryCityStore(), now=lambda: 0, rng=random.Random(3))


@pytest.fixture
def client(session):
    app = create_app(session, start_loop=False)
    app.config["TESTING"] = True
    return app.test_client()


def _place(client, type_key, x, y):
    return client.post("/api/buildings", json={"type": type_key, "x": x, "y": y})


def test_state_endpoint_returns_snapshot(client):
    response = client.get("/api/state")

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["state"]["width"] == 16
    assert body["state"]["fast_forward"] is False
    assert "request_id" in body and "server_time" in body
    assert "no-store" in response.headers["Cache-Control"]


def test_tick_endpoint_runs_owed_ticks(client, session):
    response = client.post("/api/tick", json={"now_ms": config.LONG_TICK_TIME})

    body = response.get_json()
    assert response.status_code == 200
    assert body["tick"] == {
        "long_ticks": 1,
        "short_ticks": config.SHORT_TICKS_PER_LONG_TICK,
        "fast_forward": False,
    }
    assert session.store.writes == 1


def test_research_endpoint(client, session):
    session.city.ledger.set_amount(ResourceType.RESEARCH, 8)
    session.city.ledger.set_amount(ResourceType.FLUNDS, 60)

    response = client.post("/api/techs/hydroponics/research")

    body = response.get_json()
    assert response.status_code == 200
    assert body["researched"] is True
    assert session.city.tech_manager.is_researched("hydroponics")


def test_research_errors(client):
    unknown = client.post("/api/techs/cold_fusion/research")
    assert unknown.status_code == 404
    assert unknown.get_json()["error_code"] == "unknown_tech"
    assert "http_status" not in unknown.get_json()

    locked = client.post("/api/techs/smartpolicing/research")
    assert locked.status_code == 409
    assert locked.get_json()["error_code"] == "tech_unavailable"

    broke = client.post("/api/techs/hydroponics/research")
    assert broke.status_code == 400
    assert broke.get_json()["error_code"] == "insufficient_resources"


def test_threshold_endpoint_keeps_thresholds_ordered(client, session):
    response = client.post("/api/resources/wood/thresholds", json={"buy_below": 0.5, "sell_above": 0.2})

    body = response.get_json()
    assert response.status_code == 200
    assert body["auto_buy_below"] == pytest.approx(0.5)
    assert body["auto_sell_above"] == pytest.approx(0.5)
    assert session.city.ledger.get("wood").auto_sell_above == pytest.approx(0.5)


def test_threshold_endpoint_errors(client):
    unknown = client.post("/api/resources/mithril/thresholds", json={"buy_below": 0.1})
    assert unknown.status_code == 404

    invalid = client.post("/api/resources/wood/thresholds", json={"buy_below": "lots"})
    assert invalid.status_code == 400
    assert invalid.get_json()["error_code"] == "invalid_threshold"


def test_place_building_endpoint(client, session):
    placed = _place(client, ROAD, 1, 0)
    assert placed.status_code == 200
    assert placed.get_json()["building"]["road_connected"] is True

    blocked = _place(client, SMALL_HOUSE, 1, 0)
    assert blocked.status_code == 409
    assert blocked.get_json()["error_code"] == "placement_blocked"

    assert _place(client, "castle", 2, 2).status_code == 404
    assert client.post("/api/buildings", json={"type": ROAD}).status_code == 400
    assert session.city.count_buildings(ROAD) == 2


def test_upgrade_details_endpoint(client, session):
    _place(client, ROAD, 1, 0)
    house_id = _place(client, SMALL_HOUSE, 1, 1).get_json()["building"]["id"]
    road_id = session.city.network_root.id

    details = client.get(f"/api/buildings/{house_id}/upgrade")
    assert details.status_code == 200
    assert details.get_json()["details"]["has_space"] is True

    assert client.get(f"/api/buildings/{road_id}/upgrade").status_code == 400
    assert client.get("/api/buildings/999999/upgrade").status_code == 404


def test_save_endpoint(client, session):
    response = client.post("/api/save")

    assert response.status_code == 200
    assert response.get_json()["saved"] is True
    assert session.store.payload["name"] == session.city.name


def test_save_endpoint_without_store():
    bare = GameSession.new_city(8, 8, now=lambda: 0)
    client = create_app(bare, start_loop=False).test_client()

    response = client.post("/api/save")

    assert response.status_code == 400
    assert response.get_json()["error_code"] == "no_store"


def test_stale_tick_reports_conflict(client, session):
    session.store.payload = {"last_saved_action_timestamp": 10**12}

    response = client.post("/api/tick", json={"now_ms": config.LONG_TICK_TIME})

    assert response.status_code == 409
    assert response.get_json()["error_code"] == "stale_write"
