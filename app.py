import logging
import os
import uuid
from datetime import datetime, timezone

from flask import Flask, current_app, jsonify, request

from api import ui_bridge
from citycore.game_state import GameSession
from citycore.persistence import CityStore
from citycore.scheduler import ensure_tick_loop

logger = logging.getLogger(__name__)

DEFAULT_SAVE_PATH = os.environ.get("CITYCORE_SAVE_PATH", "saves/city.json")
DEFAULT_CITY_SIZE = 64


def _generate_request_metadata() -> tuple[str, str]:
    request_id = str(uuid.uuid4())
    server_time = datetime.now(timezone.utc).isoformat()
    return request_id, server_time


def _enrich_payload(payload: dict, request_id: str, server_time: str) -> dict:
    body = dict(payload or {})
    body.pop("http_status", None)
    body["request_id"] = request_id
    body["server_time"] = server_time
    return body


def _json_response(payload: dict, status: int | None = None):
    request_id, server_time = _generate_request_metadata()
    if status is None:
        status = int(payload.get("http_status", 200 if payload.get("ok", True) else 400))
    body = _enrich_payload(payload, request_id, server_time)
    response = jsonify(body)
    response.status_code = status
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _session() -> GameSession:
    return current_app.config["GAME_SESSION"]


def _default_session() -> GameSession:
    store = CityStore(DEFAULT_SAVE_PATH)
    city = store.load_city()
    if city is not None:
        logger.info("Loaded city %s from %s", city.name, DEFAULT_SAVE_PATH)
        return GameSession(city, store=store)
    return GameSession.new_city(DEFAULT_CITY_SIZE, DEFAULT_CITY_SIZE, store=store)


def create_app(session: GameSession | None = None, start_loop: bool = True) -> Flask:
    """Build the Flask app around ``session`` (a saved or new city by default)."""

    app = Flask(__name__)
    app.config["GAME_SESSION"] = session or _default_session()
    if start_loop:
        ensure_tick_loop(app.config["GAME_SESSION"])

    @app.get("/api/state")
    def api_state():
        """Return the current snapshot of the city."""

        return _json_response(ui_bridge.get_state(_session()))

    @app.post("/api/tick")
    def api_tick():
        """Run the ticks owed up to ``now_ms`` (defaults to the server clock)."""

        payload = request.get_json(silent=True) or {}
        return _json_response(ui_bridge.tick(_session(), payload.get("now_ms")))

    @app.post("/api/techs/<tech_id>/research")
    def api_research(tech_id: str):
        response = ui_bridge.research_tech(_session(), tech_id)
        logger.info("Research request tech=%s ok=%s", tech_id, response.get("ok"))
        return _json_response(response)

    @app.post("/api/resources/<resource_key>/thresholds")
    def api_thresholds(resource_key: str):
        payload = request.get_json(silent=True) or {}
        return _json_response(
            ui_bridge.set_trade_thresholds(
                _session(), resource_key, payload.get("buy_below"), payload.get("sell_above")
            )
        )

    @app.post("/api/buildings")
    def api_place_building():
        payload = request.get_json(silent=True) or {}
        try:
            x, y = int(payload["x"]), int(payload["y"])
            type_key = str(payload["type"])
        except (KeyError, TypeError, ValueError):
            return _json_response(
                ui_bridge._error_response("invalid_request", "type, x and y are required", http_status=400)
            )
        return _json_response(ui_bridge.place_building(_session(), type_key, x, y))

    @app.get("/api/buildings/<int:building_id>/upgrade")
    def api_upgrade_details(building_id: int):
        return _json_response(ui_bridge.get_residence_upgrade_details(_session(), building_id))

    @app.post("/api/save")
    def api_save():
        return _json_response(ui_bridge.save(_session()))

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(debug=True, use_reloader=False)
