"""Public API between the UI layer and the city simulation.

Every function takes the :class:`GameSession` it operates on; the Flask app
keeps the session on the application object.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from citycore.building_catalog import UnknownCatalogEntryError, build_from_catalog
from citycore.effect_grid import GridBoundsError
from citycore.game_state import GameSession
from citycore.persistence import StaleWriteError

logger = logging.getLogger(__name__)


def _success_response(**payload: object) -> Dict[str, object]:
    response: Dict[str, object] = {"ok": True}
    response.update(payload)
    return response


def _error_response(
    code: str, message: str, *, http_status: int | None = None
) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "ok": False,
        "error_code": code,
        "error_message": message,
        "error": message,
    }
    if http_status is not None:
        payload["http_status"] = int(http_status)
    return payload


# ---------------------------------------------------------------------------
# State and ticking


def get_state(session: GameSession) -> Dict[str, object]:
    """Return a snapshot of the whole city."""

    return _success_response(state=session.snapshot())


def tick(session: GameSession, now_ms: Optional[int] = None) -> Dict[str, object]:
    """Run the ticks owed up to ``now_ms`` (defaults to the session clock)."""

    try:
        result = session.advance(None if now_ms is None else int(now_ms))
    except StaleWriteError as exc:
        return _error_response("stale_write", str(exc), http_status=409)
    return _success_response(tick=result.to_dict(), state=session.snapshot())


# ---------------------------------------------------------------------------
# Player actions


def research_tech(session: GameSession, tech_id: str) -> Dict[str, object]:
    with session.lock:
        manager = session.city.tech_manager
        try:
            tech = manager.get(tech_id)
        except UnknownCatalogEntryError as exc:
            return _error_response("unknown_tech", str(exc), http_status=404)
        if not manager.can_research(tech):
            return _error_response(
                "tech_unavailable", f"{tech.name} cannot be researched right now", http_status=409
            )
        if not manager.research_tech(session.city, tech):
            return _error_response(
                "insufficient_resources", f"Nothing could be spent on {tech.name}", http_status=400
            )
        session.record_action()
        return _success_response(
            tech=tech.id,
            researched=tech.researched,
            remaining_costs={resource.value: amount for resource, amount in tech.costs.items()},
        )


def set_trade_thresholds(
    session: GameSession,
    resource_key: str,
    buy_below: Optional[float] = None,
    sell_above: Optional[float] = None,
) -> Dict[str, object]:
    with session.lock:
        try:
            account = session.city.ledger.set_trade_thresholds(
                resource_key, buy_below=buy_below, sell_above=sell_above
            )
        except KeyError:
            return _error_response("unknown_resource", f"Unknown resource: {resource_key}", http_status=404)
        except (TypeError, ValueError) as exc:
            return _error_response("invalid_threshold", str(exc), http_status=400)
        session.record_action()
        return _success_response(
            resource=account.type.value,
            auto_buy_below=account.auto_buy_below,
            auto_sell_above=account.auto_sell_above,
        )


def place_building(session: GameSession, type_key: str, x: int, y: int) -> Dict[str, object]:
    with session.lock:
        city = session.city
        try:
            building = build_from_catalog(type_key)
        except UnknownCatalogEntryError as exc:
            return _error_response("invalid_building_type", str(exc), http_status=404)
        if not city.can_place(building.template, int(x), int(y)):
            return _error_response(
                "placement_blocked", f"{building.template.name} does not fit there", http_status=409
            )
        try:
            city.add_building(building, int(x), int(y))
        except (GridBoundsError, ValueError) as exc:
            return _error_response("placement_blocked", str(exc), http_status=409)
        session.record_action()
        logger.info("Placed %s at (%s, %s)", building.type_key, x, y)
        return _success_response(building=building.snapshot())


def get_residence_upgrade_details(session: GameSession, building_id: int) -> Dict[str, object]:
    with session.lock:
        city = session.city
        building = city.get_building(int(building_id))
        if building is None:
            return _error_response("building_not_found", f"No building {building_id}", http_status=404)
        details = city.residence_spawner.get_residence_upgrade_details(building)
        if details is None:
            return _error_response(
                "not_upgradable", f"{building.template.name} cannot upgrade", http_status=400
            )
        return _success_response(details=details)


# ---------------------------------------------------------------------------
# Persistence


def save(session: GameSession) -> Dict[str, object]:
    if session.store is None:
        return _error_response("no_store", "This session has no storage configured", http_status=400)
    try:
        saved = session.full_save()
    except StaleWriteError as exc:
        return _error_response("stale_write", str(exc), http_status=409)
    return _success_response(saved=saved, deferred=session.save_deferred)
