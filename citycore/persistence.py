"""Persistence helpers to save and load a city.

Only state that cannot be rebuilt is written: effects emitted by buildings
are recreated by placing the buildings again, so the effect grid contributes
just its ambient (building-less) entries.
"""
from __future__ import annotations

import json
import logging
import random
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from .building_catalog import UnknownCatalogEntryError, build_from_catalog
from .city import City, TimedBonus
from .effect_grid import GridBoundsError

logger = logging.getLogger(__name__)

SAVE_VERSION = 1


class StaleWriteError(Exception):
    """Raised when a save would overwrite a newer stored copy of the city."""

    def __init__(self, attempted: int, stored: int) -> None:
        self.attempted = attempted
        self.stored = stored
        super().__init__(
            f"Refusing stale write: action timestamp {attempted} is older than stored {stored}"
        )


def city_to_dict(city: City) -> Dict[str, Any]:
    root = city.network_root
    return {
        "version": SAVE_VERSION,
        "name": city.name,
        "width": city.width,
        "height": city.height,
        "last_long_tick": city.last_long_tick,
        "last_short_tick": city.last_short_tick,
        "last_saved_action_timestamp": city.last_saved_action_timestamp,
        "peak_population": city.peak_population,
        "flags": sorted(city.flags),
        "tax_rates": dict(city.tax_rates),
        "recent_construction_resources_sold": city.ledger.recent_construction_resources_sold,
        "particulate_pollution_multiplier": city.particulate_pollution_multiplier,
        "power_import_limit": city.power_import_limit,
        "time_freeze": city.time_freeze,
        "global_spawn_chance": city.residence_spawner.global_spawn_chance,
        "network_root": [root.x, root.y] if root is not None else None,
        "resources": city.ledger.bulk_export(),
        "techs": city.tech_manager.bulk_export(),
        "last_friend_visit_date": (
            city.tech_manager.last_friend_visit_date.isoformat()
            if city.tech_manager.last_friend_visit_date
            else None
        ),
        "effects": city.effect_grid.export_untied(),
        "buildings": [building.to_dict() for building in city.buildings],
        "diet": city.diet.composition_snapshot(),
        "timed_bonuses": [bonus.to_dict() for bonus in city.timed_bonuses],
    }


def _load_buildings(city: City, entries) -> None:
    for entry in entries:
        type_key = str(entry.get("type", ""))
        try:
            building = build_from_catalog(type_key)
        except UnknownCatalogEntryError:
            logger.warning("Skipping building of unknown type %r at (%s, %s)", type_key, entry.get("x"), entry.get("y"))
            continue
        try:
            city.add_building(building, int(entry.get("x", -1)), int(entry.get("y", -1)))
        except (GridBoundsError, ValueError) as exc:
            logger.warning("Skipping building %s: %s", type_key, exc)
            continue
        building.last_efficiency = float(entry.get("last_efficiency", 0.0))
        building.upkeep_efficiency = float(entry.get("upkeep_efficiency", 1.0))
        building.damaged_efficiency = float(entry.get("damaged_efficiency", 1.0))
        building.powered_time_during_long_tick = float(entry.get("powered_time", 0.0))
        building.is_new = bool(entry.get("is_new", False))
        building.owned = bool(entry.get("owned", True))


def city_from_dict(data: Dict[str, Any], rng: Optional[random.Random] = None) -> City:
    if data.get("version") != SAVE_VERSION:
        raise ValueError(f"Unsupported save version: {data.get('version')!r}")

    city = City(int(data["width"]), int(data["height"]), rng=rng, name=str(data.get("name", "New City")))
    city.last_long_tick = int(data.get("last_long_tick", 0))
    city.last_short_tick = int(data.get("last_short_tick", city.last_long_tick))
    city.last_saved_action_timestamp = int(data.get("last_saved_action_timestamp", 0))
    city.peak_population = float(data.get("peak_population", 0.0))
    city.flags = set(data.get("flags", []))
    city.tax_rates.update({str(k): float(v) for k, v in data.get("tax_rates", {}).items()})
    city.particulate_pollution_multiplier = float(data.get("particulate_pollution_multiplier", 1.0))
    city.power_import_limit = float(data.get("power_import_limit", city.power_import_limit))
    city.time_freeze = bool(data.get("time_freeze", False))

    for skipped in city.ledger.bulk_load(data.get("resources", [])):
        logger.warning("Skipping unknown resource %r on load", skipped)
    city.ledger.recent_construction_resources_sold = float(data.get("recent_construction_resources_sold", 0.0))
    # Tech state goes first so radius upgrades apply when buildings are placed.
    for skipped in city.tech_manager.bulk_load(data.get("techs", [])):
        logger.warning("Skipping unknown tech %r on load", skipped)
    visit = data.get("last_friend_visit_date")
    city.tech_manager.last_friend_visit_date = date.fromisoformat(visit) if visit else None

    _load_buildings(city, data.get("buildings", []))
    root = data.get("network_root")
    if root is not None:
        candidate = city.grid[int(root[1])][int(root[0])] if city.in_bounds(int(root[0]), int(root[1])) else None
        if candidate is not None and candidate.is_road:
            city.network_root = candidate
            candidate.owned = False
        else:
            logger.warning("Network root at %s is missing; roads will be disconnected", root)
    city.update_road_connectivity()

    city.effect_grid.load_untied(data.get("effects", []))
    city.diet.load_composition(data.get("diet", []))
    city.residence_spawner.global_spawn_chance = float(data.get("global_spawn_chance", 0.0))
    for entry in data.get("timed_bonuses", []):
        try:
            city.timed_bonuses.append(
                TimedBonus(str(entry["kind"]), float(entry["amount"]), int(entry["remaining_ticks"]))
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed timed bonus: %s", entry)
    return city


# ---------------------------------------------------------------------------
# Storage backends


class BaseCityStore:
    """Saves serialised cities, rejecting writes older than the stored copy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def _read(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _write(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def save_city(self, city: City) -> Dict[str, Any]:
        payload = city_to_dict(city)
        with self._lock:
            stored = self._read()
            if stored is not None:
                stored_timestamp = int(stored.get("last_saved_action_timestamp", 0))
                if payload["last_saved_action_timestamp"] < stored_timestamp:
                    raise StaleWriteError(payload["last_saved_action_timestamp"], stored_timestamp)
            self._write(payload)
        logger.debug("Saved city %s at long tick %s", city.name, city.last_long_tick)
        return payload

    def load_city(self, rng: Optional[random.Random] = None) -> Optional[City]:
        with self._lock:
            stored = self._read()
        if stored is None:
            return None
        return city_from_dict(stored, rng)


class CityStore(BaseCityStore):
    """JSON file on disk."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as fh:
            return json.load(fh)

    def _write(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)


class InMemoryCityStore(BaseCityStore):
    def __init__(self) -> None:
        super().__init__()
        self.payload: Optional[Dict[str, Any]] = None
        self.writes = 0

    def _read(self) -> Optional[Dict[str, Any]]:
        return json.loads(json.dumps(self.payload)) if self.payload is not None else None

    def _write(self, payload: Dict[str, Any]) -> None:
        self.payload = json.loads(json.dumps(payload))
        self.writes += 1
