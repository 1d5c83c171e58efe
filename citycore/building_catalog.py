"""Catalogue of building types known to the simulation."""

from __future__ import annotations

from typing import Dict, List

from .buildings import Building, BuildingTemplate, building_from_template
from .effects import (
    BY_EFFICIENCY,
    BuildingEffects,
    DistanceFalloff,
    EffectDefinition,
    EffectType,
    RadiusUpgrade,
)
from .resources import ResourceType


class UnknownCatalogEntryError(KeyError):
    """Raised when a building or tech id is not present in its catalogue."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"Unknown {kind}: {identifier}")


ROAD = "road"
SMALL_HOUSE = "small_house"
QUADPLEX = "quadplex"
SMALL_APARTMENT = "small_apartment"
HIGHRISE = "highrise"
SKYSCRAPER = "skyscraper"
POLICE_STATION = "police_station"
FIRE_STATION = "fire_station"
CLINIC = "clinic"
ELEMENTARY_SCHOOL = "elementary_school"
CORNER_STORE = "corner_store"
FURNITURE_STORE = "furniture_store"
SMALL_PARK = "small_park"
COAL_POWER_PLANT = "coal_power_plant"
FARM = "farm"
FISH_FARM = "fish_farm"


def _residence(type_key: str, name: str, size: int, level: int, capacity: int, power: float) -> BuildingTemplate:
    return BuildingTemplate(
        type_key=type_key,
        name=name,
        width=size,
        height=size,
        category="residential",
        is_residence=True,
        residence_level=level,
        residence_capacity=capacity,
        power_upkeep=power,
    )


def _service(
    type_key: str,
    name: str,
    effect: EffectType,
    radius: int,
    upkeep: float,
    radius_tech: str | None = None,
) -> BuildingTemplate:
    upgrades = [RadiusUpgrade(radius_tech, 1)] if radius_tech else []
    return BuildingTemplate(
        type_key=type_key,
        name=name,
        category="government",
        power_upkeep=1.0,
        upkeep={ResourceType.FLUNDS: upkeep},
        effects=BuildingEffects(
            [EffectDefinition(effect, 1.0, 0, dynamic_calculation=BY_EFFICIENCY, add_radius=True)],
            upgrades,
        ),
        area_indicator_radius_x=radius,
        area_indicator_radius_y=radius,
        area_indicator_rounded=True,
    )


# Ordered by residence level; the spawner relies on this order.
RESIDENCE_TYPES: List[str] = [SMALL_HOUSE, QUADPLEX, SMALL_APARTMENT, HIGHRISE, SKYSCRAPER]


BUILDING_TEMPLATES: Dict[str, BuildingTemplate] = {
    ROAD: BuildingTemplate(
        type_key=ROAD,
        name="Road",
        category="infrastructure",
        is_road=True,
        needs_road=False,
        needs_power=False,
        upkeep={ResourceType.FLUNDS: 0.5},
        effects=BuildingEffects([EffectDefinition(EffectType.NOISE, 0.05, 1)]),
    ),
    SMALL_HOUSE: _residence(SMALL_HOUSE, "Small House", 1, 0, 6, 1.0),
    QUADPLEX: _residence(QUADPLEX, "Quadplex", 1, 1, 24, 3.0),
    SMALL_APARTMENT: _residence(SMALL_APARTMENT, "Small Apartment", 2, 1, 35, 5.0),
    HIGHRISE: _residence(HIGHRISE, "Highrise", 2, 2, 110, 14.0),
    SKYSCRAPER: _residence(SKYSCRAPER, "Skyscraper", 2, 3, 470, 52.0),
    POLICE_STATION: _service(POLICE_STATION, "Police Station", EffectType.POLICE_PROTECTION, 5, 1.25, "smartpolicing"),
    FIRE_STATION: _service(FIRE_STATION, "Fire Station", EffectType.FIRE_PROTECTION, 5, 1.25),
    CLINIC: _service(CLINIC, "Clinic", EffectType.HEALTHCARE, 4, 1.25),
    ELEMENTARY_SCHOOL: _service(ELEMENTARY_SCHOOL, "Elementary School", EffectType.EDUCATION, 4, 1.0),
    CORNER_STORE: BuildingTemplate(
        type_key=CORNER_STORE,
        name="Corner Store",
        category="commercial",
        power_upkeep=1.0,
        upkeep={ResourceType.FLUNDS: 0.5},
        effects=BuildingEffects(
            [
                EffectDefinition(EffectType.BUSINESS_PRESENCE, 0.5, 3, dynamic_calculation=BY_EFFICIENCY),
                EffectDefinition(EffectType.LAND_VALUE, 0.1, 3, dynamic_calculation=BY_EFFICIENCY),
                EffectDefinition(EffectType.LUXURY, 0.1, 2, dynamic_calculation=BY_EFFICIENCY),
            ]
        ),
        area_indicator_rounded=True,
    ),
    FURNITURE_STORE: BuildingTemplate(
        type_key=FURNITURE_STORE,
        name="Furniture Store",
        category="commercial",
        is_furniture_store=True,
        power_upkeep=2.0,
        upkeep={ResourceType.FLUNDS: 1.0},
        inputs={ResourceType.FURNITURE: 0.5},
        effects=BuildingEffects(
            [
                EffectDefinition(EffectType.BUSINESS_PRESENCE, 0.4, 3, dynamic_calculation=BY_EFFICIENCY),
                EffectDefinition(EffectType.LUXURY, 0.2, 3, dynamic_calculation=BY_EFFICIENCY),
            ]
        ),
        area_indicator_rounded=True,
    ),
    SMALL_PARK: BuildingTemplate(
        type_key=SMALL_PARK,
        name="Small Park",
        category="luxury",
        needs_power=False,
        upkeep={ResourceType.FLUNDS: 0.25},
        effects=BuildingEffects(
            [
                EffectDefinition(EffectType.LAND_VALUE, 0.2, 3, rounded=True),
                EffectDefinition(EffectType.LUXURY, 0.3, 3, rounded=True),
            ]
        ),
    ),
    COAL_POWER_PLANT: BuildingTemplate(
        type_key=COAL_POWER_PLANT,
        name="Coal Power Plant",
        width=2,
        height=2,
        category="energy",
        needs_power=False,
        power_production=100.0,
        upkeep={ResourceType.FLUNDS: 4.0},
        effects=BuildingEffects(
            [
                EffectDefinition(
                    EffectType.PARTICULATE_POLLUTION,
                    0.5,
                    6,
                    dynamic_calculation=DistanceFalloff(6, scale_by_efficiency=True),
                    rounded=True,
                ),
                EffectDefinition(EffectType.GREENHOUSE_GASES, 0.3, 4, dynamic_calculation=BY_EFFICIENCY),
                EffectDefinition(EffectType.NOISE, 0.2, 2, dynamic_calculation=BY_EFFICIENCY),
            ]
        ),
    ),
    FARM: BuildingTemplate(
        type_key=FARM,
        name="Farm",
        width=2,
        height=2,
        category="agriculture",
        power_upkeep=1.0,
        upkeep={ResourceType.FLUNDS: 1.0},
        outputs={
            ResourceType.GRAIN: 1.0,
            ResourceType.ROOT_VEGETABLES: 0.5,
            ResourceType.LEAFY_GREENS: 0.5,
            ResourceType.LEGUMES: 0.5,
        },
    ),
    FISH_FARM: BuildingTemplate(
        type_key=FISH_FARM,
        name="Fish Farm",
        width=2,
        height=2,
        category="agriculture",
        power_upkeep=1.0,
        upkeep={ResourceType.FLUNDS: 1.5},
        outputs={ResourceType.FISH: 1.0},
        effects=BuildingEffects([EffectDefinition(EffectType.NOISE, 0.1, 1)]),
    ),
}


def get_template(type_key: str) -> BuildingTemplate:
    key = str(type_key).strip().lower()
    template = BUILDING_TEMPLATES.get(key)
    if template is None:
        raise UnknownCatalogEntryError("building", type_key)
    return template


def build_from_catalog(type_key: str, x: int = -1, y: int = -1) -> Building:
    """Instantiate a fresh building of ``type_key``."""

    return building_from_template(get_template(type_key), x, y)


def residence_templates() -> List[BuildingTemplate]:
    return [BUILDING_TEMPLATES[key] for key in RESIDENCE_TYPES]
