"""Effect values emitted onto the tile grid and their magnitude providers."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from .buildings import Building
    from .city import City


class EffectType(str, Enum):
    PETTY_CRIME = "PettyCrime"
    ORGANIZED_CRIME = "OrganizedCrime"
    POLICE_PROTECTION = "PoliceProtection"
    PARTICULATE_POLLUTION = "ParticulatePollution"
    GREENHOUSE_GASES = "GreenhouseGases"
    NOISE = "Noise"
    LAND_VALUE = "LandValue"
    FIRE_PROTECTION = "FireProtection"
    EDUCATION = "Education"
    HEALTHCARE = "Healthcare"
    BUSINESS_PRESENCE = "BusinessPresence"
    LUXURY = "Luxury"


class EffectCalculation(Protocol):
    """Computes the magnitude of a dynamic effect at query time.

    Implementations must not mutate anything: they are re-evaluated on every
    read so changes to the source building show up immediately.
    """

    name: str

    def compute_magnitude(
        self,
        city: "City",
        source: "Building",
        x: int,
        y: int,
        requesting: Optional["Building"] = None,
    ) -> float:
        ...


class StaticMagnitude:
    name = "static"

    def compute_magnitude(self, city, source, x, y, requesting=None) -> float:
        return 1.0


class EfficiencyScaled:
    """Scales with how well the source building ran during the last long tick."""

    name = "efficiency"

    def compute_magnitude(self, city, source, x, y, requesting=None) -> float:
        if not source.is_placed:
            return 1.0
        return source.last_efficiency


@dataclass(frozen=True)
class DistanceFalloff:
    """Linear falloff from the source footprint out to ``radius`` tiles."""

    radius: int
    scale_by_efficiency: bool = False
    name: str = field(default="falloff", init=False)

    def compute_magnitude(self, city, source, x, y, requesting=None) -> float:
        dx = max(source.x - x, 0, x - (source.x + source.width - 1))
        dy = max(source.y - y, 0, y - (source.y + source.height - 1))
        distance = max(dx, dy)
        magnitude = max(0.0, 1.0 - distance / (self.radius + 1))
        if self.scale_by_efficiency and source.is_placed:
            magnitude *= source.last_efficiency
        return magnitude


STATIC = StaticMagnitude()
BY_EFFICIENCY = EfficiencyScaled()


class Effect:
    """A typed modifier sitting on one tile.

    ``building`` is the emitter, if any. Untied effects (no building) are
    ambient terrain values and the only effects that get persisted.
    ``expiration_ticks`` counts down once per long tick; ``None`` never expires.
    """

    __slots__ = ("type", "multiplier", "building", "dynamic_calculation", "expiration_ticks")

    def __init__(
        self,
        type: EffectType,
        multiplier: float = 1.0,
        building: Optional["Building"] = None,
        dynamic_calculation: Optional[EffectCalculation] = None,
        expiration_ticks: Optional[int] = None,
    ) -> None:
        self.type = EffectType(type)
        self.multiplier = float(multiplier)
        self.building = building
        self.dynamic_calculation = dynamic_calculation
        self.expiration_ticks = expiration_ticks

    def get_effect(
        self, city: "City", requesting: Optional["Building"], x: int, y: int
    ) -> float:
        if self.building is not None and self.dynamic_calculation is not None:
            return self.multiplier * self.dynamic_calculation.compute_magnitude(
                city, self.building, x, y, requesting
            )
        return self.multiplier

    def copy(self) -> "Effect":
        return Effect(
            self.type,
            self.multiplier,
            self.building,
            self.dynamic_calculation,
            self.expiration_ticks,
        )

    def __repr__(self) -> str:
        source = self.building.type_key if self.building is not None else None
        return f"Effect({self.type.value}, {self.multiplier}, source={source})"


@dataclass(frozen=True)
class EffectDefinition:
    """Catalog description of one effect a building spreads when placed."""

    type: EffectType
    magnitude: float
    radius_x: int
    radius_y: Optional[int] = None
    dynamic_calculation: Optional[EffectCalculation] = None
    rounded: Optional[bool] = None
    add_radius: bool = False
    exclude_footprint: bool = False

    @property
    def effective_radius_y(self) -> int:
        return self.radius_x if self.radius_y is None else self.radius_y


@dataclass(frozen=True)
class RadiusUpgrade:
    tech: str
    amount: int


class BuildingEffects:
    """Spreads and retracts the effects of a building type."""

    def __init__(
        self,
        effects: List[EffectDefinition],
        radius_upgrades: Optional[List[RadiusUpgrade]] = None,
    ) -> None:
        self.effects = list(effects)
        self.radius_upgrades = list(radius_upgrades or [])

    def get_radius_upgrade_amount(self, city: "City") -> int:
        return sum(
            upgrade.amount
            for upgrade in self.radius_upgrades
            if city.tech_manager.is_researched(upgrade.tech)
        )

    def apply_effects(self, building: "Building", city: "City") -> None:
        bonus = self.get_radius_upgrade_amount(city)
        building.applied_radius_bonus = bonus
        for definition in self.effects:
            extra_x = building.area_indicator_radius_x if definition.add_radius else 0
            extra_y = building.area_indicator_radius_y if definition.add_radius else 0
            rounded = (
                definition.rounded
                if definition.rounded is not None
                else building.area_indicator_rounded
            )
            city.effect_grid.spread_effect(
                Effect(definition.type, definition.magnitude, building, definition.dynamic_calculation),
                building.x,
                building.y,
                building.width,
                building.height,
                bonus + definition.radius_x + extra_x,
                bonus + definition.effective_radius_y + extra_y,
                rounded=rounded,
                exclude_footprint=definition.exclude_footprint,
            )

    def max_radius(self, building: "Building", bonus: int) -> int:
        radius = 0
        for definition in self.effects:
            extra_x = building.area_indicator_radius_x if definition.add_radius else 0
            extra_y = building.area_indicator_radius_y if definition.add_radius else 0
            radius = max(
                radius,
                definition.radius_x + extra_x,
                definition.effective_radius_y + extra_y,
            )
        return radius + bonus

    def stop_effects(self, building: "Building", city: "City") -> None:
        bonus = max(building.applied_radius_bonus, self.get_radius_upgrade_amount(city))
        radius = self.max_radius(building, bonus)
        city.effect_grid.stop_effects(
            building, building.x, building.y, building.width, building.height, radius
        )
