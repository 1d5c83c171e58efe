"""Buildings placed on the city grid."""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from . import config
from .effects import BuildingEffects
from .resource_ledger import ResourceEventKind
from .resources import ResourceType

if TYPE_CHECKING:  # pragma: no cover
    from .city import City


@dataclass(frozen=True)
class BuildingTemplate:
    """Static description of a building type."""

    type_key: str
    name: str
    width: int = 1
    height: int = 1
    category: str = "general"
    is_road: bool = False
    needs_road: bool = True
    needs_power: bool = True
    is_residence: bool = False
    residence_level: int = 0
    residence_capacity: int = 0
    is_furniture_store: bool = False
    power_upkeep: float = 0.0
    power_production: float = 0.0
    upkeep: Mapping[ResourceType, float] = field(default_factory=dict)
    inputs: Mapping[ResourceType, float] = field(default_factory=dict)
    outputs: Mapping[ResourceType, float] = field(default_factory=dict)
    effects: Optional[BuildingEffects] = None
    area_indicator_radius_x: int = 0
    area_indicator_radius_y: int = 0
    area_indicator_rounded: bool = False


_ids = itertools.count(1)


@dataclass(eq=False)
class Building:
    """A placed instance of a :class:`BuildingTemplate`.

    Efficiencies are fractions in ``[0, 1]``. ``powered_time_during_long_tick``
    accumulates over the short ticks of the current long tick.
    """

    template: BuildingTemplate
    x: int = -1
    y: int = -1
    id: int = field(default_factory=lambda: next(_ids))
    last_efficiency: float = 0.0
    upkeep_efficiency: float = 1.0
    damaged_efficiency: float = 1.0
    powered_time_during_long_tick: float = 0.0
    powered: bool = False
    road_connected: bool = False
    is_new: bool = True
    # Unowned buildings belong to the region; they pay no upkeep.
    owned: bool = True
    applied_radius_bonus: int = 0

    # ------------------------------------------------------------------
    @property
    def type_key(self) -> str:
        return self.template.type_key

    @property
    def width(self) -> int:
        return self.template.width

    @property
    def height(self) -> int:
        return self.template.height

    @property
    def is_road(self) -> bool:
        return self.template.is_road

    @property
    def is_residence(self) -> bool:
        return self.template.is_residence

    @property
    def residence_level(self) -> int:
        return self.template.residence_level

    @property
    def needs_road(self) -> bool:
        return self.template.needs_road

    @property
    def needs_power(self) -> bool:
        return self.template.needs_power

    @property
    def area_indicator_radius_x(self) -> int:
        return self.template.area_indicator_radius_x

    @property
    def area_indicator_radius_y(self) -> int:
        return self.template.area_indicator_radius_y

    @property
    def area_indicator_rounded(self) -> bool:
        return self.template.area_indicator_rounded

    @property
    def is_placed(self) -> bool:
        return self.x >= 0 and self.y >= 0

    @property
    def is_operational(self) -> bool:
        return self.road_connected or not self.needs_road

    def footprint(self):
        for tile_y in range(self.y, self.y + self.height):
            for tile_x in range(self.x, self.x + self.width):
                yield tile_x, tile_y

    # ------------------------------------------------------------------
    def get_power_upkeep(self, city: "City") -> float:
        return self.template.power_upkeep if self.needs_power else 0.0

    def get_power_production(self, city: "City") -> float:
        return self.template.power_production * self.upkeep_efficiency * self.damaged_efficiency

    def get_upkeep(self, city: "City") -> Dict[ResourceType, float]:
        """Upkeep for the last long tick, scaled by how long the building ran."""

        if not self.owned:
            return {}
        running = self.powered_time_during_long_tick if self.needs_power else 1.0
        return {resource: amount * running for resource, amount in self.template.upkeep.items()}

    def get_provisioned_fraction(self, city: "City") -> float:
        if not self.template.inputs:
            return 1.0
        return city.ledger.calculate_affordable_portion(self.template.inputs)

    def set_upkeep_efficiency(self, fraction: float) -> None:
        self.upkeep_efficiency = max(0.0, min(1.0, fraction))

    # ------------------------------------------------------------------
    def on_long_tick(self, city: "City") -> None:
        """Work out this tick's efficiency, then consume inputs and produce outputs."""

        running = self.powered_time_during_long_tick if self.needs_power else 1.0
        if not (self.upkeep_efficiency and running and self.is_operational):
            self.last_efficiency = 0.0
            return

        self.last_efficiency = min(
            self.upkeep_efficiency * running,
            self.get_provisioned_fraction(city),
            self.damaged_efficiency,
        )
        if self.last_efficiency <= 0:
            return
        if self.template.inputs:
            city.ledger.check_and_spend_resources(
                {resource: amount * self.last_efficiency for resource, amount in self.template.inputs.items()}
            )
        if self.template.outputs:
            city.ledger.transfer_resources_from(
                {resource: amount * self.last_efficiency for resource, amount in self.template.outputs.items()},
                ResourceEventKind.PRODUCE,
            )

    def get_residence_capacity(self) -> float:
        return float(self.template.residence_capacity) if self.is_residence else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type_key,
            "x": self.x,
            "y": self.y,
            "last_efficiency": self.last_efficiency,
            "upkeep_efficiency": self.upkeep_efficiency,
            "damaged_efficiency": self.damaged_efficiency,
            "powered_time": self.powered_time_during_long_tick,
            "is_new": self.is_new,
            "owned": self.owned,
        }

    def snapshot(self) -> Dict[str, object]:
        payload = self.to_dict()
        payload.update(
            {
                "id": self.id,
                "name": self.template.name,
                "category": self.template.category,
                "road_connected": self.road_connected,
                "residence_level": self.residence_level if self.is_residence else None,
            }
        )
        return payload


def building_from_template(template: BuildingTemplate, x: int = -1, y: int = -1) -> Building:
    return Building(template=template, x=x, y=y)


POWER_STEP = 1.0 / config.SHORT_TICKS_PER_LONG_TICK
