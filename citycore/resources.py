"""Resource definitions for the city simulation core."""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional

from . import config


class ResourceType(str, Enum):
    """Enumeration of every resource key tracked by a city."""

    FLUNDS = "flunds"
    POPULATION = "population"
    POWER = "power"
    HAPPINESS = "happiness"
    RESEARCH = "research"
    GREENHOUSE_GASES = "greenhousegases"
    FOOD_HEALTH = "foodhealth"
    FOOD_SUFFICIENCY = "foodsufficiency"
    FOOD_SATISFACTION = "foodsatisfaction"
    GRAIN = "grain"
    ROOT_VEGETABLES = "rootvegetables"
    APPLES = "apples"
    BERRIES = "berries"
    LEAFY_GREENS = "leafygreens"
    LEGUMES = "legumes"
    RED_MEAT = "redmeat"
    POULTRY = "poultry"
    FISH = "fish"
    DAIRY = "dairy"
    PLANT_BASED_DAIRY = "plantbaseddairy"
    LAB_GROWN_MEAT = "labgrownmeat"
    VITAMIN_B12 = "vitaminb12"
    STONE = "stone"
    IRON = "iron"
    WOOD = "wood"
    LUMBER = "lumber"
    GLASS = "glass"
    STEEL = "steel"
    FURNITURE = "furniture"


ALL_RESOURCE_TYPES: List[ResourceType] = list(ResourceType)

FOOD_TYPES: List[ResourceType] = [
    ResourceType.GRAIN,
    ResourceType.ROOT_VEGETABLES,
    ResourceType.APPLES,
    ResourceType.BERRIES,
    ResourceType.LEAFY_GREENS,
    ResourceType.LEGUMES,
    ResourceType.RED_MEAT,
    ResourceType.POULTRY,
    ResourceType.FISH,
    ResourceType.DAIRY,
    ResourceType.PLANT_BASED_DAIRY,
    ResourceType.LAB_GROWN_MEAT,
    ResourceType.VITAMIN_B12,
]

_RESOURCE_LOOKUP: Dict[str, ResourceType] = {}
for _resource in ALL_RESOURCE_TYPES:
    _RESOURCE_LOOKUP[_resource.value] = _resource
    _RESOURCE_LOOKUP[_resource.name.lower()] = _resource


def resource_from_id(identifier: str) -> ResourceType:
    """Return the resource type associated with ``identifier``.

    Both the stored identifier (``"rootvegetables"``) and the enum name
    (``"ROOT_VEGETABLES"``) are accepted regardless of capitalisation. A
    :class:`KeyError` is raised if the identifier is unknown.
    """

    resource = _RESOURCE_LOOKUP.get(str(identifier).strip().lower())
    if resource is None:
        raise KeyError(f"Unknown resource: {identifier}")
    return resource


def normalise_resource(value: ResourceType | str) -> ResourceType:
    """Coerce ``value`` into a :class:`ResourceType` instance."""

    if isinstance(value, ResourceType):
        return value
    return resource_from_id(value)


@dataclass
class Resource:
    """A single commodity account held by a city.

    ``amount`` stays within ``[0, capacity]`` through the ledger; the resource
    only refuses to be constructed in an invalid state. Flunds are the one
    account allowed to go into debt.
    """

    type: ResourceType
    amount: float = 0.0
    capacity: float = 0.0
    production_rate: float = 0.0
    consumption_rate: float = 0.0
    buy_price: float = 0.0
    sell_price: float = 0.0
    auto_buy_below: float = 0.0
    auto_sell_above: float = 1.0
    buyable_amount: float = 0.0
    buy_capacity: float = 0.0
    buy_price_multiplier: float = 1.0
    sell_price_multiplier: float = 1.0
    is_special: bool = False
    display_name: str = ""

    def __post_init__(self) -> None:
        self.type = normalise_resource(self.type)
        if self.capacity < 0:
            raise ValueError(f"Negative capacity for {self.type.value}: {self.capacity}")
        if self.amount < 0 and self.type is not ResourceType.FLUNDS:
            raise ValueError(f"Negative amount for {self.type.value}: {self.amount}")
        if not 0.0 <= self.auto_buy_below <= self.auto_sell_above <= 1.0:
            raise ValueError(
                f"Invalid trade thresholds for {self.type.value}: "
                f"{self.auto_buy_below} / {self.auto_sell_above}"
            )
        if not self.display_name:
            self.display_name = self.type.value.title()

    # ------------------------------------------------------------------
    @property
    def is_tradeable(self) -> bool:
        return not self.is_special and self.buy_price > 0

    @property
    def effective_buy_price(self) -> float:
        return self.buy_price * self.buy_price_multiplier

    @property
    def effective_sell_price(self) -> float:
        return self.sell_price * self.sell_price_multiplier

    def copy(self, **overrides: object) -> "Resource":
        """Return an independent resource with ``overrides`` applied."""

        return replace(self, **overrides)

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


PERSISTED_FIELDS = (
    "amount",
    "capacity",
    "consumption_rate",
    "production_rate",
    "auto_buy_below",
    "auto_sell_above",
    "buy_price_multiplier",
    "sell_price_multiplier",
    "buyable_amount",
)


def _definition(
    resource: ResourceType,
    *,
    capacity: float = 0.0,
    buy: float = 0.0,
    sell: float = 0.0,
    special: bool = False,
    production_rate: float = 0.0,
    name: Optional[str] = None,
) -> Resource:
    return Resource(
        type=resource,
        capacity=float(capacity),
        buy_price=float(buy),
        sell_price=float(sell),
        is_special=special,
        production_rate=float(production_rate),
        display_name=name or "",
    )


_FOOD_PRICES: Mapping[ResourceType, tuple] = {
    ResourceType.GRAIN: (1, 1),
    ResourceType.ROOT_VEGETABLES: (1, 1),
    ResourceType.APPLES: (1, 1),
    ResourceType.BERRIES: (1, 1),
    ResourceType.LEAFY_GREENS: (1, 1),
    ResourceType.LEGUMES: (1, 1),
    ResourceType.RED_MEAT: (2, 2),
    ResourceType.POULTRY: (2, 2),
    ResourceType.FISH: (2, 2),
    ResourceType.DAIRY: (2, 2),
    ResourceType.PLANT_BASED_DAIRY: (3, 2),
    ResourceType.LAB_GROWN_MEAT: (4, 3),
    ResourceType.VITAMIN_B12: (1, 1),
}

_MATERIAL_PRICES: Mapping[ResourceType, tuple] = {
    ResourceType.STONE: (5, 3),
    ResourceType.IRON: (3, 2),
    ResourceType.WOOD: (1.5, 1),
    ResourceType.LUMBER: (4, 3),
    ResourceType.GLASS: (5.5, 4.5),
    ResourceType.STEEL: (6, 5),
    ResourceType.FURNITURE: (13, 10),
}

DEFAULT_TRADE_CAPACITY = 5 * config.CAPACITY_MULTIPLIER


def default_resources() -> Dict[ResourceType, Resource]:
    """Build a fresh set of resource accounts for a new city."""

    definitions: List[Resource] = [
        _definition(ResourceType.FLUNDS, special=True),
        _definition(ResourceType.POPULATION, capacity=float(2**53), special=True),
        _definition(ResourceType.POWER, special=True),
        _definition(ResourceType.HAPPINESS, capacity=1, special=True),
        _definition(ResourceType.RESEARCH, capacity=9999, special=True, production_rate=1),
        _definition(ResourceType.GREENHOUSE_GASES, capacity=float(2**53), special=True),
        _definition(ResourceType.FOOD_HEALTH, capacity=1, special=True),
        _definition(ResourceType.FOOD_SUFFICIENCY, capacity=1, special=True),
        _definition(ResourceType.FOOD_SATISFACTION, capacity=1, special=True),
    ]
    for resource, (buy, sell) in {**_FOOD_PRICES, **_MATERIAL_PRICES}.items():
        definitions.append(
            _definition(resource, capacity=DEFAULT_TRADE_CAPACITY, buy=buy, sell=sell)
        )
    return {definition.type: definition for definition in definitions}


__all__ = [
    "ALL_RESOURCE_TYPES",
    "FOOD_TYPES",
    "PERSISTED_FIELDS",
    "Resource",
    "ResourceType",
    "default_resources",
    "normalise_resource",
    "resource_from_id",
]
