"""Citizen diet: what the population eats each long tick and how it feels about it."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Mapping, Tuple

from . import config
from .resources import FOOD_TYPES, ResourceType

if TYPE_CHECKING:  # pragma: no cover
    from .city import City


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FoodEffect:
    happiness: float
    health: float


FOOD_EFFECTS: Mapping[ResourceType, FoodEffect] = {
    ResourceType.GRAIN: FoodEffect(1, 1),
    ResourceType.ROOT_VEGETABLES: FoodEffect(1, 2),
    ResourceType.APPLES: FoodEffect(2, 1),
    ResourceType.BERRIES: FoodEffect(2, 2),
    ResourceType.LEAFY_GREENS: FoodEffect(0, 3),
    ResourceType.LEGUMES: FoodEffect(1, 2),
    ResourceType.RED_MEAT: FoodEffect(3, -2),
    ResourceType.POULTRY: FoodEffect(2, 1),
    ResourceType.FISH: FoodEffect(2, 2),
    ResourceType.DAIRY: FoodEffect(2, -1),
    ResourceType.PLANT_BASED_DAIRY: FoodEffect(1, 2),
    ResourceType.LAB_GROWN_MEAT: FoodEffect(2, 0),
    ResourceType.VITAMIN_B12: FoodEffect(0, 1),
}

# Left out of the reference diet so skipping them is not penalised.
OPTIONAL_FOODS = {
    ResourceType.LAB_GROWN_MEAT,
    ResourceType.VITAMIN_B12,
    ResourceType.PLANT_BASED_DAIRY,
    ResourceType.RED_MEAT,
}
B12_SOURCES = {
    ResourceType.RED_MEAT,
    ResourceType.POULTRY,
    ResourceType.FISH,
    ResourceType.DAIRY,
    ResourceType.LAB_GROWN_MEAT,
}
HYDROPONIC_FOODS = (
    ResourceType.ROOT_VEGETABLES,
    ResourceType.BERRIES,
    ResourceType.LEAFY_GREENS,
    ResourceType.LEGUMES,
)
HYDROPONICS_TECH = "hydroponics"
HYDROPONIC_SHARE = 0.02

B12_SHARE = 0.04
EFFECTIVE_SHARE = 0.04
B12_PENALTY = -5.0
B12_PILL_WEIGHT = 2.5
B12_PENALTY_POPULATION = 1200
FOOD_TOTAL_EPSILON = 0.00001

# (peak population upper bound, activation, foods in the reference diet or None for all)
ACTIVATION_BANDS: List[Tuple[float, float, int | None]] = [
    (500, 0.1, None),
    (1200, 0.4, 4),
    (1800, 0.7, 6),
]


@dataclass
class DietEntry:
    type: ResourceType
    ratio: float
    effectiveness: float

    def to_dict(self) -> Dict[str, object]:
        return {"type": self.type.value, "ratio": self.ratio, "effectiveness": self.effectiveness}


class CitizenDietSystem:
    def __init__(self, city: "City") -> None:
        self.city = city
        reference = [effect for food, effect in FOOD_EFFECTS.items() if food not in OPTIONAL_FOODS]
        self.perfect_health = sum(max(0.0, effect.health) for effect in reference)
        self.perfect_happiness = sum(max(0.0, effect.happiness) for effect in reference)
        self.last_diet_composition: List[DietEntry] = []

    def get_food_needed(self, ignore_bonus: bool = False) -> float:
        """Food units needed this long tick; one unit feeds 100 people for a day."""

        population = self.city.ledger.amount(ResourceType.POPULATION)
        reduction = 0.0 if ignore_bonus else self.city.get_timed_bonus("diet")
        return population / 100 / config.LONG_TICKS_PER_DAY * max(0.0, 1 - reduction)

    def _available_food(self, food_needed: float) -> Tuple[Dict[ResourceType, float], Dict[ResourceType, float]]:
        ledger = self.city.ledger
        stocked = {food: min(ledger.amount(food), food_needed) for food in FOOD_TYPES}
        available = dict(stocked)

        techs = self.city.tech_manager
        if techs.is_researched(HYDROPONICS_TECH):
            fraction = techs.get_adoption(HYDROPONICS_TECH) * HYDROPONIC_SHARE
            for food in HYDROPONIC_FOODS:
                available[food] += food_needed * fraction

        # Vitamin pills are not food; cap them at 4% of the combined total.
        other_food = sum(amount for food, amount in available.items() if food is not ResourceType.VITAMIN_B12)
        cap = other_food * B12_SHARE / (1 - B12_SHARE)
        available[ResourceType.VITAMIN_B12] = min(available[ResourceType.VITAMIN_B12], cap)
        stocked[ResourceType.VITAMIN_B12] = min(stocked[ResourceType.VITAMIN_B12], cap)
        return available, stocked

    def _reference_diet(self, composition: List[DietEntry], top: int | None) -> Tuple[float, float]:
        if top is None:
            return self.perfect_happiness, self.perfect_health
        ranked = sorted((entry for entry in composition if entry.ratio > 0), key=lambda entry: entry.ratio, reverse=True)
        best = ranked[:top]
        happiness = sum(FOOD_EFFECTS[entry.type].happiness for entry in best)
        health = sum(FOOD_EFFECTS[entry.type].health for entry in best)
        # No eaten food scores above zero: compare against the full diet instead.
        if happiness <= 0 or health <= 0:
            return self.perfect_happiness, self.perfect_health
        return happiness, health

    def on_long_tick(self) -> None:
        city = self.city
        ledger = city.ledger
        peak_population = city.peak_population
        food_needed = self.get_food_needed()
        if food_needed <= 0:
            ledger.set_amount(ResourceType.FOOD_SUFFICIENCY, 1.0)
            self.last_diet_composition = []
            return

        available, stocked = self._available_food(food_needed)
        total_available = sum(available.values()) + FOOD_TOTAL_EPSILON
        food_ratio = min(1.0, total_available / food_needed)

        composition = [
            DietEntry(
                food,
                available[food] / total_available,
                min(1.0, available[food] / food_needed / EFFECTIVE_SHARE),
            )
            for food in FOOD_TYPES
        ]
        happiness_effect = sum(FOOD_EFFECTS[entry.type].happiness * entry.effectiveness for entry in composition)
        health_effect = sum(FOOD_EFFECTS[entry.type].health * entry.effectiveness for entry in composition)

        activation = 1.0
        perfect_happiness, perfect_health = self.perfect_happiness, self.perfect_health
        for upper_bound, band_activation, top in ACTIVATION_BANDS:
            if peak_population < upper_bound:
                activation = band_activation
                perfect_happiness, perfect_health = self._reference_diet(composition, top)
                break

        happiness_effect = activation * happiness_effect + (1 - activation) * perfect_happiness
        health_effect = activation * health_effect + (1 - activation) * perfect_health

        if peak_population >= B12_PENALTY_POPULATION:
            animal_sources = sum(entry.effectiveness for entry in composition if entry.type in B12_SOURCES)
            pills = next(
                entry.effectiveness for entry in composition if entry.type is ResourceType.VITAMIN_B12
            )
            covered = min(1.0, (animal_sources + pills * B12_PILL_WEIGHT) / B12_PILL_WEIGHT)
            health_effect += B12_PENALTY * (1 - covered) * activation

        if config.HEALTHCARE_MATTERS in city.flags:
            ledger.set_amount(ResourceType.FOOD_HEALTH, health_effect / perfect_health)
        bonus = city.get_timed_bonus("diet")
        ledger.set_amount(ResourceType.FOOD_SATISFACTION, happiness_effect / perfect_happiness * (1 + bonus))
        ledger.set_amount(ResourceType.FOOD_SUFFICIENCY, food_ratio)

        # Home-grown produce is eaten without touching storage.
        to_consume = {
            entry.type: min(stocked[entry.type], entry.ratio * food_needed * food_ratio)
            for entry in composition
            if entry.ratio > 0
        }
        if to_consume and not ledger.check_and_spend_resources(to_consume, allow_debt=True):
            logger.warning("Diet consumption could not be paid for: %s", to_consume)

        self.last_diet_composition = sorted(composition, key=lambda entry: entry.ratio, reverse=True)
        logger.debug("Diet tick: needed=%.3f ratio=%.3f", food_needed, food_ratio)

    def composition_snapshot(self) -> List[Dict[str, object]]:
        return [entry.to_dict() for entry in self.last_diet_composition]

    def load_composition(self, entries) -> None:
        loaded: List[DietEntry] = []
        for entry in entries or []:
            try:
                loaded.append(
                    DietEntry(
                        ResourceType(str(entry["type"])),
                        float(entry.get("ratio", 0.0)),
                        float(entry.get("effectiveness", 0.0)),
                    )
                )
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping malformed diet entry: %s", entry)
        self.last_diet_composition = loaded
