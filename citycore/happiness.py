"""City-wide happiness scoring.

The score starts from a neutral 0.5 and adds safety, environment, economy,
quality-of-life and residential terms computed from averages over every
relevant tile. Each term is recorded in ``city.happiness_breakdown`` (and its
display cap, where it has one, in ``city.happiness_maxima``) so the UI can
explain the result.
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from . import config
from .effects import EffectType
from .resources import ResourceType

if TYPE_CHECKING:  # pragma: no cover
    from .buildings import Building
    from .city import City


logger = logging.getLogger(__name__)

# Service effects that are penalised where a tile has no coverage at all.
GAP_PENALISED_TYPES = (
    EffectType.POLICE_PROTECTION,
    EffectType.FIRE_PROTECTION,
    EffectType.HEALTHCARE,
    EffectType.LUXURY,
)


class HappinessCalculator:
    def __init__(self, city: "City") -> None:
        self.city = city
        self.effect_sums: Dict[EffectType, float] = {}
        self.uncovered_tiles: Dict[EffectType, int] = {}
        self.relevant_tile_count = 0

    # ------------------------------------------------------------------
    def calculate_happiness(self) -> float:
        city = self.city
        city.happiness_breakdown.clear()
        city.happiness_maxima.clear()
        self.calculate_effect_sums()

        happiness = config.HAPPINESS_BASELINE
        happiness += self.calculate_safety_happiness()
        happiness += self.calculate_environment_happiness()
        happiness += self.calculate_economy_happiness()
        happiness += self.calculate_quality_of_life_happiness()
        happiness += self.calculate_residential_penalties()

        events = city.get_timed_bonus("happiness")
        self._set_display_stats("Events", events)
        happiness += events

        accounted = sum(value for label, value in city.happiness_breakdown.items() if label != "Other")
        self._set_display_stats("Other", happiness - accounted)
        return max(0.0, min(1.0, happiness))

    def calculate_effect_sums(self) -> None:
        self.effect_sums = {}
        self.uncovered_tiles = {}
        self.relevant_tile_count = 0
        city = self.city
        coverage: Dict[Tuple[int, EffectType], bool] = {}

        for x, y in city.effect_grid.iter_tiles():
            building = city.grid[y][x]
            if building is None or not self.is_relevant_building(building, x, y):
                continue
            self.relevant_tile_count += 1
            for effect in city.effect_grid.effects_at(x, y):
                self.effect_sums[effect.type] = self.effect_sums.get(effect.type, 0.0) + effect.get_effect(
                    city, None, x, y
                )
            for effect_type in GAP_PENALISED_TYPES:
                key = (building.id, effect_type)
                if key not in coverage:
                    coverage[key] = city.get_highest_effect(effect_type, building) > config.EPSILON
                if not coverage[key]:
                    self.uncovered_tiles[effect_type] = self.uncovered_tiles.get(effect_type, 0) + 1

        if not self.relevant_tile_count:
            self.relevant_tile_count = 1

    def is_relevant_building(self, building: "Building", x: int, y: int) -> bool:
        return (
            self.city.is_owned(x, y)
            and not building.is_road
            and (not building.needs_road or building.road_connected)
        )

    def get_average_effect(self, effect_type: EffectType) -> float:
        return self.effect_sums.get(effect_type, 0.0) / self.relevant_tile_count

    def _gap_penalty(self, effect_type: EffectType) -> float:
        return self.uncovered_tiles.get(effect_type, 0) / self.relevant_tile_count * config.SERVICE_GAP_PENALTY

    def _set_display_stats(self, label: str, current: float, maximum: Optional[float] = None) -> None:
        self.city.happiness_breakdown[label] = current
        if maximum is not None:
            self.city.happiness_maxima[label] = maximum
        else:
            self.city.happiness_maxima.pop(label, None)

    # ------------------------------------------------------------------
    def calculate_safety_happiness(self) -> float:
        city = self.city
        safety = 0.0

        if config.POLICE_PROTECTION_MATTERS in city.flags:
            police = self.get_average_effect(EffectType.POLICE_PROTECTION)
            petty = self.get_average_effect(EffectType.PETTY_CRIME)
            organized = self.get_average_effect(EffectType.ORGANIZED_CRIME)
            difference = math.sqrt(max(0.0, police)) - petty - 2 * organized
            multiplier = (
                config.POLICE_MULTIPLIER_POSITIVE if difference > 0 else config.POLICE_MULTIPLIER_NEGATIVE
            )
            safety += min(config.POLICE_TERM_CAP, difference) * multiplier
            if city.peak_population > config.POLICE_GAP_POPULATION:
                safety += self._gap_penalty(EffectType.POLICE_PROTECTION)
            self._set_display_stats("Police and crime", safety, config.POLICE_DISPLAY_MAX)
        else:
            safety += config.POLICE_FREE_BASELINE

        if config.FIRE_PROTECTION_MATTERS in city.flags:
            fire = (
                min(1.0, math.sqrt(max(0.0, self.get_average_effect(EffectType.FIRE_PROTECTION))))
                * config.FIRE_MULTIPLIER
            )
            if city.peak_population > config.FIRE_GAP_POPULATION:
                fire += self._gap_penalty(EffectType.FIRE_PROTECTION)
            self._set_display_stats("Fire protection", fire, config.FIRE_MULTIPLIER)
            safety += fire
        else:
            safety += config.FIRE_FREE_BASELINE

        return safety

    def calculate_environment_happiness(self) -> float:
        city = self.city
        particulate = (
            max(0.0, self.get_average_effect(EffectType.PARTICULATE_POLLUTION))
            * config.PARTICULATE_POLLUTION_WEIGHT
            * city.particulate_pollution_multiplier
        )
        self._set_display_stats("Particulate pollution", particulate)
        noise = self.get_average_effect(EffectType.NOISE) * config.NOISE_WEIGHT
        self._set_display_stats("Noise", noise)

        environment = particulate + noise
        if config.GREENHOUSE_GASES_MATTER in city.flags:
            greenhouse = (
                max(0.0, self.get_average_effect(EffectType.GREENHOUSE_GASES)) * config.GREENHOUSE_GASES_WEIGHT
            )
            self._set_display_stats("Greenhouse gases", greenhouse)
            environment += greenhouse
        return environment

    def calculate_economy_happiness(self) -> float:
        taxes = self.city.tax_rates
        business = (
            math.sqrt(max(0.0, self.get_average_effect(EffectType.BUSINESS_PRESENCE)))
            * config.BUSINESS_PRESENCE_WEIGHT
        )
        self._set_display_stats("Business presence", business)
        land_value = self.get_average_effect(EffectType.LAND_VALUE) * config.LAND_VALUE_WEIGHT
        self._set_display_stats("Land value", land_value)
        income = (taxes["income"] - config.TAX_BASELINE) * config.INCOME_TAX_SLOPE
        self._set_display_stats("Income tax", income, 0.0)
        sales = (taxes["sales"] - config.TAX_BASELINE) * config.SALES_TAX_SLOPE
        self._set_display_stats("Sales tax", sales, 0.0)
        property_tax = (taxes["property"] - config.TAX_BASELINE) * config.PROPERTY_TAX_SLOPE
        self._set_display_stats("Property tax", property_tax, 0.0)
        return business + land_value + income + sales + property_tax

    def calculate_quality_of_life_happiness(self) -> float:
        city = self.city
        quality = 0.0

        luxury = math.sqrt(max(0.0, self.get_average_effect(EffectType.LUXURY))) * config.LUXURY_WEIGHT
        if city.peak_population > config.LUXURY_GAP_POPULATION:
            luxury += self._gap_penalty(EffectType.LUXURY)
        self._set_display_stats("Luxury", luxury)
        quality += luxury

        if config.HEALTHCARE_MATTERS in city.flags:
            healthcare = (
                math.sqrt(max(0.0, self.get_average_effect(EffectType.HEALTHCARE))) * config.HEALTHCARE_WEIGHT
            )
            if city.peak_population > config.HEALTHCARE_GAP_POPULATION:
                healthcare += self._gap_penalty(EffectType.HEALTHCARE)
            self._set_display_stats("Healthcare", healthcare)
            quality += healthcare
        else:
            quality += config.HEALTHCARE_FREE_BASELINE

        if config.EDUCATION_MATTERS in city.flags:
            average_education = max(0.0, city.get_city_average_education())
            education = math.sqrt(average_education) * config.EDUCATION_WEIGHT
            self._set_display_stats("Education", education)
            quality += education
            if (
                config.UNLOCKED_GAME_DEV not in city.flags
                and average_education >= config.HIGH_TECH_UNLOCK_EDUCATION
            ):
                city.flags.add(config.UNLOCKED_GAME_DEV)
                city.notify(
                    "Neeerd! A well-educated population can now run higher-tech facilities."
                )
                city.emit("flag_unlocked", flag=config.UNLOCKED_GAME_DEV)
        else:
            quality += config.EDUCATION_FREE_BASELINE

        food = city.ledger.amount(ResourceType.FOOD_SATISFACTION) * config.FOOD_SATISFACTION_WEIGHT
        self._set_display_stats("Food gratification", food, config.FOOD_SATISFACTION_WEIGHT)
        quality += food
        return quality

    def calculate_residential_penalties(self) -> float:
        power_needed = 0
        power_received = 0.0
        damage_total = 0.0
        residences = 0
        for building in self.city.buildings:
            if not building.is_residence:
                continue
            residences += 1
            damage_total += building.damaged_efficiency
            if not building.is_new and building.needs_power:
                power_needed += 1
                power_received += building.powered_time_during_long_tick

        blackout = (
            config.RESIDENTIAL_PENALTY_WEIGHT * (power_received / power_needed - 1) if power_needed else 0.0
        )
        self._set_display_stats("Power outages", blackout, 0.0)
        damage = config.RESIDENTIAL_PENALTY_WEIGHT * (damage_total / residences - 1) if residences else 0.0
        self._set_display_stats("Residential damage", damage, 0.0)
        return blackout + damage
