"""Residential spawning, upgrading and despawning.

Once per long tick the spawner works out a city-wide spawn chance from
happiness, local construction-material sales and furniture stores, then:

* looks at every empty tile next to a road reachable from the network root,
  keeps the most desirable few and rolls for a new residence on each;
* gives one random house, one apartment and one highrise a chance to move up
  a tier where business presence is high enough;
* removes a bounded number of residences whose location has become
  undesirable (or every residence that lost its road).

All randomness goes through ``city.rng``.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from . import config
from .building_catalog import (
    FURNITURE_STORE,
    HIGHRISE,
    QUADPLEX,
    SKYSCRAPER,
    SMALL_APARTMENT,
    SMALL_HOUSE,
    build_from_catalog,
    residence_templates,
)
from .effects import Effect, EffectType
from .resources import ResourceType

if TYPE_CHECKING:  # pragma: no cover
    from .buildings import Building, BuildingTemplate
    from .city import City


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierRequirement:
    min_peak_population: float
    min_business_presence: float
    min_desirability: float


TIER_REQUIREMENTS: Dict[str, TierRequirement] = {
    HIGHRISE: TierRequirement(
        config.HIGHRISE_MIN_PEAK_POPULATION,
        config.HIGHRISE_MIN_BUSINESS_PRESENCE,
        config.HIGHRISE_MIN_DESIRABILITY,
    ),
    SKYSCRAPER: TierRequirement(
        config.SKYSCRAPER_MIN_PEAK_POPULATION,
        config.SKYSCRAPER_MIN_BUSINESS_PRESENCE,
        config.SKYSCRAPER_MIN_DESIRABILITY,
    ),
}

DENSE_RESIDENCES = (QUADPLEX, SMALL_APARTMENT, HIGHRISE, SKYSCRAPER)

# Effects a building under consideration may add to its own tile.
OWN_EFFECT_TYPES = (
    EffectType.EDUCATION,
    EffectType.POLICE_PROTECTION,
    EffectType.HEALTHCARE,
    EffectType.NOISE,
)

Placement = Tuple["BuildingTemplate", int, int]


class ResidenceSpawningSystem:
    def __init__(self, city: "City") -> None:
        self.city = city
        self.residence_types: List["BuildingTemplate"] = residence_templates()
        self.global_spawn_chance = 0.0

    # ------------------------------------------------------------------
    def on_long_tick(self) -> None:
        self.update_global_factors()
        spawned = self.spawn_residences()
        upgraded = self.upgrade_residences()
        removed = self.despawn_residences()
        if spawned or upgraded or removed:
            logger.info(
                "Residences: %d spawned, %d upgraded, %d removed (spawn chance %.3f)",
                spawned,
                upgraded,
                removed,
                self.global_spawn_chance,
            )
        self._check_sprawl()

    def _check_sprawl(self) -> None:
        city = self.city
        if (
            self.global_spawn_chance > config.MIN_GLOBAL_CHANCE_FOR_UPGRADE
            or config.REMINDED_ABOUT_SPRAWL in city.flags
        ):
            return
        houses = city.count_buildings(SMALL_HOUSE)
        dense = sum(city.count_buildings(type_key) for type_key in DENSE_RESIDENCES)
        if houses >= config.SPRAWL_MIN_HOUSES and dense <= config.SPRAWL_MAX_DENSE_RESIDENCES:
            city.notify(
                "Horizontal Heresy: your city is spreading out one house at a time. "
                "Pack businesses close to homes and apartments will start to appear; "
                "bigger residences cost less and earn more than many small ones."
            )
            city.flags.add(config.REMINDED_ABOUT_SPRAWL)

    def update_global_factors(self) -> float:
        city = self.city
        happiness = city.ledger.amount(ResourceType.HAPPINESS)
        recent_sales = city.ledger.recent_construction_resources_sold
        furniture_stores = sum(
            building.last_efficiency
            for building in city.buildings
            if building.type_key == FURNITURE_STORE
        )
        furniture_effect = 2 - 2 ** (1 - furniture_stores)

        chance = (
            (happiness - config.SPAWN_HAPPINESS_OFFSET) * config.SPAWN_HAPPINESS_SCALE
            + min(config.SPAWN_SALES_CAP, recent_sales * config.SPAWN_SALES_SCALE)
            + config.SPAWN_FURNITURE_WEIGHT * furniture_effect
        )
        if city.ledger.amount(ResourceType.POPULATION) < city.peak_population * config.POPULATION_DROP_RATIO:
            chance *= 0.5 if chance < 0 else 1.5
        self.global_spawn_chance = chance
        return chance

    # ------------------------------------------------------------------
    def max_spawn_count(self) -> int:
        peak = max(1.0, self.city.peak_population)
        population_factor = max(1.0, min(2.0, math.log10(peak) / 3))
        return math.ceil(self.global_spawn_chance * 5 * population_factor)

    def find_spawn_candidates(self) -> List[Tuple[int, int, float]]:
        """Return up to :meth:`max_spawn_count` of the most desirable empty road-side tiles."""

        city = self.city
        limit = self.max_spawn_count()
        if limit <= 0:
            return []

        best: List[Tuple[float, int, int, int]] = []
        order = itertools.count()
        checked = set()
        for road_x, road_y in city.reachable_road_tiles():
            for x, y in ((road_x - 1, road_y), (road_x + 1, road_y), (road_x, road_y - 1), (road_x, road_y + 1)):
                if (x, y) in checked or not city.in_bounds(x, y) or city.grid[y][x] is not None:
                    continue
                checked.add((x, y))
                desirability = self.calculate_desirability(x, y)
                entry = (desirability, next(order), x, y)
                if len(best) < limit:
                    heapq.heappush(best, entry)
                elif desirability > best[0][0]:
                    heapq.heapreplace(best, entry)
        return [(x, y, desirability) for desirability, _, x, y in sorted(best, reverse=True)]

    def spawn_residences(self) -> int:
        spawned = 0
        for x, y, desirability in self.find_spawn_candidates():
            if self.city.rng.random() < desirability * self.global_spawn_chance:
                if self.spawn_residence(x, y):
                    spawned += 1
        return spawned

    def spawn_residence(self, x: int, y: int) -> Optional["Building"]:
        placement = self.select_residence_type(x, y)
        if placement is None:
            return None
        template, place_x, place_y = placement
        building = self.city.add_building(build_from_catalog(template.type_key), place_x, place_y)
        ledger = self.city.ledger
        ledger.recent_construction_resources_sold = max(
            0.0, ledger.recent_construction_resources_sold - 2 * template.width * template.height
        )
        return building

    # ------------------------------------------------------------------
    def upgrade_residences(self) -> int:
        """Give one house, one apartment and one highrise a chance to move up a tier."""

        city = self.city
        if self.global_spawn_chance < config.MIN_GLOBAL_CHANCE_FOR_UPGRADE:
            return 0
        if city.rng.random() >= self.global_spawn_chance:
            return 0

        upgraded = 0
        tiers = (
            (lambda b: b.residence_level == 0, config.MIN_DENSITY_FOR_UPGRADE),
            (lambda b: b.type_key in (QUADPLEX, SMALL_APARTMENT), config.HIGHRISE_MIN_BUSINESS_PRESENCE),
            (lambda b: b.type_key == HIGHRISE, config.SKYSCRAPER_MIN_BUSINESS_PRESENCE),
        )
        for matches, min_density in tiers:
            eligible = [
                building
                for building in city.buildings
                if building.is_residence
                and building.last_efficiency
                and matches(building)
                and city.get_business_density(building.x, building.y) >= min_density
            ]
            if not eligible:
                continue
            building = city.rng.choice(eligible)
            placement = self.select_residence_type(building.x, building.y, True, building)
            if placement is not None:
                template, x, y = placement
                city.add_building(build_from_catalog(template.type_key), x, y)
                upgraded += 1
        return upgraded

    def will_upgrade(self, building: "Building") -> bool:
        if self.global_spawn_chance <= config.MIN_GLOBAL_CHANCE_FOR_UPGRADE:
            return False
        allowed = self.get_allowed_types_and_positions(
            building.x, building.y, building.residence_level + 1, building
        )
        if not allowed:
            return False
        return self._best_business_density(allowed) >= config.MIN_DENSITY_FOR_UPGRADE

    # ------------------------------------------------------------------
    def despawn_desirability(self, building: "Building") -> float:
        """Desirability of the worst footprint corner plus a damage penalty."""

        corners = {
            (building.x, building.y),
            (building.x + building.width - 1, building.y),
            (building.x, building.y + building.height - 1),
            (building.x + building.width - 1, building.y + building.height - 1),
        }
        worst = min(self.calculate_desirability(x, y) for x, y in corners)
        return worst + config.DESPAWN_DAMAGE_WEIGHT * (building.damaged_efficiency - 1)

    def despawn_chance(self, desirability: float) -> float:
        if desirability >= 0 and self.global_spawn_chance >= 0:
            return 0.0
        if self.global_spawn_chance >= 0:
            return -desirability
        return 1 - desirability + abs(self.global_spawn_chance)

    def despawn_residences(self) -> int:
        city = self.city
        peak = max(1.0, city.peak_population)
        limit = math.ceil(math.log10(peak)) * 2 - 1
        removed = 0

        worst: List[Tuple[float, int, "Building"]] = []
        order = itertools.count()
        for building in [b for b in city.buildings if b.is_residence]:
            if not building.last_efficiency and not building.is_new and not building.road_connected:
                city.remove_building(building)
                removed += 1
                continue
            desirability = self.despawn_desirability(building)
            chance = self.despawn_chance(desirability)
            if chance <= 0 or city.rng.random() >= chance:
                continue
            entry = (-desirability, next(order), building)
            if len(worst) < limit:
                heapq.heappush(worst, entry)
            elif limit > 0 and entry[0] > worst[0][0]:
                heapq.heapreplace(worst, entry)

        for _, _, building in worst:
            city.remove_building(building)
            removed += 1
        return removed

    # ------------------------------------------------------------------
    def calculate_desirability(self, x: int, y: int, building: Optional["Building"] = None) -> float:
        """Score how attractive tile ``(x, y)`` is for a residence.

        When ``building`` is given and not already standing on the tile, its
        own education, policing, healthcare and noise effects are counted as if
        it were placed there.
        """

        city = self.city
        own: Dict[EffectType, float] = {}
        if building is not None and city.grid[y][x] is not building and building.template.effects:
            for definition in building.template.effects.effects:
                if definition.type in OWN_EFFECT_TYPES:
                    effect = Effect(definition.type, definition.magnitude, building, definition.dynamic_calculation)
                    own[definition.type] = own.get(definition.type, 0.0) + effect.get_effect(city, building, x, y)

        education = city.get_education(x, y) + own.get(EffectType.EDUCATION, 0.0)
        police = city.get_police_protection(x, y) + own.get(EffectType.POLICE_PROTECTION, 0.0)
        healthcare = city.get_healthcare(x, y) + own.get(EffectType.HEALTHCARE, 0.0)
        noise = city.get_noise(x, y) + own.get(EffectType.NOISE, 0.0)

        score = config.DESIRABILITY_BASELINE
        score += city.get_land_value(x, y) + math.sqrt(max(0.0, education)) * config.DESIRABILITY_EDUCATION_WEIGHT
        score += min(
            config.DESIRABILITY_SAFETY_CAP,
            math.sqrt(max(0.0, police)) - city.get_petty_crime(x, y) - 2 * city.get_organized_crime(x, y),
        )
        score += config.DESIRABILITY_HEALTH_WEIGHT * (
            min(1.0, math.sqrt(max(0.0, healthcare))) - city.get_particulate_pollution(x, y)
        )
        # Vacuum windows cut up to a third of the noise penalty.
        score -= config.DESIRABILITY_NOISE_WEIGHT * noise * (3 - city.tech_manager.get_adoption("vacuumwindows"))
        return score

    # ------------------------------------------------------------------
    def meets_tier_requirements(self, template: "BuildingTemplate", x: int, y: int) -> bool:
        requirement = TIER_REQUIREMENTS.get(template.type_key)
        if requirement is None:
            return True
        city = self.city
        if city.peak_population <= requirement.min_peak_population:
            return False
        tiles = [(x + dx, y + dy) for dy in range(template.height) for dx in range(template.width)]
        return any(
            city.get_business_density(tx, ty) >= requirement.min_business_presence for tx, ty in tiles
        ) and any(
            self.calculate_desirability(tx, ty) >= requirement.min_desirability for tx, ty in tiles
        )

    def _candidate_positions(
        self, x: int, y: int, min_level: int, upgrading: Optional["Building"]
    ) -> List[Placement]:
        positions: List[Placement] = []
        for template in self.residence_types:
            if template.residence_level < min_level:
                continue
            same_size = upgrading is not None and (template.width, template.height) == (
                upgrading.width,
                upgrading.height,
            )
            if (template.width == 1 and template.height == 1) or same_size:
                positions.append((template, x, y))
                continue
            for place_x, place_y in (
                (x, y),
                (x - template.width + 1, y),
                (x, y - template.height + 1),
                (x - template.width + 1, y - template.height + 1),
            ):
                positions.append((template, place_x, place_y))
        return positions

    def get_allowed_types_and_positions(
        self,
        x: int,
        y: int,
        min_level: int = 0,
        upgrading: Optional["Building"] = None,
    ) -> List[Placement]:
        return [
            (template, place_x, place_y)
            for template, place_x, place_y in self._candidate_positions(x, y, min_level, upgrading)
            if self.city.can_place(template, place_x, place_y, by_spawner=True)
            and self.meets_tier_requirements(template, place_x, place_y)
        ]

    def _best_business_density(self, allowed: List[Placement]) -> float:
        city = self.city
        return max(
            max(
                0.0,
                city.effect_grid.get_highest_effect(
                    city, EffectType.BUSINESS_PRESENCE, x, y, template.width, template.height
                ),
            )
            for template, x, y in allowed
        )

    @staticmethod
    def _drop_quadplex_if_apartment_fits(allowed: List[Placement]) -> None:
        if any(template.type_key == SMALL_APARTMENT for template, _, _ in allowed):
            for index, (template, _, _) in enumerate(allowed):
                if template.type_key == QUADPLEX:
                    del allowed[index]
                    break

    def select_residence_type(
        self,
        x: int,
        y: int,
        force_apartment: bool = False,
        upgrading: Optional["Building"] = None,
    ) -> Optional[Placement]:
        allowed = self.get_allowed_types_and_positions(x, y, 1 if force_apartment else 0, upgrading)
        if not allowed:
            return None

        is_apartment = force_apartment
        if not force_apartment:
            density = self._best_business_density(allowed)
            is_apartment = (
                density >= config.MIN_DENSITY_FOR_APARTMENTS and self.city.rng.random() < density * 0.5
            )
        if is_apartment:
            self._drop_quadplex_if_apartment_fits(allowed)

        for placement in allowed:
            if bool(placement[0].residence_level) == is_apartment:
                return placement
        return allowed[0]

    # ------------------------------------------------------------------
    def get_residence_upgrade_details(self, building: "Building") -> Optional[Dict[str, object]]:
        """Explain what stands between ``building`` and its next tier."""

        city = self.city
        if not building.is_residence or not building.is_placed or building.type_key == SKYSCRAPER:
            return None

        overall = (
            min(1.0, self.global_spawn_chance)
            if self.global_spawn_chance >= config.MIN_GLOBAL_CHANCE_FOR_UPGRADE
            else 0.0
        )
        desirability = max(city.get_residential_desirability(x, y) for x, y in building.footprint())
        business = max(city.get_business_density(x, y) for x, y in building.footprint())

        next_level = building.residence_level + 1
        choices = [
            placement
            for placement in self._candidate_positions(building.x, building.y, next_level, building)
            if city.can_place(placement[0], placement[1], placement[2], by_spawner=True)
        ]
        self._drop_quadplex_if_apartment_fits(choices)
        has_space = bool(choices)
        if has_space:
            target, target_x, target_y = choices[0]
        else:
            target = next(t for t in self.residence_types if t.residence_level == next_level)
            target_x = target_y = -1

        requirement = TIER_REQUIREMENTS.get(target.type_key)
        despawn = max(0.0, min(1.0, self.despawn_chance(self.despawn_desirability(building))))
        return {
            "global_spawn_chance": self.global_spawn_chance,
            "min_global_spawn_chance": config.MIN_GLOBAL_CHANCE_FOR_UPGRADE,
            "overall_upgrade_probability": overall,
            "business_presence": business,
            "min_business_presence": (
                requirement.min_business_presence if requirement else config.MIN_DENSITY_FOR_UPGRADE
            ),
            "min_peak_population": requirement.min_peak_population if requirement else 0,
            "desirability": desirability,
            "min_desirability": requirement.min_desirability if requirement else 0,
            "has_space": has_space,
            "next_tier_name": target.name,
            "next_tier_type": target.type_key,
            "despawn_chance": despawn,
            "x": target_x,
            "y": target_y,
        }
