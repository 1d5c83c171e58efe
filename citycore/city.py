"""The city aggregate: tile grid, buildings, economy and the long tick pipeline.

Every subsystem receives the city explicitly; there is no module-level
"current city". Randomness comes from the injected ``rng`` so a seeded or
scripted generator makes a tick fully reproducible.
"""
from __future__ import annotations

import logging
import math
import random
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from . import config
from .building_catalog import ROAD, build_from_catalog
from .buildings import POWER_STEP, Building, BuildingTemplate
from .diet import CitizenDietSystem
from .effect_grid import EffectGrid, GridBoundsError
from .effects import EffectType
from .happiness import HappinessCalculator
from .residences import ResidenceSpawningSystem
from .resource_ledger import ResourceLedger
from .resources import Resource, ResourceType, default_resources
from .techs import Tech, TechManager
from .trade import MarketTrader

logger = logging.getLogger(__name__)

Tile = Tuple[int, int]
Listener = Callable[..., None]

TIMED_BONUS_KINDS = ("happiness", "diet", "research")


@dataclass
class TimedBonus:
    """A temporary modifier (e.g. from an event) that lasts a number of long ticks."""

    kind: str
    amount: float
    remaining_ticks: int

    def to_dict(self) -> Dict[str, object]:
        return {"kind": self.kind, "amount": self.amount, "remaining_ticks": self.remaining_ticks}


class City:
    def __init__(
        self,
        width: int,
        height: int,
        *,
        rng: Optional[random.Random] = None,
        resources: Optional[Mapping[ResourceType, Resource]] = None,
        techs: Optional[Iterable[Tech]] = None,
        name: str = "New City",
    ) -> None:
        self.name = name
        self.width = int(width)
        self.height = int(height)
        self.effect_grid = EffectGrid(self.width, self.height)
        self.grid: List[List[Optional[Building]]] = [[None] * self.width for _ in range(self.height)]
        self.buildings: List[Building] = []
        self.network_root: Optional[Building] = None

        self.rng = rng if rng is not None else random.Random()
        self.ledger = ResourceLedger(resources if resources is not None else default_resources())
        self.trader = MarketTrader(self.ledger)
        self.tech_manager = TechManager(techs)

        self.flags: Set[str] = set()
        self.tax_rates: Dict[str, float] = dict(config.DEFAULT_TAX_RATES)
        self.peak_population = 0.0
        self.particulate_pollution_multiplier = 1.0
        self.power_import_limit = config.DEFAULT_POWER_IMPORT_LIMIT
        self.last_imported_power_cost = 0.0
        self.time_freeze = False
        self.last_long_tick = 0
        self.last_short_tick = 0
        self.last_saved_action_timestamp = 0
        self.timed_bonuses: List[TimedBonus] = []

        self.happiness_breakdown: Dict[str, float] = {}
        self.happiness_maxima: Dict[str, float] = {}
        self.notifications: Deque[str] = deque(maxlen=config.NOTIFICATION_QUEUE_LIMIT)
        self._listeners: Dict[str, List[Listener]] = {}

        self.diet = CitizenDietSystem(self)
        self.residence_spawner = ResidenceSpawningSystem(self)

    # ------------------------------------------------------------------
    def start_new(self, root_x: int = 0, root_y: int = 0) -> "City":
        """Lay the network root road that every other road must connect to."""

        self.network_root = self.add_building(build_from_catalog(ROAD), root_x, root_y)
        self.network_root.owned = False
        return self

    @property
    def global_spawn_chance(self) -> float:
        return self.residence_spawner.global_spawn_chance

    # ------------------------------------------------------------------
    # Notifications and observers
    def notify(self, message: str) -> None:
        logger.info("Notification: %s", message)
        self.notifications.append(message)

    def consume_notification(self) -> Optional[str]:
        if not self.notifications:
            return None
        return self.notifications.popleft()

    def add_listener(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def emit(self, event: str, **payload: object) -> None:
        for listener in self._listeners.get(event, []):
            listener(self, **payload)

    # ------------------------------------------------------------------
    # Timed bonuses
    def add_timed_bonus(self, kind: str, amount: float, duration_ticks: int) -> TimedBonus:
        if kind not in TIMED_BONUS_KINDS:
            raise ValueError(f"Unknown timed bonus kind: {kind}")
        if duration_ticks <= 0:
            raise ValueError("Timed bonus duration must be positive")
        bonus = TimedBonus(kind, float(amount), int(duration_ticks))
        self.timed_bonuses.append(bonus)
        return bonus

    def get_timed_bonus(self, kind: str) -> float:
        return sum(bonus.amount for bonus in self.timed_bonuses if bonus.kind == kind)

    def expire_timed_bonuses(self) -> None:
        for bonus in self.timed_bonuses:
            bonus.remaining_ticks -= 1
        self.timed_bonuses = [bonus for bonus in self.timed_bonuses if bonus.remaining_ticks > 0]

    # ------------------------------------------------------------------
    # Grid and placement
    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def is_owned(self, x: int, y: int) -> bool:
        """Empty tiles and tiles under an owned building are the player's.

        Buildings flagged ``owned = False``, such as the network root road,
        belong to the region.
        """

        if not self.in_bounds(x, y):
            return False
        building = self.grid[y][x]
        return building is None or building.owned

    def count_buildings(self, type_key: str) -> int:
        return sum(1 for building in self.buildings if building.type_key == type_key)

    def get_building(self, building_id: int) -> Optional[Building]:
        for building in self.buildings:
            if building.id == building_id:
                return building
        return None

    def can_place(self, template: BuildingTemplate, x: int, y: int, by_spawner: bool = False) -> bool:
        """Whether ``template`` fits at ``(x, y)``.

        Residences may be built over; the spawner will not replace a residence
        of the same or a higher tier.
        """

        if x < 0 or y < 0 or x + template.width > self.width or y + template.height > self.height:
            return False
        for tile_y in range(y, y + template.height):
            for tile_x in range(x, x + template.width):
                existing = self.grid[tile_y][tile_x]
                if existing is None:
                    continue
                if not existing.is_residence:
                    return False
                if by_spawner and existing.residence_level >= template.residence_level:
                    return False
        return True

    def add_building(self, building: Building, x: Optional[int] = None, y: Optional[int] = None) -> Building:
        """Place ``building``, replacing any residences under its footprint."""

        x = building.x if x is None else x
        y = building.y if y is None else y
        if not self.in_bounds(x, y) or not self.in_bounds(x + building.width - 1, y + building.height - 1):
            raise GridBoundsError(x, y, self.width, self.height)

        for tile_y in range(y, y + building.height):
            for tile_x in range(x, x + building.width):
                existing = self.grid[tile_y][tile_x]
                if existing is None:
                    continue
                if not existing.is_residence:
                    raise ValueError(f"Tile ({tile_x}, {tile_y}) is occupied by {existing.type_key}")
                self.remove_building(existing)

        building.x, building.y = x, y
        self.buildings.append(building)
        for tile_x, tile_y in building.footprint():
            self.grid[tile_y][tile_x] = building
        if building.template.effects is not None:
            building.template.effects.apply_effects(building, self)
        self.update_road_connectivity()
        logger.debug("Placed %s at (%s, %s)", building.type_key, x, y)
        return building

    def remove_building(self, building: Building) -> None:
        if building not in self.buildings:
            logger.error("remove_building called for absent building %s", building.id)
            return
        if building is self.network_root:
            raise ValueError("The network root cannot be removed")

        if building.template.effects is not None:
            building.template.effects.stop_effects(building, self)
        self.buildings.remove(building)
        for tile_x, tile_y in building.footprint():
            if self.grid[tile_y][tile_x] is building:
                self.grid[tile_y][tile_x] = None
        self.update_road_connectivity()
        logger.debug("Removed %s from (%s, %s)", building.type_key, building.x, building.y)

    def reapply_radius_upgrades(self, tech_id: str) -> None:
        """Re-spread the effects of buildings whose radius depends on ``tech_id``."""

        for building in self.buildings:
            effects = building.template.effects
            if effects is None or not any(upgrade.tech == tech_id for upgrade in effects.radius_upgrades):
                continue
            effects.stop_effects(building, self)
            effects.apply_effects(building, self)

    # ------------------------------------------------------------------
    # Road network
    def dfs(self, predicate: Callable[[Building], bool], x: int, y: int, visited: Set[Tile]) -> Set[Tile]:
        """Flood-fill from ``(x, y)`` through 4-adjacent tiles whose building matches ``predicate``."""

        stack = [(x, y)]
        while stack:
            tile_x, tile_y = stack.pop()
            if (tile_x, tile_y) in visited or not self.in_bounds(tile_x, tile_y):
                continue
            building = self.grid[tile_y][tile_x]
            if building is None or not predicate(building):
                continue
            visited.add((tile_x, tile_y))
            stack.extend(
                ((tile_x - 1, tile_y), (tile_x + 1, tile_y), (tile_x, tile_y - 1), (tile_x, tile_y + 1))
            )
        return visited

    def reachable_road_tiles(self) -> Set[Tile]:
        if self.network_root is None:
            return set()
        return self.dfs(lambda building: building.is_road, self.network_root.x, self.network_root.y, set())

    def is_road_adjacent(self, x: int, y: int) -> bool:
        for tile_x, tile_y in ((x - 1, y), (x + 1, y), (x, y - 1), (x, y + 1)):
            if self.in_bounds(tile_x, tile_y):
                neighbour = self.grid[tile_y][tile_x]
                if neighbour is not None and neighbour.is_road:
                    return True
        return False

    def update_road_connectivity(self) -> None:
        reached = self.reachable_road_tiles()
        for building in self.buildings:
            if building.is_road:
                building.road_connected = (building.x, building.y) in reached
                continue
            building.road_connected = any(
                neighbour in reached
                for tile_x, tile_y in building.footprint()
                for neighbour in ((tile_x - 1, tile_y), (tile_x + 1, tile_y), (tile_x, tile_y - 1), (tile_x, tile_y + 1))
            )

    # ------------------------------------------------------------------
    # Per-tile effect values
    def get_effect_value(self, effect_type: EffectType, x: int, y: int) -> float:
        return max(0.0, self.effect_grid.get_effect_sum(self, effect_type, x, y))

    def get_business_density(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.BUSINESS_PRESENCE, x, y)

    def get_petty_crime(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.PETTY_CRIME, x, y)

    def get_organized_crime(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.ORGANIZED_CRIME, x, y)

    def get_particulate_pollution(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.PARTICULATE_POLLUTION, x, y) * self.particulate_pollution_multiplier

    def get_greenhouse_gases(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.GREENHOUSE_GASES, x, y)

    def get_noise(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.NOISE, x, y)

    def get_land_value(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.LAND_VALUE, x, y)

    def get_luxury(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.LUXURY, x, y)

    def get_police_protection(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.POLICE_PROTECTION, x, y)

    def get_fire_protection(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.FIRE_PROTECTION, x, y)

    def get_healthcare(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.HEALTHCARE, x, y)

    def get_education(self, x: int, y: int) -> float:
        return self.get_effect_value(EffectType.EDUCATION, x, y)

    def get_residential_desirability(self, x: int, y: int) -> float:
        return self.residence_spawner.calculate_desirability(x, y)

    def get_highest_effect(self, effect_type: EffectType, building: Building) -> float:
        return self.effect_grid.get_highest_effect(
            self, effect_type, building.x, building.y, building.width, building.height, building
        )

    def get_city_average_education(self) -> float:
        """Mean of the best education value under each residence."""

        residences = [building for building in self.buildings if building.is_residence]
        if not residences:
            return 0.0
        return sum(self.get_highest_effect(EffectType.EDUCATION, r) for r in residences) / len(residences)

    def get_city_average_greenhouse_gases(self) -> float:
        return self.effect_grid.get_average_effect(self, EffectType.GREENHOUSE_GASES)

    # ------------------------------------------------------------------
    # Short tick
    def on_short_tick(self) -> None:
        """Distribute power for one short tick, importing any shortfall up to the limit."""

        power = self.ledger.get(ResourceType.POWER)
        production = sum(
            building.get_power_production(self)
            for building in self.buildings
            if building.is_operational
        )
        power.amount += production
        power.production_rate = production

        consumers = [building for building in self.buildings if building.get_power_upkeep(self) > 0]
        self.rng.shuffle(consumers)
        imported = 0.0
        used = 0.0
        for building in consumers:
            needed = building.get_power_upkeep(self)
            importable = max(0.0, self.power_import_limit - imported)
            building.powered = building.is_operational and power.amount + importable >= needed
            if not building.powered:
                continue
            from_stock = min(power.amount, needed)
            power.amount -= from_stock
            imported += needed - from_stock
            used += needed
            building.powered_time_during_long_tick += POWER_STEP
            if building.powered_time_during_long_tick > 0.99:
                building.powered_time_during_long_tick = 1.0

        power.consumption_rate = used
        power.amount = max(0.0, min(power.capacity, power.amount))
        self.last_imported_power_cost = imported * config.POWER_IMPORT_PRICE
        if self.last_imported_power_cost:
            self.ledger.flunds.amount -= self.last_imported_power_cost

    # ------------------------------------------------------------------
    # Long tick
    def on_long_tick(self, caught_up: bool = True) -> None:
        """Run the full per-long-tick pipeline in its fixed order."""

        ledger = self.ledger
        self.trader.replenish_liquidity(self.peak_population)
        self.update_population()
        self.tech_manager.update_adoption_rates()

        for building in list(self.buildings):
            building.on_long_tick(self)
        self.pay_upkeep()
        self.update_happiness()
        for building in self.buildings:
            building.powered_time_during_long_tick = 0.0

        self.trader.run_auto_buys()
        self.diet.on_long_tick()
        self.trader.run_auto_sells()
        self.residence_spawner.on_long_tick()
        self.produce_research()
        self.trader.cap_liquidity()
        self.trader.decay_recent_sales()
        self.update_greenhouse_gases()

        self.effect_grid.expire_effects()
        self.expire_timed_bonuses()
        ledger.clear_events()
        if caught_up:
            self.check_population_unlocks()

        logger.debug(
            "Long tick: population=%.1f happiness=%.3f spawn_chance=%.3f flunds=%.1f",
            ledger.amount(ResourceType.POPULATION),
            ledger.amount(ResourceType.HAPPINESS),
            self.global_spawn_chance,
            ledger.flunds.amount,
        )

    def pay_upkeep(self) -> None:
        for building in list(self.buildings):
            upkeep = building.get_upkeep(self)
            fraction = self.ledger.calculate_affordable_portion(upkeep, allow_debt=True) if upkeep else 1.0
            for resource, amount in upkeep.items():
                self.ledger.consume(resource, amount * fraction)
            building.set_upkeep_efficiency(fraction)
            building.is_new = False

    def update_population(self) -> None:
        """Move population towards what the residences can house at current happiness."""

        population = self.ledger.get(ResourceType.POPULATION)
        happiness = self.ledger.amount(ResourceType.HAPPINESS)
        capacity = sum(building.get_residence_capacity() * building.last_efficiency for building in self.buildings)
        target = capacity * (0.5 + happiness / 2)

        current = population.amount
        divisor = max(1.0, min(config.POPULATION_MAX_DIVISOR, current / config.POPULATION_DIVISOR_SCALE))
        change = (target - current) / divisor
        updated = max(1.0, current + change)
        if target > 1 and abs(updated - target) < config.POPULATION_SNAP_DISTANCE:
            updated = target
        self.ledger.set_amount(ResourceType.POPULATION, updated)
        population.production_rate = max(0.0, change)
        population.consumption_rate = max(0.0, -change)
        self.peak_population = max(self.peak_population, population.amount)

    def update_happiness(self) -> float:
        target = HappinessCalculator(self).calculate_happiness()
        current = self.ledger.amount(ResourceType.HAPPINESS)
        change = target - current
        if abs(change) < config.HAPPINESS_MIN_STEP:
            updated = target
        elif change > 0:
            updated = current + max(config.HAPPINESS_MIN_STEP, change * config.HAPPINESS_RISE_RATE)
        else:
            updated = current + min(-config.HAPPINESS_MIN_STEP, change * config.HAPPINESS_FALL_RATE)
        self.ledger.set_amount(ResourceType.HAPPINESS, updated)
        return updated

    def produce_research(self) -> float:
        research = self.ledger.get(ResourceType.RESEARCH)
        rate = research.production_rate
        population = self.ledger.amount(ResourceType.POPULATION)
        base = max(1.0, rate * math.log10(max(1.0, rate, population)) * self.get_city_average_education())
        produced = base * (1 + self.get_timed_bonus("research")) / config.LONG_TICKS_PER_DAY
        self.ledger.produce(ResourceType.RESEARCH, produced)
        return produced

    def update_greenhouse_gases(self) -> None:
        gases = self.ledger.get(ResourceType.GREENHOUSE_GASES)
        if config.GREENHOUSE_GASES_MATTER in self.flags:
            accumulated = gases.amount + self.get_city_average_greenhouse_gases() * config.GREENHOUSE_ACCUMULATION
            gases.amount = max(0.0, accumulated)
        else:
            gases.amount = 0.0

    def check_population_unlocks(self) -> List[str]:
        unlocked: List[str] = []
        for threshold, flag in config.POPULATION_UNLOCKS:
            if self.peak_population >= threshold and flag not in self.flags:
                self.flags.add(flag)
                unlocked.append(flag)
                self.notify(f"Your city has grown to {threshold} people: {flag} now applies.")
                self.emit("flag_unlocked", flag=flag)
        return unlocked

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "population": self.ledger.amount(ResourceType.POPULATION),
            "peak_population": self.peak_population,
            "happiness": self.ledger.amount(ResourceType.HAPPINESS),
            "happiness_breakdown": dict(self.happiness_breakdown),
            "happiness_maxima": dict(self.happiness_maxima),
            "diet": self.diet.composition_snapshot(),
            "global_spawn_chance": self.global_spawn_chance,
            "flags": sorted(self.flags),
            "tax_rates": dict(self.tax_rates),
            "resources": self.ledger.snapshot(),
            "market": self.trader.snapshot(),
            "techs": self.tech_manager.snapshot(),
            "buildings": [building.snapshot() for building in self.buildings],
            "timed_bonuses": [bonus.to_dict() for bonus in self.timed_bonuses],
            "notifications": list(self.notifications),
            "last_long_tick": self.last_long_tick,
            "last_short_tick": self.last_short_tick,
        }
