import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from citycore import config
from citycore.building_catalog import ROAD, SMALL_APARTMENT, SMALL_HOUSE, build_from_catalog
from citycore.city import City
from citycore.effects import Effect, EffectType
from citycore.resources import ResourceType


class FixedRandom(random.Random):
    """Always rolls the same value so spawn decisions are predictable."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def _street_city(roll: float = 0.0, width: int = 12) -> City:
    """A city with one road along the top row."""

    city = City(width, 12, rng=FixedRandom(roll)).start_new(0, 0)
    for x in range(1, width):
        city.add_building(build_from_catalog(ROAD), x, 0)
    return city


def _ambient(city: City, effect_type: EffectType, magnitude: float, x: int, y: int) -> None:
    city.effect_grid.add_ambient_effect(Effect(effect_type, magnitude), x, y)


def _houses(city: City):
    return sorted((b.x, b.y) for b in city.buildings if b.type_key == SMALL_HOUSE)


def test_global_spawn_chance_from_happiness():
    city = _street_city()
    city.ledger.set_amount(ResourceType.HAPPINESS, 1.0)

    chance = city.residence_spawner.update_global_factors()

    assert chance == pytest.approx(0.6 * config.SPAWN_HAPPINESS_SCALE)
    assert city.global_spawn_chance == chance


def test_spawn_chance_recovers_faster_after_population_drop():
    city = _street_city()
    city.ledger.set_amount(ResourceType.HAPPINESS, 1.0)
    city.peak_population = 1000
    city.ledger.set_amount(ResourceType.POPULATION, 500)

    chance = city.residence_spawner.update_global_factors()

    assert chance == pytest.approx(0.6 * config.SPAWN_HAPPINESS_SCALE * 1.5)


def test_negative_spawn_chance_spawns_nothing():
    city = _street_city()
    for x in range(12):
        _ambient(city, EffectType.LAND_VALUE, 1.0, x, 1)
    spawner = city.residence_spawner
    spawner.global_spawn_chance = -0.1

    assert spawner.find_spawn_candidates() == []
    assert spawner.spawn_residences() == 0
    assert _houses(city) == []


def test_spawns_on_the_most_desirable_road_side_tiles():
    city = _street_city()
    for x in range(12):
        _ambient(city, EffectType.LAND_VALUE, 1.0 if x < 6 else 0.5, x, 1)
    city.ledger.set_amount(ResourceType.HAPPINESS, 1.0)
    spawner = city.residence_spawner
    spawner.update_global_factors()
    assert spawner.max_spawn_count() == 6

    spawned = spawner.spawn_residences()

    assert spawned == 6
    assert _houses(city) == [(x, 1) for x in range(6)]


def test_spawn_candidates_are_empty_and_next_to_connected_roads():
    city = _street_city()
    # An island road that is not reachable from the network root.
    city.add_building(build_from_catalog(ROAD), 6, 6)
    city.add_building(build_from_catalog(SMALL_HOUSE), 2, 1)
    spawner = city.residence_spawner
    spawner.global_spawn_chance = 10.0

    candidates = spawner.find_spawn_candidates()

    tiles = [(x, y) for x, y, _ in candidates]
    assert len(tiles) == len(set(tiles)) == 11
    assert (2, 1) not in tiles
    assert all(y == 1 for _, y in tiles)
    desirability = [d for _, _, d in candidates]
    assert desirability == sorted(desirability, reverse=True)


def test_spawn_candidates_respect_the_cap():
    city = _street_city()
    spawner = city.residence_spawner
    spawner.global_spawn_chance = 0.3

    assert len(spawner.find_spawn_candidates()) == 2


def test_spawning_uses_up_recent_material_sales():
    city = _street_city()
    city.ledger.recent_construction_resources_sold = 5.0

    city.residence_spawner.spawn_residence(3, 1)

    assert city.ledger.recent_construction_resources_sold == pytest.approx(3.0)


def test_business_presence_upgrades_house_to_apartment():
    city = _street_city()
    house = city.add_building(build_from_catalog(SMALL_HOUSE), 3, 1)
    house.last_efficiency = 1.0
    _ambient(city, EffectType.BUSINESS_PRESENCE, 0.5, 3, 1)
    spawner = city.residence_spawner
    spawner.global_spawn_chance = 1.0

    assert spawner.will_upgrade(house) is True
    assert spawner.upgrade_residences() == 1
    assert city.count_buildings(SMALL_HOUSE) == 0
    assert city.count_buildings(SMALL_APARTMENT) == 1


def test_no_upgrades_below_minimum_spawn_chance():
    city = _street_city()
    house = city.add_building(build_from_catalog(SMALL_HOUSE), 3, 1)
    house.last_efficiency = 1.0
    _ambient(city, EffectType.BUSINESS_PRESENCE, 0.5, 3, 1)
    city.residence_spawner.global_spawn_chance = 0.5

    assert city.residence_spawner.upgrade_residences() == 0
    assert city.count_buildings(SMALL_HOUSE) == 1


def test_despawn_removes_the_least_desirable_within_limit():
    city = _street_city()
    for x in (1, 2, 3):
        city.add_building(build_from_catalog(SMALL_HOUSE), x, 1)
    _ambient(city, EffectType.PETTY_CRIME, 0.5, 2, 1)
    city.peak_population = 5
    city.residence_spawner.global_spawn_chance = -0.1

    removed = city.residence_spawner.despawn_residences()

    assert removed == 1
    assert _houses(city) == [(1, 1), (3, 1)]


def test_residence_without_road_is_removed():
    city = _street_city(roll=0.99)
    house = city.add_building(build_from_catalog(SMALL_HOUSE), 6, 6)
    house.is_new = False
    city.residence_spawner.global_spawn_chance = 0.5

    assert city.residence_spawner.despawn_residences() == 1
    assert city.count_buildings(SMALL_HOUSE) == 0


def test_despawn_chance_rules():
    city = _street_city()
    spawner = city.residence_spawner

    spawner.global_spawn_chance = 0.2
    assert spawner.despawn_chance(0.3) == 0.0
    assert spawner.despawn_chance(-0.2) == pytest.approx(0.2)
    spawner.global_spawn_chance = -0.1
    assert spawner.despawn_chance(0.3) == pytest.approx(0.8)


def test_desirability_counts_the_building_own_effects():
    city = _street_city()
    school = build_from_catalog("elementary_school")
    school.last_efficiency = 1.0

    without = city.residence_spawner.calculate_desirability(5, 5)
    with_school = city.residence_spawner.calculate_desirability(5, 5, school)

    assert without == pytest.approx(config.DESIRABILITY_BASELINE)
    assert with_school == pytest.approx(config.DESIRABILITY_BASELINE + config.DESIRABILITY_EDUCATION_WEIGHT)


def test_upgrade_details_for_house():
    city = _street_city()
    house = city.add_building(build_from_catalog(SMALL_HOUSE), 3, 1)
    _ambient(city, EffectType.BUSINESS_PRESENCE, 0.5, 3, 1)
    city.residence_spawner.global_spawn_chance = 0.8

    details = city.residence_spawner.get_residence_upgrade_details(house)

    assert details["next_tier_type"] == SMALL_APARTMENT
    assert details["has_space"] is True
    assert (details["x"], details["y"]) == (3, 1)
    assert details["business_presence"] == pytest.approx(0.5)
    assert details["overall_upgrade_probability"] == pytest.approx(0.8)
    assert details["min_business_presence"] == pytest.approx(config.MIN_DENSITY_FOR_UPGRADE)


def test_upgrade_details_only_for_residences():
    city = _street_city()
    road = city.grid[0][3]

    assert city.residence_spawner.get_residence_upgrade_details(road) is None


def test_sprawl_reminder_is_sent_once():
    city = _street_city()
    for x in range(10):
        city.add_building(build_from_catalog(SMALL_HOUSE), x, 1)
    spawner = city.residence_spawner
    spawner.global_spawn_chance = 0.1

    spawner._check_sprawl()
    spawner._check_sprawl()

    assert config.REMINDED_ABOUT_SPRAWL in city.flags
    assert sum("Horizontal Heresy" in message for message in city.notifications) == 1
