import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from citycore.building_catalog import COAL_POWER_PLANT, CORNER_STORE, POLICE_STATION, build_from_catalog
from citycore.city import City
from citycore.effect_grid import EffectGrid, GridBoundsError
from citycore.effects import Effect, EffectType


def _city(size: int = 20) -> City:
    return City(size, size).start_new(0, 0)


def _count(grid: EffectGrid, effect_type: EffectType, x: int, y: int) -> int:
    return sum(1 for effect in grid.effects_at(x, y) if effect.type is effect_type)


def test_spread_covers_footprint_plus_radius():
    grid = EffectGrid(10, 10)

    assert grid.spread_effect(Effect(EffectType.NOISE, 1.0), 5, 5, radius_x=1) == 9
    assert grid.spread_effect(Effect(EffectType.LUXURY, 1.0), 5, 5, radius_x=2, rounded=True) == 21
    assert _count(grid, EffectType.LUXURY, 3, 3) == 0
    assert _count(grid, EffectType.LUXURY, 4, 3) == 1


def test_spread_is_clamped_at_the_edges():
    grid = EffectGrid(10, 10)

    assert grid.spread_effect(Effect(EffectType.NOISE, 1.0), 0, 0, radius_x=1) == 4
    assert grid.spread_effect(Effect(EffectType.NOISE, 1.0), 9, 9, 1, 1, 0, 3) == 4


def test_spread_can_skip_the_footprint():
    grid = EffectGrid(10, 10)
    count = grid.spread_effect(Effect(EffectType.NOISE, 1.0), 4, 4, 2, 2, 1, exclude_footprint=True)

    assert count == 12
    assert _count(grid, EffectType.NOISE, 4, 4) == 0


def test_out_of_bounds_lookup_raises_index_error():
    grid = EffectGrid(4, 4)

    with pytest.raises(GridBoundsError):
        grid.effects_at(4, 0)
    with pytest.raises(IndexError):
        grid.effects_at(-1, 2)


def test_grid_dimensions_must_be_positive():
    with pytest.raises(ValueError):
        EffectGrid(0, 5)


def test_efficiency_scaled_effect_follows_the_source():
    city = _city()
    store = city.add_building(build_from_catalog(CORNER_STORE), 5, 5)

    store.last_efficiency = 0.5
    assert city.get_business_density(6, 5) == pytest.approx(0.25)

    store.last_efficiency = 1.0
    assert city.get_business_density(6, 5) == pytest.approx(0.5)
    assert city.get_luxury(7, 5) == pytest.approx(0.1)


def test_removing_a_building_clears_its_effects():
    city = _city()
    store = city.add_building(build_from_catalog(CORNER_STORE), 5, 5)
    store.last_efficiency = 1.0

    city.remove_building(store)

    for x in range(2, 9):
        for y in range(2, 9):
            assert _count(city.effect_grid, EffectType.BUSINESS_PRESENCE, x, y) == 0


def test_distance_falloff_from_footprint():
    city = _city()
    plant = city.add_building(build_from_catalog(COAL_POWER_PLANT), 4, 4)
    plant.last_efficiency = 1.0

    assert city.get_particulate_pollution(5, 5) == pytest.approx(0.5)
    assert city.get_particulate_pollution(7, 4) == pytest.approx(0.5 * (1 - 2 / 7))

    city.particulate_pollution_multiplier = 2.0
    assert city.get_particulate_pollution(5, 5) == pytest.approx(1.0)


def test_radius_upgrade_reapplied_after_research():
    city = _city()
    city.add_building(build_from_catalog(POLICE_STATION), 10, 10)
    grid = city.effect_grid

    assert _count(grid, EffectType.POLICE_PROTECTION, 15, 10) == 1
    assert _count(grid, EffectType.POLICE_PROTECTION, 16, 10) == 0

    city.tech_manager.get("smartpolicing").researched = True
    city.reapply_radius_upgrades("smartpolicing")

    assert _count(grid, EffectType.POLICE_PROTECTION, 15, 10) == 1
    assert _count(grid, EffectType.POLICE_PROTECTION, 16, 10) == 1


def test_untied_effects_export_and_load():
    city = _city()
    city.effect_grid.add_ambient_effect(Effect(EffectType.LAND_VALUE, 0.3, expiration_ticks=2), 2, 2)

    exported = city.effect_grid.export_untied()

    # Road noise is tied to the road and rebuilt on load.
    assert exported == [{"x": 2, "y": 2, "type": "LandValue", "multiplier": 0.3, "expiration_ticks": 2}]

    other = EffectGrid(20, 20)
    assert other.load_untied(exported) == 1
    assert other.get_effect_sum(city, EffectType.LAND_VALUE, 2, 2) == pytest.approx(0.3)


def test_load_untied_skips_bad_entries():
    grid = EffectGrid(5, 5)
    loaded = grid.load_untied(
        [
            {"type": "Bogus", "x": 0, "y": 0},
            {"type": "Noise", "x": 99, "y": 0},
            {"type": "Noise", "y": 1},
        ]
    )
    assert loaded == 0


def test_timed_effects_expire():
    grid = EffectGrid(5, 5)
    grid.add_ambient_effect(Effect(EffectType.PETTY_CRIME, 0.2, expiration_ticks=2), 1, 1)
    grid.add_ambient_effect(Effect(EffectType.PETTY_CRIME, 0.1), 1, 1)

    assert grid.expire_effects() == 0
    assert _count(grid, EffectType.PETTY_CRIME, 1, 1) == 2
    assert grid.expire_effects() == 1
    assert _count(grid, EffectType.PETTY_CRIME, 1, 1) == 1


def test_ambient_effect_cannot_be_tied_to_a_building():
    grid = EffectGrid(5, 5)
    road = build_from_catalog("road")
    with pytest.raises(ValueError):
        grid.add_ambient_effect(Effect(EffectType.NOISE, 0.1, road), 0, 0)
