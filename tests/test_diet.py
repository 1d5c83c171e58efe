import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from citycore import config
from citycore.city import City
from citycore.diet import DietEntry
from citycore.resources import ResourceType


def _fed_city(population: float = 4000, **foods) -> City:
    city = City(4, 4)
    city.ledger.set_amount(ResourceType.POPULATION, population)
    city.peak_population = population
    for food, amount in foods.items():
        city.ledger.set_amount(food, amount)
    return city


def test_food_needed_scales_with_population_and_diet_bonus():
    city = _fed_city(4000)
    assert city.diet.get_food_needed() == pytest.approx(10.0)

    city.add_timed_bonus("diet", 0.25, 2)
    assert city.diet.get_food_needed() == pytest.approx(7.5)
    assert city.diet.get_food_needed(ignore_bonus=True) == pytest.approx(10.0)


def test_composition_ratios_sum_to_one_and_food_is_eaten():
    city = _fed_city(4000, grain=6, fish=4)

    city.diet.on_long_tick()

    ratios = {entry["type"]: entry["ratio"] for entry in city.diet.composition_snapshot()}
    assert sum(ratios.values()) == pytest.approx(1.0, abs=1e-4)
    assert ratios["grain"] == pytest.approx(0.6, abs=1e-4)
    assert ratios["fish"] == pytest.approx(0.4, abs=1e-4)
    assert city.ledger.amount(ResourceType.FOOD_SUFFICIENCY) == pytest.approx(1.0)
    assert city.ledger.amount(ResourceType.GRAIN) == pytest.approx(0.0, abs=1e-3)
    assert city.ledger.amount(ResourceType.FISH) == pytest.approx(0.0, abs=1e-3)


def test_shortage_lowers_sufficiency():
    city = _fed_city(4000, grain=2.5)

    city.diet.on_long_tick()

    assert city.ledger.amount(ResourceType.FOOD_SUFFICIENCY) == pytest.approx(0.25, abs=1e-3)


def test_food_health_only_tracked_when_healthcare_matters():
    city = _fed_city(4000, grain=6, fish=4)
    city.ledger.set_amount(ResourceType.FOOD_HEALTH, 0.3)

    city.diet.on_long_tick()
    assert city.ledger.amount(ResourceType.FOOD_HEALTH) == pytest.approx(0.3)

    city.flags.add(config.HEALTHCARE_MATTERS)
    city.ledger.set_amount(ResourceType.GRAIN, 6)
    city.ledger.set_amount(ResourceType.FISH, 4)
    city.diet.on_long_tick()
    assert city.ledger.amount(ResourceType.FOOD_HEALTH) != pytest.approx(0.3)


def test_empty_city_is_fully_fed():
    city = _fed_city(0)
    city.ledger.set_amount(ResourceType.FOOD_SUFFICIENCY, 0.2)

    city.diet.on_long_tick()

    assert city.ledger.amount(ResourceType.FOOD_SUFFICIENCY) == 1.0
    assert city.diet.composition_snapshot() == []


def test_small_city_diet_is_mostly_forgiven():
    city = _fed_city(300, grain=1)

    city.diet.on_long_tick()

    # Only a tenth of the real diet counts below 500 peak population.
    assert city.ledger.amount(ResourceType.FOOD_SATISFACTION) > 0.85


def test_load_composition_skips_malformed_entries():
    city = _fed_city(0)
    city.diet.load_composition(
        [
            {"type": "grain", "ratio": 0.5, "effectiveness": 1.0},
            {"type": "gruel", "ratio": 0.5},
            {"ratio": 0.1},
        ]
    )

    assert [entry["type"] for entry in city.diet.composition_snapshot()] == ["grain"]


def test_reference_diet_uses_the_most_eaten_foods():
    city = _fed_city(4000)
    composition = [
        DietEntry(ResourceType.FISH, 0.6, 1.0),
        DietEntry(ResourceType.GRAIN, 0.4, 1.0),
        DietEntry(ResourceType.APPLES, 0.0, 1.0),
    ]

    assert city.diet._reference_diet(composition, 2) == (pytest.approx(3.0), pytest.approx(3.0))


def test_reference_diet_falls_back_to_the_full_diet():
    city = _fed_city(4000)
    composition = [DietEntry(ResourceType.LEAFY_GREENS, 1.0, 1.0)]

    assert city.diet._reference_diet(composition, 2) == (city.diet.perfect_happiness, city.diet.perfect_health)
    assert city.diet._reference_diet([], 2) == (city.diet.perfect_happiness, city.diet.perfect_health)
