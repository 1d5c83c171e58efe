import json
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from citycore import config
from citycore.building_catalog import ROAD, SMALL_HOUSE, build_from_catalog
from citycore.city import City
from citycore.effects import Effect, EffectType
from citycore.game_state import GameSession
from citycore.persistence import (
    CityStore,
    InMemoryCityStore,
    StaleWriteError,
    city_from_dict,
    city_to_dict,
)
from citycore.resources import ResourceType
from citycore.scheduler import ensure_tick_loop, stop_tick_loop
from citycore.timeclock import TickClock


def _recording_city():
    city = City(6, 6).start_new(0, 0)
    calls = []
    city.on_long_tick = lambda caught_up=True: calls.append(caught_up)
    return city, calls


def _built_city() -> City:
    city = City(8, 8, rng=random.Random(5), name="Testville").start_new(0, 0)
    city.add_building(build_from_catalog(ROAD), 1, 0)
    house = city.add_building(build_from_catalog(SMALL_HOUSE), 1, 1)
    house.last_efficiency = 0.75
    city.effect_grid.add_ambient_effect(Effect(EffectType.LAND_VALUE, 0.4), 3, 3)
    city.ledger.set_amount(ResourceType.WOOD, 42)
    city.tech_manager.get("hydroponics").researched = True
    city.add_timed_bonus("happiness", 0.1, 4)
    city.peak_population = 321
    city.last_saved_action_timestamp = 1000
    return city


# ---------------------------------------------------------------------------
# Tick clock


def test_catch_up_is_limited_per_advance():
    city, calls = _recording_city()
    clock = TickClock(city, long_tick_ms=1000, short_tick_ms=100, max_long_ticks=4)
    clock.start(0)

    first = clock.advance(10_500)
    assert (first.long_ticks, first.short_ticks, first.more_pending) == (4, 40, True)
    assert city.last_long_tick == 4000
    assert calls == [False] * 4

    clock.advance(10_500)
    last = clock.advance(10_500)

    assert last.long_ticks == 2
    assert last.caught_up is True
    assert last.short_ticks == 25
    assert calls[-1] is True
    assert city.last_long_tick == 10_000
    assert city.last_short_tick == 10_500


def test_frozen_time_skips_ticks():
    city, calls = _recording_city()
    clock = TickClock(city, long_tick_ms=1000, short_tick_ms=100)
    clock.start(0)
    city.time_freeze = True

    result = clock.advance(5000)

    assert (result.long_ticks, result.short_ticks) == (0, 0)
    assert calls == []
    assert city.last_long_tick == 5000
    assert clock.pending_long_ticks(5000) == 0


@pytest.mark.parametrize("kwargs", [{"long_tick_ms": 0}, {"short_tick_ms": -1}, {"max_long_ticks": 0}])
def test_clock_rejects_bad_settings(kwargs):
    city, _ = _recording_city()
    with pytest.raises(ValueError):
        TickClock(city, **kwargs)


# ---------------------------------------------------------------------------
# Persistence


def test_city_round_trip():
    city = _built_city()
    data = json.loads(json.dumps(city_to_dict(city)))

    loaded = city_from_dict(data)

    assert loaded.name == "Testville"
    assert loaded.count_buildings(SMALL_HOUSE) == 1
    assert loaded.network_root is loaded.grid[0][0]
    assert loaded.grid[1][1].last_efficiency == pytest.approx(0.75)
    assert loaded.grid[1][1].road_connected is True
    assert loaded.network_root.owned is False
    assert loaded.grid[1][1].owned is True
    assert loaded.ledger.amount(ResourceType.WOOD) == pytest.approx(42)
    assert loaded.tech_manager.is_researched("hydroponics")
    assert loaded.get_land_value(3, 3) == pytest.approx(0.4)
    assert loaded.get_timed_bonus("happiness") == pytest.approx(0.1)
    assert loaded.peak_population == pytest.approx(321)
    assert loaded.effect_grid.export_untied() == city.effect_grid.export_untied()


def test_load_skips_unknown_entries():
    data = city_to_dict(_built_city())
    data["buildings"].append({"type": "castle", "x": 4, "y": 4})
    data["buildings"].append({"type": SMALL_HOUSE, "x": 40, "y": 4})
    data["techs"].append({"id": "warpdrive", "researched": True})
    data["resources"].append({"type": "mithril", "amount": 3})

    loaded = city_from_dict(data)

    assert len(loaded.buildings) == 3
    assert "warpdrive" not in loaded.tech_manager.techs


def test_load_rejects_other_versions():
    data = city_to_dict(_built_city())
    data["version"] = 99
    with pytest.raises(ValueError):
        city_from_dict(data)


def test_stale_write_is_refused():
    store = InMemoryCityStore()
    newer = _built_city()
    newer.last_saved_action_timestamp = 2000
    store.save_city(newer)

    older = _built_city()
    with pytest.raises(StaleWriteError) as excinfo:
        store.save_city(older)

    assert excinfo.value.stored == 2000
    assert store.writes == 1


def test_file_store_round_trip(tmp_path):
    store = CityStore(tmp_path / "saves" / "city.json")
    assert store.load_city() is None

    store.save_city(_built_city())
    loaded = store.load_city()

    assert loaded is not None
    assert loaded.count_buildings(ROAD) == 2
    assert not (tmp_path / "saves" / "city.json.tmp").exists()


# ---------------------------------------------------------------------------
# Sessions


def _session(now=0):
    clock = {"now": now}
    store = InMemoryCityStore()
    session = GameSession.new_city(8, 8, store=store, now=lambda: clock["now"], rng=random.Random(1))
    return session, store, clock


def test_session_saves_after_catching_up():
    session, store, clock = _session()

    session.advance()
    assert store.writes == 0

    clock["now"] = config.LONG_TICK_TIME
    result = session.advance()

    assert result.long_ticks == 1
    assert session.fast_forwarding is False
    assert store.writes == 1


def test_session_reports_fast_forward_without_saving():
    session, store, clock = _session()
    clock["now"] = config.LONG_TICK_TIME * (config.MAX_LONG_TICKS_PER_ADVANCE + 2)

    result = session.advance()

    assert result.more_pending is True
    assert session.snapshot()["fast_forward"] is True
    assert store.writes == 0


def test_overlapping_save_is_deferred():
    session, store, _ = _session()
    session.save_in_progress = True

    assert session.full_save() is False
    assert session.save_deferred is True

    session.save_in_progress = False
    session.advance()

    assert store.writes == 1
    assert session.save_deferred is False


def test_session_propagates_stale_write():
    session, store, clock = _session()
    clock["now"] = 500
    session.record_action()
    store.payload = city_to_dict(session.city)
    store.payload["last_saved_action_timestamp"] = 9000

    with pytest.raises(StaleWriteError):
        session.full_save()
    assert session.last_save_error is not None
    assert session.save_in_progress is False


def test_tick_loop_is_started_once_and_stops():
    session, _, _ = _session()

    thread = ensure_tick_loop(session, interval=0.01)
    assert ensure_tick_loop(session, interval=0.01) is thread

    stop_tick_loop(session, timeout=2)
    assert not thread.is_alive()
