import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from citycore import trade
from citycore.resource_ledger import ResourceEventKind, ResourceLedger
from citycore.resources import Resource, ResourceType, default_resources


def _ledger(**amounts) -> ResourceLedger:
    ledger = ResourceLedger(default_resources())
    for key, value in amounts.items():
        ledger.set_amount(key, value)
    return ledger


def test_failed_spend_leaves_every_account_untouched():
    ledger = _ledger(flunds=100, wood=5, iron=0)
    before = ledger.bulk_export()

    assert ledger.check_and_spend_resources({ResourceType.WOOD: 3, ResourceType.IRON: 2}) is False
    assert ledger.bulk_export() == before


def test_spend_buys_the_shortfall_from_the_market():
    ledger = _ledger(flunds=100, wood=5)
    ledger.get(ResourceType.WOOD).buyable_amount = 10

    assert ledger.check_and_spend_resources({ResourceType.WOOD: 8, ResourceType.FLUNDS: 10}) is True

    assert ledger.amount(ResourceType.FLUNDS) == pytest.approx(85.5)
    assert ledger.amount(ResourceType.WOOD) == pytest.approx(0.0)
    assert ledger.get(ResourceType.WOOD).buyable_amount == pytest.approx(7.0)


def test_affordable_portion_limited_by_scarce_stock():
    ledger = _ledger(flunds=100, wood=5)

    assert ledger.calculate_affordable_portion({"wood": 10}) == pytest.approx(0.5)
    assert ledger.has_resources({"wood": 10}) is False


def test_affordable_portion_limited_by_flunds():
    ledger = _ledger(flunds=3, wood=5)
    ledger.get(ResourceType.WOOD).buyable_amount = 10

    portion = ledger.calculate_affordable_portion({"wood": 10})

    assert portion == pytest.approx(0.7, abs=1e-3)
    assert ledger.has_resources({"wood": 10}) is False


def test_affordable_portion_is_one_exactly_when_affordable():
    ledger = _ledger(flunds=50, wood=20)

    assert ledger.calculate_affordable_portion({"wood": 10, "flunds": 5}) == pytest.approx(1.0)
    assert ledger.has_resources({"wood": 10, "flunds": 5}) is True


def test_portion_is_zero_for_resource_with_nothing_available():
    ledger = _ledger(flunds=1000)

    assert ledger.calculate_affordable_portion({"steel": 4}) == 0.0


def test_transfer_sells_above_the_auto_sell_line():
    ledger = _ledger(flunds=0, wood=45)
    ledger.set_trade_thresholds("wood", sell_above=0.5)

    sold = ledger.transfer_resources_from({"wood": 10})

    assert sold == {ResourceType.WOOD: pytest.approx(5.0)}
    assert ledger.amount("wood") == pytest.approx(50.0)
    assert ledger.amount("flunds") == pytest.approx(5.0)
    assert ledger.recent_construction_resources_sold == pytest.approx(5.0)
    assert [event.event for event in ledger.events_of(ResourceEventKind.SELL)] == [ResourceEventKind.SELL]
    assert [event.amount for event in ledger.events_of(ResourceEventKind.PRODUCE)] == [pytest.approx(5.0)]


def test_transfer_into_a_full_account_logs_only_the_sale():
    ledger = _ledger(flunds=0, wood=50)
    ledger.set_trade_thresholds("wood", sell_above=0.5)

    ledger.transfer_resources_from({"wood": 4})

    assert ledger.events_of(ResourceEventKind.PRODUCE) == []
    assert [event.amount for event in ledger.events_of(ResourceEventKind.SELL)] == [pytest.approx(4.0)]


def test_trade_thresholds_never_cross():
    ledger = _ledger()
    ledger.set_trade_thresholds("grain", buy_below=0.2, sell_above=0.2)

    ledger.set_trade_thresholds("grain", buy_below=0.6)
    account = ledger.set_trade_thresholds("grain", sell_above=0.1)

    assert account.auto_buy_below == pytest.approx(0.2)
    assert account.auto_sell_above == pytest.approx(0.2)


def test_consume_clamps_goods_but_not_flunds():
    ledger = _ledger(flunds=2, grain=1)

    ledger.consume("grain", 5)
    ledger.consume("flunds", 10)

    assert ledger.amount("grain") == 0.0
    assert ledger.amount("flunds") == pytest.approx(-8.0)


def test_set_amount_clamps_to_capacity():
    ledger = _ledger()
    ledger.set_amount("happiness", 3)
    assert ledger.amount("happiness") == 1.0


def test_unknown_resource_raises_key_error():
    ledger = _ledger()
    with pytest.raises(KeyError):
        ledger.get("unobtainium")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"capacity": -1},
        {"amount": -1, "capacity": 10},
        {"auto_buy_below": 0.8, "auto_sell_above": 0.5},
    ],
)
def test_invalid_resource_rejected(kwargs):
    with pytest.raises(ValueError):
        Resource(ResourceType.WOOD, **kwargs)


def test_ledger_copies_its_accounts():
    source = default_resources()
    first = ResourceLedger(source)
    second = ResourceLedger(source)

    first.set_amount("wood", 30)

    assert second.amount("wood") == 0.0
    assert source[ResourceType.WOOD].amount == 0.0


def test_bulk_load_skips_unknown_resources():
    ledger = _ledger()
    skipped = ledger.bulk_load([{"type": "wood", "amount": 12}, {"type": "mithril", "amount": 3}])

    assert skipped == ["mithril"]
    assert ledger.amount("wood") == pytest.approx(12.0)


# ---------------------------------------------------------------------------
# Market


def test_buy_capacity_grows_with_population_and_shrinks_with_price():
    wood = default_resources()[ResourceType.WOOD]
    furniture = default_resources()[ResourceType.FURNITURE]

    assert trade.get_buy_capacity(wood, 0) == pytest.approx(20.0)
    assert trade.get_buy_capacity(wood, 3500) == pytest.approx(30.0)
    assert trade.get_buy_capacity(furniture, 0) == pytest.approx(20.0 * 0.6)


def test_auto_sells_trim_accounts_down_to_threshold():
    ledger = _ledger(flunds=0, iron=80)
    ledger.set_trade_thresholds("iron", sell_above=0.5)
    trader = trade.MarketTrader(ledger)

    trader.run_auto_sells()

    assert ledger.amount("iron") == pytest.approx(50.0)
    assert ledger.amount("flunds") == pytest.approx(60.0)


def _wood_buyer(flunds: float, wood: float, buyable: float) -> ResourceLedger:
    ledger = _ledger(flunds=flunds, wood=wood)
    account = ledger.get(ResourceType.WOOD)
    account.capacity = 100.0
    account.auto_sell_above = 1.0
    account.auto_buy_below = 0.5
    account.buyable_amount = buyable
    return ledger


def test_auto_buy_is_limited_by_market_stock():
    ledger = _wood_buyer(flunds=1000, wood=10, buyable=15)
    account = ledger.get(ResourceType.WOOD)

    bought = ledger.auto_buy(account)

    assert bought == pytest.approx(15.0)
    assert account.amount == pytest.approx(25.0)
    assert account.buyable_amount == pytest.approx(0.0)
    assert ledger.amount("flunds") == pytest.approx(1000 - 15 * 1.5)
    assert [event.amount for event in ledger.events_of(ResourceEventKind.BUY)] == [pytest.approx(15.0)]


def test_auto_buy_from_an_empty_market_buys_nothing():
    ledger = _wood_buyer(flunds=10000, wood=0, buyable=0)

    assert ledger.auto_buy(ledger.get(ResourceType.WOOD)) == 0.0
    assert ledger.amount("wood") == 0.0
    assert ledger.amount("flunds") == pytest.approx(10000)
    assert ledger.events_of(ResourceEventKind.BUY) == []


def test_auto_buy_is_limited_by_flunds():
    ledger = _wood_buyer(flunds=3, wood=0, buyable=100)
    account = ledger.get(ResourceType.WOOD)

    bought = ledger.auto_buy(account)

    assert bought == pytest.approx(2.0)
    assert ledger.amount("flunds") == pytest.approx(0.0)
    assert account.buyable_amount == pytest.approx(98.0)


@pytest.mark.parametrize("wood", [50, 60])
def test_auto_buy_skips_accounts_at_or_above_the_line(wood):
    ledger = _wood_buyer(flunds=1000, wood=wood, buyable=100)

    assert ledger.auto_buy(ledger.get(ResourceType.WOOD)) == 0.0
    assert ledger.amount("flunds") == pytest.approx(1000)
    assert ledger.get(ResourceType.WOOD).buyable_amount == pytest.approx(100)


def test_auto_buy_pass_reports_what_it_spent():
    ledger = _wood_buyer(flunds=1000, wood=40, buyable=100)
    trader = trade.MarketTrader(ledger)

    spent = trader.run_auto_buys()

    assert spent == pytest.approx(10 * 1.5)
    assert trader.last_auto_buy_cost == pytest.approx(spent)
    assert ledger.amount("wood") == pytest.approx(50.0)
    assert ledger.get(ResourceType.WOOD).buyable_amount == pytest.approx(90.0)
