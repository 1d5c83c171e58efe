"""Market liquidity and automatic trading passes."""

from __future__ import annotations

import math
from typing import Dict

from . import config
from .resource_ledger import ResourceLedger
from .resources import Resource


def get_buy_capacity(resource: Resource, peak_population: float) -> float:
    """Amount of ``resource`` the market will sell over a rolling five days."""

    if resource.buy_price == 0:
        return 0.0
    capacity = float(config.BASE_BUY_CAPACITY)
    for increment in config.BUY_CAPACITY_POPULATION_INCREMENTS:
        if peak_population < increment:
            break
        capacity += config.BUY_CAPACITY_STEP

    if (
        resource.buy_price >= config.EXPENSIVE_PRICE
        and peak_population >= config.EXPENSIVE_PRICE_MIN_POPULATION
    ):
        capacity += math.ceil(math.log(peak_population - config.EXPENSIVE_PRICE_MIN_POPULATION + 1))
    elif resource.buy_price >= config.PRICEY_PRICE:
        capacity *= config.PRICEY_MULTIPLIER
    elif resource.buy_price >= config.MODERATE_PRICE:
        capacity *= config.MODERATE_MULTIPLIER
    return capacity


class MarketTrader:
    """Runs the per-tick trading passes over every tradeable account."""

    def __init__(self, ledger: ResourceLedger) -> None:
        self.ledger = ledger
        self.last_auto_buy_cost = 0.0

    def _tradeable(self):
        return [resource for resource in self.ledger if not resource.is_special]

    # ------------------------------------------------------------------
    def replenish_liquidity(self, peak_population: float) -> None:
        """Grow each buyable amount by a day's share of its buy capacity.

        The amount is left uncapped here; :meth:`cap_liquidity` trims it at the
        end of the tick.
        """

        for resource in self._tradeable():
            if resource.capacity:
                resource.buy_capacity = min(get_buy_capacity(resource, peak_population), resource.capacity)
            resource.buyable_amount = min(
                resource.buy_capacity,
                resource.buyable_amount
                + resource.buy_capacity * config.DAILY_LIQUIDITY_REGROWTH / config.LONG_TICKS_PER_DAY,
            )

    def cap_liquidity(self) -> None:
        for resource in self.ledger:
            resource.buyable_amount = min(resource.buyable_amount, resource.buy_capacity)

    def run_auto_buys(self) -> float:
        before = self.ledger.flunds.amount
        for resource in self._tradeable():
            self.ledger.auto_buy(resource)
        self.last_auto_buy_cost = before - self.ledger.flunds.amount
        return self.last_auto_buy_cost

    def run_auto_sells(self) -> float:
        sold = 0.0
        for resource in self._tradeable():
            sold += self.ledger.auto_sell(resource)
        return sold

    def decay_recent_sales(self) -> None:
        recent = self.ledger.recent_construction_resources_sold
        self.ledger.recent_construction_resources_sold = max(
            0.0, min(recent * config.CONSTRUCTION_SALES_DECAY, recent - 1)
        )

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Dict[str, float]]:
        return {
            resource.type.value: {
                "buy_price": resource.effective_buy_price,
                "sell_price": resource.effective_sell_price,
                "auto_buy_below": resource.auto_buy_below,
                "auto_sell_above": resource.auto_sell_above,
                "buyable_amount": resource.buyable_amount,
                "buy_capacity": resource.buy_capacity,
            }
            for resource in self._tradeable()
            if resource.is_tradeable
        }
