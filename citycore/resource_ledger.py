"""Resource ledger holding every commodity account of a city.

All spend operations are predicates first: they report whether a cost can be
covered and only mutate accounts once the whole cost list is known to be
affordable. Shortfalls of tradeable resources are covered by buying from the
market, limited by each resource's ``buyable_amount``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from . import config
from .resources import (
    PERSISTED_FIELDS,
    Resource,
    ResourceType,
    default_resources,
    normalise_resource,
)

logger = logging.getLogger(__name__)

Costs = Mapping[ResourceType, float]


class ResourceEventKind(str, Enum):
    PRODUCE = "produce"
    CONSUME = "consume"
    SELL = "sell"
    BUY = "buy"
    CANCEL = "cancel"
    EARN = "earn"


@dataclass(frozen=True)
class ResourceEvent:
    """Single entry of the per-tick resource log."""

    type: ResourceType
    event: ResourceEventKind
    amount: float


def normalise_costs(costs: Mapping[ResourceType | str, float]) -> Dict[ResourceType, float]:
    """Return ``costs`` keyed by canonical resource types, merging duplicates."""

    merged: Dict[ResourceType, float] = {}
    for key, amount in costs.items():
        resource = normalise_resource(key)
        merged[resource] = merged.get(resource, 0.0) + float(amount)
    return merged


class ResourceLedger:
    """Per-commodity accounts plus transactional spend and transfer helpers."""

    def __init__(self, resources: Optional[Mapping[ResourceType, Resource]] = None) -> None:
        source = resources if resources is not None else default_resources()
        self._resources: Dict[ResourceType, Resource] = {
            resource_type: resource.copy() for resource_type, resource in source.items()
        }
        if ResourceType.FLUNDS not in self._resources:
            self._resources[ResourceType.FLUNDS] = Resource(ResourceType.FLUNDS, is_special=True)
        self.events: List[ResourceEvent] = []
        self.recent_construction_resources_sold = 0.0

    # ------------------------------------------------------------------
    def __contains__(self, resource: object) -> bool:
        try:
            return normalise_resource(resource) in self._resources  # type: ignore[arg-type]
        except KeyError:
            return False

    def __iter__(self):
        return iter(self._resources.values())

    def get(self, resource: ResourceType | str) -> Resource:
        return self._resources[normalise_resource(resource)]

    def find(self, resource: ResourceType | str) -> Optional[Resource]:
        try:
            return self.get(resource)
        except KeyError:
            return None

    def amount(self, resource: ResourceType | str) -> float:
        found = self.find(resource)
        return found.amount if found is not None else 0.0

    def set_amount(self, resource: ResourceType | str, amount: float) -> None:
        account = self.get(resource)
        value = float(amount)
        if account.type is not ResourceType.FLUNDS:
            value = max(0.0, min(account.capacity, value))
        account.amount = value

    @property
    def flunds(self) -> Resource:
        return self._resources[ResourceType.FLUNDS]

    def _log(self, resource: ResourceType, kind: ResourceEventKind, amount: float) -> None:
        self.events.append(ResourceEvent(resource, kind, float(amount)))

    def clear_events(self) -> None:
        self.events = []

    def events_of(self, kind: ResourceEventKind) -> List[ResourceEvent]:
        return [event for event in self.events if event.event is kind]

    # ------------------------------------------------------------------
    # Affordability checks
    def has_resources(self, costs: Mapping[ResourceType | str, float], allow_debt: bool = False) -> bool:
        """Return ``True`` if every cost can be covered, buying shortfalls.

        Nothing is mutated. Flunds are settled first; any other shortfall must
        fit inside the resource's buyable amount and the total purchase price
        must fit inside the flunds left after the direct flunds cost.
        """

        normalised = normalise_costs(costs)
        flunds_cost = normalised.get(ResourceType.FLUNDS, 0.0)
        flunds_left = self.flunds.amount - flunds_cost
        if flunds_left < -config.EPSILON and not allow_debt and flunds_cost > 0:
            return False

        purchase_cost = 0.0
        for resource_type, amount in normalised.items():
            if resource_type is ResourceType.FLUNDS:
                continue
            resource = self._resources.get(resource_type)
            if resource is None:
                return False
            shortfall = max(0.0, amount - resource.amount)
            if shortfall > config.EPSILON:
                buyable = min(shortfall, resource.buyable_amount)
                if buyable < shortfall - config.EPSILON:
                    return False
                purchase_cost += buyable * resource.effective_buy_price

        return purchase_cost == 0 or purchase_cost <= flunds_left + config.EPSILON or allow_debt

    def calculate_affordable_portion(
        self, costs: Mapping[ResourceType | str, float], allow_debt: bool = False
    ) -> float:
        """Return the largest uniform fraction of ``costs`` that is affordable.

        The fraction is limited first by the scarcest resource (stock plus what
        the market will still sell) and then, if the required purchases exceed
        the flunds on hand, by a binary search on the flunds balance.
        """

        normalised = normalise_costs(costs)
        flunds = self.flunds.amount
        total_cost = 0.0
        max_portion = 1.0

        for resource_type, amount in normalised.items():
            resource = self._resources.get(resource_type)
            if resource is None:
                return 0.0
            if resource_type is ResourceType.FLUNDS:
                total_cost += amount
                continue
            if amount <= 0:
                continue
            shortfall = max(0.0, amount - resource.amount)
            if shortfall > config.EPSILON:
                buyable = min(shortfall, resource.buyable_amount)
                total_cost += buyable * resource.effective_buy_price
                if buyable < shortfall - config.EPSILON:
                    max_portion = min(max_portion, (amount - shortfall + buyable) / amount)

        if total_cost <= 0 or total_cost <= flunds + config.EPSILON or allow_debt:
            return max(0.0, max_portion)

        low, high = 0.0, max_portion
        while high - low > config.EPSILON:
            middle = (low + high) / 2
            if self._portion_cost(normalised, middle) <= flunds:
                low = middle
            else:
                high = middle
        return low

    def _portion_cost(self, costs: Costs, portion: float) -> float:
        total = 0.0
        for resource_type, amount in costs.items():
            if resource_type is ResourceType.FLUNDS:
                total += amount * portion
                continue
            if amount <= 0:
                continue
            resource = self._resources[resource_type]
            shortfall = max(0.0, amount * portion - resource.amount)
            if shortfall > 0:
                total += min(shortfall, resource.buyable_amount) * resource.effective_buy_price
        return total

    # ------------------------------------------------------------------
    # Transactions
    def check_and_spend_resources(
        self, costs: Mapping[ResourceType | str, float], allow_debt: bool = False
    ) -> bool:
        """Debit every cost at once, or nothing at all.

        Negative entries are treated as earnings and credited through
        :meth:`transfer_resources_from`.
        """

        if not self.has_resources(costs, allow_debt):
            return False

        normalised = normalise_costs(costs)
        total_flunds = normalised.get(ResourceType.FLUNDS, 0.0)
        for resource_type, amount in normalised.items():
            if resource_type is ResourceType.FLUNDS:
                continue
            resource = self._resources[resource_type]
            if amount < 0:
                self.transfer_resources_from({resource_type: -amount}, ResourceEventKind.EARN)
                continue
            shortfall = max(0.0, amount - resource.amount)
            if shortfall > config.EPSILON:
                total_flunds += shortfall * resource.effective_buy_price
                resource.amount += shortfall
                resource.buyable_amount = max(0.0, resource.buyable_amount - shortfall)
            resource.amount = max(0.0, resource.amount - amount)
            self._log(resource_type, ResourceEventKind.CONSUME, amount)

        self.flunds.amount -= total_flunds
        return True

    def transfer_resources_from(
        self,
        resources: Mapping[ResourceType | str, float],
        reason: ResourceEventKind | str = ResourceEventKind.PRODUCE,
    ) -> Dict[ResourceType, float]:
        """Credit ``resources`` up to each account's auto-sell line.

        Whatever would push an account past ``floor(auto_sell_above * capacity)``
        is sold immediately. Returns the amount sold per resource.
        """

        kind = ResourceEventKind(reason)
        sold: Dict[ResourceType, float] = {}
        for resource_type, incoming in normalise_costs(resources).items():
            if incoming <= 0:
                continue
            account = self.get(resource_type)
            if resource_type is ResourceType.FLUNDS:
                account.amount += incoming
                if kind is not ResourceEventKind.CANCEL:
                    self._log(resource_type, kind, incoming)
                continue
            keep_limit = int(account.auto_sell_above * account.capacity)
            kept = max(0.0, min(keep_limit - account.amount, incoming))
            account.amount += kept
            if kind is not ResourceEventKind.CANCEL and kept > 0:
                self._log(resource_type, kind, kept)
            excess = incoming - kept
            if excess > 0:
                self.sell(account, excess)
                sold[resource_type] = excess
        return sold

    def produce(self, resource: ResourceType | str, amount: float) -> None:
        account = self.get(resource)
        account.amount = min(account.capacity, account.amount + float(amount))
        self._log(account.type, ResourceEventKind.PRODUCE, amount)

    def earn(self, resource: ResourceType | str, amount: float) -> None:
        account = self.get(resource)
        if account.type is ResourceType.FLUNDS:
            account.amount += float(amount)
        else:
            account.amount = min(account.capacity, account.amount + float(amount))
        self._log(account.type, ResourceEventKind.EARN, amount)

    def consume(self, resource: ResourceType | str, amount: float) -> None:
        """Unconditionally debit ``amount``; only flunds may go negative."""

        account = self.get(resource)
        account.amount -= float(amount)
        if account.type is not ResourceType.FLUNDS and account.amount < 0:
            account.amount = 0.0
        self._log(account.type, ResourceEventKind.CONSUME, amount)
        if account.type is not ResourceType.FLUNDS:
            self.auto_buy(account)

    # ------------------------------------------------------------------
    # Trading primitives
    def sell(self, account: Resource, amount: float) -> float:
        """Sell ``amount`` already removed from (or never added to) ``account``."""

        proceeds = account.effective_sell_price * amount
        self.flunds.amount += proceeds
        if account.type.value in config.CONSTRUCTION_RESOURCES:
            self.recent_construction_resources_sold += amount * account.sell_price
        self._log(account.type, ResourceEventKind.SELL, amount)
        account.buyable_amount = min(account.buy_capacity, account.buyable_amount + amount)
        return proceeds

    def auto_sell(self, account: Resource) -> float:
        limit = int(account.auto_sell_above * account.capacity)
        if account.amount <= limit:
            return 0.0
        excess = account.amount - limit
        self.sell(account, excess)
        account.amount -= excess
        return excess

    def auto_buy(self, account: Resource) -> float:
        """Buy up to the auto-buy line without going into debt.

        Purchases come out of the market's ``buyable_amount``.
        """

        target = int(account.auto_buy_below * account.capacity)
        if account.amount >= target or self.flunds.amount <= 0:
            return 0.0
        price = account.effective_buy_price
        if price <= 0:
            logger.error("Resource %s has a buy price of 0; skipping auto-buy", account.type.value)
            return 0.0
        affordable = min(target - account.amount, self.flunds.amount / price, account.buyable_amount)
        if affordable <= 0:
            return 0.0
        self.flunds.amount -= affordable * price
        account.amount += affordable
        account.buyable_amount -= affordable
        self._log(account.type, ResourceEventKind.BUY, affordable)
        return affordable

    def set_trade_thresholds(
        self,
        resource: ResourceType | str,
        *,
        buy_below: Optional[float] = None,
        sell_above: Optional[float] = None,
    ) -> Resource:
        """Move the auto-trade thresholds without letting them cross.

        A dragged threshold stops at the other one, so ``auto_buy_below`` never
        exceeds ``auto_sell_above``.
        """

        account = self.get(resource)
        if buy_below is not None:
            account.auto_buy_below = min(max(0.0, float(buy_below)), account.auto_sell_above)
        if sell_above is not None:
            account.auto_sell_above = max(min(1.0, float(sell_above)), account.auto_buy_below)
        return account

    # ------------------------------------------------------------------
    def reset_rates(self, resources: Optional[Iterable[ResourceType]] = None) -> None:
        targets = resources if resources is not None else list(self._resources)
        for resource_type in targets:
            account = self._resources[resource_type]
            account.production_rate = 0.0
            account.consumption_rate = 0.0

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        return {
            resource.type.value: {
                "amount": resource.amount,
                "capacity": resource.capacity,
                "production_rate": resource.production_rate,
                "consumption_rate": resource.consumption_rate,
                "auto_buy_below": resource.auto_buy_below,
                "auto_sell_above": resource.auto_sell_above,
                "buyable_amount": resource.buyable_amount,
            }
            for resource in self._resources.values()
        }

    def bulk_export(self) -> List[Dict[str, object]]:
        exported: List[Dict[str, object]] = []
        for resource in self._resources.values():
            entry: Dict[str, object] = {"type": resource.type.value}
            for field_name in PERSISTED_FIELDS:
                entry[field_name] = getattr(resource, field_name)
            exported.append(entry)
        return exported

    def bulk_load(self, entries: Iterable[Mapping[str, object]]) -> List[str]:
        """Restore persisted accounts; unknown resource ids are returned, not raised."""

        skipped: List[str] = []
        for entry in entries:
            raw_type = str(entry.get("type", ""))
            try:
                resource_type = normalise_resource(raw_type)
            except KeyError:
                skipped.append(raw_type)
                continue
            template = self._resources.get(resource_type)
            if template is None:
                skipped.append(raw_type)
                continue
            overrides = {
                field_name: float(entry[field_name])  # type: ignore[arg-type]
                for field_name in PERSISTED_FIELDS
                if field_name in entry
            }
            self._resources[resource_type] = template.copy(**overrides)
        return skipped
