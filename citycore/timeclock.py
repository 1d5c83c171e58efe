"""Wall-clock driven tick scheduling for a city."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict

from . import config

if TYPE_CHECKING:  # pragma: no cover
    from .city import City


logger = logging.getLogger(__name__)


@dataclass
class AdvanceResult:
    long_ticks: int = 0
    short_ticks: int = 0
    more_pending: bool = False

    @property
    def caught_up(self) -> bool:
        return not self.more_pending

    def to_dict(self) -> Dict[str, object]:
        return {
            "long_ticks": self.long_ticks,
            "short_ticks": self.short_ticks,
            "fast_forward": self.more_pending,
        }


class TickClock:
    """Runs the short and long ticks owed to a city up to ``now_ms``.

    At most ``max_long_ticks`` long ticks are processed per call so a city
    that was left alone for days catches up over several calls instead of
    blocking; callers can use ``more_pending`` to show a fast-forward state.
    """

    def __init__(
        self,
        city: "City",
        long_tick_ms: int = config.LONG_TICK_TIME,
        short_tick_ms: int = config.SHORT_TICK_TIME,
        max_long_ticks: int = config.MAX_LONG_TICKS_PER_ADVANCE,
    ) -> None:
        if long_tick_ms <= 0 or short_tick_ms <= 0:
            raise ValueError("Tick lengths must be positive")
        if max_long_ticks <= 0:
            raise ValueError("max_long_ticks must be positive")
        self.city = city
        self.long_tick_ms = int(long_tick_ms)
        self.short_tick_ms = int(short_tick_ms)
        self.max_long_ticks = int(max_long_ticks)

    def start(self, now_ms: int) -> None:
        """Anchor a brand new city's tick counters at ``now_ms``."""

        self.city.last_long_tick = int(now_ms)
        self.city.last_short_tick = int(now_ms)

    def pending_long_ticks(self, now_ms: int) -> int:
        return max(0, (int(now_ms) - self.city.last_long_tick) // self.long_tick_ms)

    # ------------------------------------------------------------------
    def _run_short_ticks_until(self, boundary: int) -> int:
        city = self.city
        count = 0
        while city.last_short_tick + self.short_tick_ms <= boundary:
            city.last_short_tick += self.short_tick_ms
            city.on_short_tick()
            count += 1
        return count

    def advance(self, now_ms: int) -> AdvanceResult:
        city = self.city
        now_ms = int(now_ms)
        result = AdvanceResult()

        if city.time_freeze:
            # Frozen time slides the counters forward without simulating.
            skipped = max(0, now_ms - city.last_short_tick)
            city.last_short_tick += skipped
            city.last_long_tick += skipped
            return result

        while city.last_long_tick + self.long_tick_ms <= now_ms and result.long_ticks < self.max_long_ticks:
            boundary = city.last_long_tick + self.long_tick_ms
            result.short_ticks += self._run_short_ticks_until(boundary)
            city.last_long_tick = boundary
            result.long_ticks += 1
            caught_up = boundary + self.long_tick_ms > now_ms
            city.on_long_tick(caught_up=caught_up)

        result.more_pending = city.last_long_tick + self.long_tick_ms <= now_ms
        if result.more_pending:
            logger.info(
                "Fast-forwarding: %d long ticks still pending", self.pending_long_ticks(now_ms)
            )
        else:
            result.short_ticks += self._run_short_ticks_until(now_ms)
        return result
