"""A live game session: one city, its clock and where it is saved."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from .city import City
from .persistence import BaseCityStore, StaleWriteError
from .timeclock import AdvanceResult, TickClock

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class GameSession:
    """Owns a city exclusively and serialises every access to it.

    The session is passed explicitly to the API layer and the scheduler;
    nothing looks it up globally.
    """

    def __init__(
        self,
        city: City,
        store: Optional[BaseCityStore] = None,
        clock: Optional[TickClock] = None,
        now: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self.city = city
        self.store = store
        self.clock = clock or TickClock(city)
        self.now = now
        self.lock = threading.RLock()
        self.fast_forwarding = False
        self.save_in_progress = False
        self.save_deferred = False
        self.last_save_error: Optional[str] = None

    @classmethod
    def new_city(
        cls,
        width: int,
        height: int,
        store: Optional[BaseCityStore] = None,
        now: Callable[[], int] = _wall_clock_ms,
        **city_kwargs,
    ) -> "GameSession":
        city = City(width, height, **city_kwargs).start_new()
        session = cls(city, store=store, now=now)
        session.clock.start(now())
        return session

    # ------------------------------------------------------------------
    def advance(self, now_ms: Optional[int] = None) -> AdvanceResult:
        """Run whatever ticks are owed, then save if the city is caught up."""

        with self.lock:
            result = self.clock.advance(self.now() if now_ms is None else now_ms)
            self.fast_forwarding = result.more_pending
            if result.long_ticks:
                logger.debug(
                    "Advanced %d long / %d short ticks (fast_forward=%s)",
                    result.long_ticks,
                    result.short_ticks,
                    result.more_pending,
                )
            if not result.more_pending and (result.long_ticks or result.short_ticks or self.save_deferred):
                self.full_save()
            return result

    def record_action(self) -> None:
        """Stamp a player action so older copies of the city cannot overwrite it."""

        with self.lock:
            self.city.last_saved_action_timestamp = self.now()

    def full_save(self) -> bool:
        """Save the city now, or mark the save deferred if one is already running.

        A :class:`StaleWriteError` from the store is propagated so the caller can
        reload the newer copy.
        """

        if self.store is None:
            return False
        with self.lock:
            if self.save_in_progress:
                self.save_deferred = True
                logger.debug("Save already in progress; deferring")
                return False
            self.save_in_progress = True
        try:
            with self.lock:
                self.store.save_city(self.city)
            self.save_deferred = False
            self.last_save_error = None
            return True
        except StaleWriteError as exc:
            self.last_save_error = str(exc)
            logger.warning("Save rejected: %s", exc)
            raise
        finally:
            self.save_in_progress = False

    def snapshot(self) -> Dict[str, object]:
        with self.lock:
            payload = self.city.snapshot()
            payload["fast_forward"] = self.fast_forwarding
            payload["save_deferred"] = self.save_deferred
            return payload
