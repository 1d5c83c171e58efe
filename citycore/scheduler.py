"""Background scheduler for running a session's tick loop."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Optional

from .game_state import GameSession
from .persistence import StaleWriteError

logger = logging.getLogger(__name__)

_loop_threads: Dict[int, threading.Thread] = {}
_stop_events: Dict[int, threading.Event] = {}
_loop_lock = threading.Lock()


async def _run_tick_loop(session: GameSession, interval: float, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            result = session.advance()
        except StaleWriteError:
            logger.error("Stopping tick loop: a newer copy of %s was saved elsewhere", session.city.name)
            return
        except Exception:
            logger.exception("Unexpected error while advancing %s", session.city.name)
        else:
            if result.more_pending:
                # Keep catching up without waiting a full interval.
                await asyncio.sleep(0)
                continue
        await asyncio.sleep(interval)


def ensure_tick_loop(session: GameSession, interval: float = 1.0) -> threading.Thread:
    """Start the asynchronous tick loop for ``session`` if it is not already running."""

    key = id(session)
    with _loop_lock:
        thread = _loop_threads.get(key)
        if thread and thread.is_alive():
            return thread

        stop = threading.Event()

        def runner() -> None:
            asyncio.run(_run_tick_loop(session, interval, stop))

        thread = threading.Thread(target=runner, name=f"city-tick-loop-{key}", daemon=True)
        _loop_threads[key] = thread
        _stop_events[key] = stop
        thread.start()
        return thread


def stop_tick_loop(session: GameSession, timeout: Optional[float] = None) -> None:
    """Ask the loop to finish after its current tick; a tick is never interrupted."""

    key = id(session)
    with _loop_lock:
        stop = _stop_events.pop(key, None)
        thread = _loop_threads.pop(key, None)
    if stop is not None:
        stop.set()
    if thread is not None and thread is not threading.current_thread():
        thread.join(timeout)
