"""Deferred continuations for DELAY nodes.

The engine only talks to the `Scheduler` protocol, so tests can drive delays
with a virtual clock instead of wall-clock sleeps.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Continuation = Callable[[], Awaitable[None]]


class Scheduler(Protocol):
    def schedule(
        self, run_id: str, node_id: str, delay_ms: int, callback: Continuation
    ) -> None: ...

    def cancel(self, run_id: str, node_id: str) -> int: ...

    def cancel_all(self, run_id: str) -> int: ...

    def pending(self, run_id: str) -> int: ...


class AsyncioScheduler:
    """Fire-once timers on the running event loop, keyed by (run id, node id).

    A continuation leaves the pending table before its callback runs: cancelling
    never interrupts a continuation that already started, and a cancelled one
    never fires.
    """

    def __init__(self) -> None:
        self._timers: dict[tuple[str, str], list[asyncio.Task[None]]] = {}
        self._running: set[asyncio.Task[None]] = set()

    def schedule(self, run_id: str, node_id: str, delay_ms: int, callback: Continuation) -> None:
        key = (run_id, node_id)
        logger.info(
            "Scheduling continuation",
            extra={"run_id": run_id, "node_id": node_id, "delay_ms": delay_ms},
        )
        task = asyncio.get_running_loop().create_task(
            self._fire_later(key, delay_ms, callback), name=f"delay-{run_id}-{node_id}"
        )
        self._timers.setdefault(key, []).append(task)
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _fire_later(
        self, key: tuple[str, str], delay_ms: int, callback: Continuation
    ) -> None:
        await asyncio.sleep(delay_ms / 1000)
        current = asyncio.current_task()
        tasks = self._timers.get(key, [])
        if current not in tasks:
            return
        tasks.remove(current)  # type: ignore[arg-type]
        if not tasks:
            del self._timers[key]
        await callback()

    def cancel(self, run_id: str, node_id: str) -> int:
        tasks = self._timers.pop((run_id, node_id), [])
        for task in tasks:
            task.cancel()
        return len(tasks)

    def cancel_all(self, run_id: str) -> int:
        cancelled = 0
        for key in [k for k in self._timers if k[0] == run_id]:
            cancelled += self.cancel(*key)
        if cancelled:
            logger.info("Cancelled continuations", extra={"run_id": run_id, "count": cancelled})
        return cancelled

    def pending(self, run_id: str) -> int:
        return sum(len(tasks) for key, tasks in self._timers.items() if key[0] == run_id)

    async def shutdown(self) -> None:
        """Cancel every timer and in-flight continuation (process stop)."""

        self._timers.clear()
        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
