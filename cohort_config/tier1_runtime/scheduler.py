"""
cohort_config.tier1_runtime.scheduler
──────────────────────────────────────
Deferral to the next scheduling turn. The engine never performs persistence
writes inside a resolution pass; it hands a callback to a Scheduler, which
runs it after the pass (and anything else queued on the same turn) returns.

Backends:
  - asyncio (default) — loop.call_soon on the running event loop
  - manual            — callbacks queue until run_pending() is called (tests)

Configure via: COHORT_SCHEDULER_BACKEND=asyncio|manual
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Protocol, runtime_checkable

from cohort_config.tier0_core.errors import ConfigurationError


# ── Protocol ───────────────────────────────────────────────────────────────

@runtime_checkable
class Scheduler(Protocol):
    """Runs a callback on a later turn, never synchronously inside defer()."""

    def defer(self, callback: Callable[[], None]) -> None: ...


# ── asyncio provider ───────────────────────────────────────────────────────

class AsyncioScheduler:
    """
    Defers onto an asyncio event loop with call_soon. Without an explicit
    loop, the loop running at defer() time is used.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def defer(self, callback: Callable[[], None]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(callback)


# ── Manual provider (tests) ────────────────────────────────────────────────

class ManualScheduler:
    """
    Queues callbacks until run_pending() drains them. Makes "the next turn"
    explicit in tests.
    """

    def __init__(self) -> None:
        self._queue: deque[Callable[[], None]] = deque()

    def defer(self, callback: Callable[[], None]) -> None:
        self._queue.append(callback)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run_pending(self, max_turns: int = 100) -> int:
        """
        Run queued callbacks, including ones they defer in turn, until the
        queue is empty. Returns the number of callbacks run.
        """
        ran = 0
        for _ in range(max_turns):
            if not self._queue:
                break
            batch, self._queue = self._queue, deque()
            for callback in batch:
                callback()
                ran += 1
        return ran


# ── Provider factory ───────────────────────────────────────────────────────

def make_scheduler(backend: str) -> Scheduler:
    backend = backend.lower()
    if backend == "asyncio":
        return AsyncioScheduler()
    if backend == "manual":
        return ManualScheduler()
    raise ConfigurationError(
        user_message=f"Unknown COHORT_SCHEDULER_BACKEND: {backend!r}. "
        "Supported: asyncio, manual"
    )


__all__ = ["Scheduler", "AsyncioScheduler", "ManualScheduler", "make_scheduler"]
