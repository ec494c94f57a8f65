"""Pool of in-flight "wait for this quote to be paid" tasks.

The pool owns every wait task it spawns and merges their results into one
pull-based event stream:
- Each pull harvests a resolved wait, removes it and emits its result.
- `None` results (timed out, not paid, failed) are dropped silently.
- When nothing has resolved, the reader suspends for a short idle interval.
- No ordering across quotes; each quote's resolution is seen at most once.

The lock guards only mutations of the task set and is never held across a
suspension point.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from athenut_mint.payment.base import WaitPaymentResponse
from athenut_mint.payment.events import PaymentReceived

logger = logging.getLogger(__name__)

WaitFn = Callable[[], Awaitable[WaitPaymentResponse | None]]
WaitTask = asyncio.Task[WaitPaymentResponse | None]

DEFAULT_IDLE_INTERVAL = 0.1


@dataclass
class PendingWait:
    """One registered wait."""

    quote_id: str
    timeout: float | None
    started_at: float = field(default_factory=time.monotonic)
    task: WaitTask | None = field(default=None, repr=False)


class PendingWaitPool:
    """Owns concurrently running waits and exposes their merged results.

    Usage:
        pool = PendingWaitPool()
        await pool.register(quote_id, lambda: wait_for_quote(quote))

        async for event in pool.events():
            credit(event)
    """

    def __init__(self, idle_interval: float = DEFAULT_IDLE_INTERVAL):
        if idle_interval <= 0:
            raise ValueError("idle_interval must be positive")
        self.idle_interval = idle_interval
        self._waits: dict[str, PendingWait] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._waits)

    def __contains__(self, quote_id: object) -> bool:
        return quote_id in self._waits

    def pending_quote_ids(self) -> list[str]:
        return list(self._waits)

    async def register(
        self,
        quote_id: str,
        wait_fn: WaitFn,
        timeout: float | None = None,
    ) -> PendingWait:
        """Spawn `wait_fn` and track it until it resolves.

        A quote that is already pending is not registered twice; the existing
        wait is returned.
        """
        async with self._lock:
            existing = self._waits.get(quote_id)
            if existing is not None:
                logger.debug("Quote %s already has a pending wait", quote_id)
                return existing

            wait = PendingWait(quote_id=quote_id, timeout=timeout)
            wait.task = asyncio.create_task(
                self._run(wait, wait_fn),
                name=f"wait-quote-{quote_id}",
            )
            self._waits[quote_id] = wait

        logger.debug("Registered wait for quote %s (timeout=%s)", quote_id, timeout)
        return wait

    async def _run(self, wait: PendingWait, wait_fn: WaitFn) -> WaitPaymentResponse | None:
        if wait.timeout is None:
            return await wait_fn()
        try:
            return await asyncio.wait_for(wait_fn(), timeout=wait.timeout)
        except asyncio.TimeoutError:
            logger.info("Wait for quote %s expired after %ss", wait.quote_id, wait.timeout)
            return None

    async def _harvest(self) -> tuple[str, WaitTask] | None:
        """Remove one resolved wait and return its quote id and finished task."""
        async with self._lock:
            for quote_id, wait in self._waits.items():
                if wait.task is not None and wait.task.done():
                    del self._waits[quote_id]
                    return quote_id, wait.task
        return None

    async def next_result(self) -> WaitPaymentResponse | None:
        """Pull once: return a resolved result, or None after one idle interval."""
        harvested = await self._harvest()
        if harvested is None:
            tasks = [w.task for w in list(self._waits.values()) if w.task is not None]
            if tasks:
                await asyncio.wait(
                    tasks,
                    timeout=self.idle_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            else:
                await asyncio.sleep(self.idle_interval)
            harvested = await self._harvest()
            if harvested is None:
                return None

        quote_id, task = harvested
        if task.cancelled():
            logger.warning("Wait for quote %s was cancelled", quote_id)
            return None
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Wait for quote %s failed: %s",
                quote_id,
                exc,
                exc_info=exc,
            )
            return None
        return task.result()

    async def events(
        self,
        should_stop: Callable[[], bool] | None = None,
    ) -> AsyncIterator[PaymentReceived]:
        """Yield PaymentReceived for every wait that resolves with a payment.

        Runs until `should_stop` returns True (checked between pulls), or forever.
        """
        while should_stop is None or not should_stop():
            result = await self.next_result()
            if result is not None:
                yield PaymentReceived.from_response(result)

    async def aclose(self) -> None:
        """Cancel every outstanding wait (shutdown only)."""
        async with self._lock:
            waits = list(self._waits.values())
            self._waits.clear()
        for wait in waits:
            if wait.task is not None:
                wait.task.cancel()
        tasks = [w.task for w in waits if w.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
