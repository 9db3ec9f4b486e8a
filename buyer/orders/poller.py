"""
Order pollers: bounded loops over OrderGateway.get_status().

  PreparationPoller  waits until the service has prepared the payment tx
  StatusMonitor      waits (after submission) for payment/phase to complete

Shared loop rules:
  - every attempt is one get_status() call
  - phase / payment status are printed only when they change
  - remote errors consume an attempt; the last attempt's error propagates
  - cancel_event (asyncio.Event) is checked before each attempt and raced
    against every sleep
  - deadline_sec caps wall-clock time regardless of attempts left
  - delay grows by `backoff` per attempt, capped at max_delay_ms, +/- jitter
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional

from buyer.config import (
    MONITOR_DELAY_MS,
    MONITOR_MAX_ATTEMPTS,
    POLL_DEADLINE_SEC,
    PREPARATION_DELAY_MS,
    PREPARATION_MAX_ATTEMPTS,
)
from buyer.errors import (
    BudgetExhausted,
    ConfirmationTimeout,
    PaymentTerminallyFailed,
    PollCancelled,
    PreparationTimeout,
    RemoteError,
)
from buyer.orders.models import Order


class _StatusLoop:
    """Attempt-bounded get_status loop. Subclasses decide when to stop."""

    TAG = "[POLL]"

    def __init__(self, gateway, max_attempts: int, delay_ms: int,
                 backoff: float = 1.0, max_delay_ms: Optional[int] = None,
                 jitter: float = 0.0, deadline_sec: float = POLL_DEADLINE_SEC,
                 cancel_event: Optional[asyncio.Event] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        if backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        if not 0.0 <= jitter < 1.0:
            raise ValueError("jitter must be in [0, 1)")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms
        self.backoff = backoff
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self.deadline_sec = deadline_sec
        self.cancel_event = cancel_event
        self._sleep = sleep
        self._clock = clock

        self._last_phase: Optional[str] = None
        self._last_status: Optional[str] = None

        # Metrics
        self._calls = 0
        self._errors = 0

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _inspect(self, order: Order):
        """Raise on terminal states that will never satisfy _done()."""

    def _done(self, order: Order) -> bool:
        raise NotImplementedError

    def _timeout(self, attempts: int, reason: str = "") -> BudgetExhausted:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, order_id: str) -> Order:
        self._last_phase = None
        self._last_status = None
        started = self._clock()
        attempt = 0

        while attempt < self.max_attempts:
            self._check_cancelled(attempt)
            if self._deadline_passed(started):
                raise self._timeout(attempt, f"deadline of {self.deadline_sec}s exceeded")

            attempt += 1
            self._calls += 1
            try:
                order = await self.gateway.get_status(order_id)
            except RemoteError as e:
                self._errors += 1
                if attempt >= self.max_attempts:
                    raise
                print(f"{self.TAG} Error polling order status "
                      f"(attempt {attempt}/{self.max_attempts}): {e}")
                await self._pause(attempt, started)
                continue

            self._report(order)
            self._inspect(order)
            if self._done(order):
                return order

            if attempt < self.max_attempts:
                await self._pause(attempt, started)

        raise self._timeout(attempt)

    def _report(self, order: Order):
        """Change-only phase / payment status notifications."""
        if order.phase != self._last_phase:
            print(f"{self.TAG} Order phase: {order.phase}")
            self._last_phase = order.phase
        if order.payment.status != self._last_status:
            print(f"{self.TAG} Payment status: {order.payment.status}")
            self._last_status = order.payment.status

    def next_delay(self, attempt: int) -> float:
        """Seconds to wait after `attempt` (1-based)."""
        delay = self.delay_ms * (self.backoff ** (attempt - 1))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0) / 1000.0

    async def _pause(self, attempt: int, started: float):
        seconds = self.next_delay(attempt)
        if self.deadline_sec:
            remaining = self.deadline_sec - (self._clock() - started)
            seconds = max(0.0, min(seconds, remaining))

        if self.cancel_event is None:
            await self._sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise PollCancelled(attempt)

    def _check_cancelled(self, attempts: int):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PollCancelled(attempts)

    def _deadline_passed(self, started: float) -> bool:
        return bool(self.deadline_sec) and self._clock() - started >= self.deadline_sec

    def metrics(self) -> dict:
        return {"calls": self._calls, "errors": self._errors}


class PreparationPoller(_StatusLoop):
    """Poll until payment.preparation.serializedTransaction shows up."""

    TAG = "[POLL]"

    def __init__(self, gateway, max_attempts: int = PREPARATION_MAX_ATTEMPTS,
                 delay_ms: int = PREPARATION_DELAY_MS, **kwargs):
        super().__init__(gateway, max_attempts, delay_ms, **kwargs)

    async def poll(self, order_id: str) -> Order:
        """Order snapshot carrying a serialized transaction.

        Raises PaymentTerminallyFailed as soon as payment reads failed/canceled,
        PreparationTimeout when the budget runs out.
        """
        print(f"{self.TAG} Waiting for payment preparation on order {order_id} "
              f"(up to {self.max_attempts} attempts)")
        order = await self._run(order_id)
        print(f"{self.TAG} Payment preparation available for order {order_id}")
        return order

    def _inspect(self, order: Order):
        if order.has_preparation:
            return
        if order.payment_failed:
            raise PaymentTerminallyFailed(order.payment.status)

    def _done(self, order: Order) -> bool:
        return order.has_preparation

    def _timeout(self, attempts: int, reason: str = "") -> BudgetExhausted:
        return PreparationTimeout(attempts, reason)


class StatusMonitor(_StatusLoop):
    """Watch a paid order until the service reports it complete."""

    TAG = "[MONITOR]"

    def __init__(self, gateway, max_attempts: int = MONITOR_MAX_ATTEMPTS,
                 delay_ms: int = MONITOR_DELAY_MS, **kwargs):
        super().__init__(gateway, max_attempts, delay_ms, **kwargs)

    async def watch(self, order_id: str) -> Order:
        """Poll to completion, then fetch one final snapshot for the summary."""
        print(f"{self.TAG} Monitoring order lifecycle for {order_id}...")
        stopping = await self._run(order_id)
        self._calls += 1
        try:
            return await self.gateway.get_status(order_id)
        except RemoteError as e:
            self._errors += 1
            print(f"{self.TAG} Final status fetch failed, using last snapshot: {e}")
            return stopping

    def _done(self, order: Order) -> bool:
        return order.is_complete

    def _timeout(self, attempts: int, reason: str = "") -> BudgetExhausted:
        return ConfirmationTimeout(attempts, reason)
