"""Preparation poller and post-payment monitor: stop conditions and budgets."""

import asyncio

import pytest

from buyer.errors import (
    ConfirmationTimeout,
    PaymentTerminallyFailed,
    PollCancelled,
    PreparationTimeout,
    RemoteUnreachable,
)
from buyer.orders.poller import PreparationPoller, StatusMonitor
from buyer.orders.models import Order


def snapshot(phase="payment", status="awaiting-payment", tx=""):
    payment = {"status": status, "method": "base-sepolia", "currency": "usdc"}
    if tx:
        payment["preparation"] = {"serializedTransaction": tx}
    return {"order": {"orderId": "ord-1", "phase": phase,
                      "quote": {"status": "valid"}, "payment": payment}}


class ScriptedGateway:
    """get_status() walks a script of payloads/exceptions; the last entry repeats."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def get_status(self, order_id):
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return Order.from_response(step)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class StepClock:
    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def poller(gateway, **kw):
    kw.setdefault("delay_ms", 0)
    kw.setdefault("deadline_sec", 0)
    return PreparationPoller(gateway, **kw)


def monitor(gateway, **kw):
    kw.setdefault("delay_ms", 0)
    kw.setdefault("deadline_sec", 0)
    return StatusMonitor(gateway, **kw)


# ----------------------------------------------------------------------
# PreparationPoller
# ----------------------------------------------------------------------

def test_returns_on_first_prepared_snapshot():
    gw = ScriptedGateway([snapshot(), snapshot(), snapshot(tx="0x02c0"), snapshot()])
    order = asyncio.run(poller(gw, max_attempts=15).poll("ord-1"))
    assert order.serialized_transaction == "0x02c0"
    assert gw.calls == 3


def test_terminal_payment_status_stops_immediately():
    gw = ScriptedGateway([snapshot(), snapshot(status="failed")])
    with pytest.raises(PaymentTerminallyFailed, match="failed"):
        asyncio.run(poller(gw, max_attempts=15).poll("ord-1"))
    assert gw.calls == 2


def test_canceled_payment_is_terminal():
    gw = ScriptedGateway([snapshot(status="canceled")])
    with pytest.raises(PaymentTerminallyFailed, match="canceled"):
        asyncio.run(poller(gw).poll("ord-1"))
    assert gw.calls == 1


def test_exhaustion_uses_exactly_max_attempts():
    gw = ScriptedGateway([snapshot()])
    with pytest.raises(PreparationTimeout, match="after 4 attempts") as exc:
        asyncio.run(poller(gw, max_attempts=4).poll("ord-1"))
    assert exc.value.attempts == 4
    assert gw.calls == 4


def test_errors_consume_attempts_until_last():
    gw = ScriptedGateway([RemoteUnreachable("get order status"), snapshot(tx="0x02c0")])
    p = poller(gw, max_attempts=3)
    order = asyncio.run(p.poll("ord-1"))
    assert order.has_preparation
    assert p.metrics() == {"calls": 2, "errors": 1}


def test_error_on_last_attempt_propagates():
    gw = ScriptedGateway([snapshot(), RemoteUnreachable("get order status")])
    with pytest.raises(RemoteUnreachable):
        asyncio.run(poller(gw, max_attempts=3).poll("ord-1"))
    assert gw.calls == 3


def test_change_only_notifications(capsys):
    gw = ScriptedGateway([
        snapshot(phase="quote", status="requires-quote"),
        snapshot(phase="payment", status="requires-quote"),
        snapshot(phase="payment", status="awaiting-payment"),
        snapshot(phase="payment", status="awaiting-payment"),
        snapshot(phase="payment", status="awaiting-payment", tx="0x02c0"),
    ])
    asyncio.run(poller(gw).poll("ord-1"))
    out = capsys.readouterr().out
    assert out.count("Order phase:") == 2
    assert out.count("Payment status:") == 2
    assert "[POLL] Order phase: quote" in out
    assert "[POLL] Payment status: awaiting-payment" in out


def test_sleeps_between_attempts_only():
    sleep = SleepRecorder()
    gw = ScriptedGateway([snapshot(), snapshot(), snapshot(tx="0x02c0")])
    asyncio.run(poller(gw, delay_ms=2000, sleep=sleep).poll("ord-1"))
    assert sleep.delays == [2.0, 2.0]


def test_no_sleep_after_final_attempt():
    sleep = SleepRecorder()
    gw = ScriptedGateway([snapshot()])
    with pytest.raises(PreparationTimeout):
        asyncio.run(poller(gw, max_attempts=3, delay_ms=100, sleep=sleep).poll("ord-1"))
    assert sleep.delays == [0.1, 0.1]


def test_backoff_with_cap():
    p = poller(ScriptedGateway([snapshot()]), delay_ms=1000, backoff=2.0, max_delay_ms=3000)
    assert [p.next_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_jitter_stays_in_band():
    p = poller(ScriptedGateway([snapshot()]), delay_ms=1000, jitter=0.25)
    for _ in range(50):
        assert 0.75 <= p.next_delay(1) <= 1.25


def test_rejects_bad_parameters():
    gw = ScriptedGateway([snapshot()])
    with pytest.raises(ValueError):
        PreparationPoller(gw, max_attempts=0)
    with pytest.raises(ValueError):
        PreparationPoller(gw, delay_ms=-1)
    with pytest.raises(ValueError):
        PreparationPoller(gw, backoff=0.5)


def test_cancel_before_first_attempt():
    async def go():
        event = asyncio.Event()
        event.set()
        gw = ScriptedGateway([snapshot()])
        with pytest.raises(PollCancelled):
            await poller(gw, cancel_event=event).poll("ord-1")
        return gw.calls

    assert asyncio.run(go()) == 0


def test_cancel_interrupts_sleep():
    async def go():
        event = asyncio.Event()
        gw = ScriptedGateway([snapshot()])
        p = poller(gw, max_attempts=10, delay_ms=60_000, cancel_event=event)
        task = asyncio.ensure_future(p.poll("ord-1"))
        await asyncio.sleep(0.05)
        event.set()
        with pytest.raises(PollCancelled):
            await asyncio.wait_for(task, timeout=5)
        return gw.calls

    assert asyncio.run(go()) == 1


def test_deadline_caps_wall_clock():
    gw = ScriptedGateway([snapshot()])
    p = poller(gw, max_attempts=50, deadline_sec=5, clock=StepClock(3), sleep=SleepRecorder())
    with pytest.raises(PreparationTimeout, match="deadline") as exc:
        asyncio.run(p.poll("ord-1"))
    assert exc.value.attempts == 1
    assert gw.calls == 1


# ----------------------------------------------------------------------
# StatusMonitor
# ----------------------------------------------------------------------

def test_monitor_stops_on_phase_complete_and_refetches():
    final = snapshot(phase="completed", status="completed")
    final["order"]["lineItems"] = [{"metadata": {"name": "Cable"}}]
    gw = ScriptedGateway([snapshot(), snapshot(phase="complete"), final])
    order = asyncio.run(monitor(gw).watch("ord-1"))
    assert gw.calls == 3
    assert order.product_name() == "Cable"


def test_monitor_stops_on_payment_completed():
    gw = ScriptedGateway([snapshot(phase="delivery", status="completed")])
    order = asyncio.run(monitor(gw).watch("ord-1"))
    assert gw.calls == 2
    assert order.is_complete


def test_monitor_falls_back_to_stopping_snapshot():
    gw = ScriptedGateway([snapshot(phase="completed"), RemoteUnreachable("get order status")])
    order = asyncio.run(monitor(gw).watch("ord-1"))
    assert order.phase == "completed"
    assert gw.calls == 2


def test_monitor_exhaustion(capsys):
    gw = ScriptedGateway([snapshot(phase="delivery")])
    with pytest.raises(ConfirmationTimeout, match="after 10 attempts"):
        asyncio.run(monitor(gw).watch("ord-1"))
    assert gw.calls == 10
    out = capsys.readouterr().out
    assert out.count("[MONITOR] Order phase: delivery") == 1
