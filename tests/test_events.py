"""Tests for the domain event bus."""

import asyncio

import pytest

from highnoon_rtc.core.events import EventBus


def test_handlers_run_in_subscription_order():
    bus = EventBus()
    calls = []
    bus.subscribe("packet", lambda p: calls.append(("first", p)))
    bus.subscribe("packet", lambda p: calls.append(("second", p)))

    bus.publish("packet", 7)

    assert calls == [("first", 7), ("second", 7)]


def test_decorator_subscription():
    bus = EventBus()
    calls = []

    @bus.subscribe("relay")
    def on_relay(payload):
        calls.append(payload)

    bus.publish("relay", {"a": 1})

    assert calls == [{"a": 1}]
    assert bus.listener_count("relay") == 1


def test_handler_errors_do_not_reach_publisher(caplog):
    bus = EventBus()
    calls = []

    def broken(payload):
        raise ValueError("boom")

    bus.subscribe("packet", broken)
    bus.subscribe("packet", calls.append)

    bus.publish("packet", 1)

    assert calls == [1]
    assert "boom" in caplog.text


def test_unsubscribe():
    bus = EventBus()
    calls = []
    bus.subscribe("packet", calls.append)

    bus.unsubscribe("packet", calls.append)
    bus.unsubscribe("packet", calls.append)
    bus.publish("packet", 1)

    assert calls == []


@pytest.mark.asyncio
async def test_coroutine_handlers_are_scheduled():
    bus = EventBus()
    calls = []

    async def on_packet(payload):
        calls.append(payload)

    bus.subscribe("packet", on_packet)
    bus.publish("packet", 3)
    assert calls == []

    await asyncio.sleep(0)

    assert calls == [3]
