import asyncio
import json

import anyio
import pytest

from hub import CHANNEL_CAPACITY, Hub, SubscriptionClosed

pytestmark = pytest.mark.anyio


async def test_broadcast_serializes_compact_json():
    hub = Hub()
    sub = hub.subscribe()
    assert hub.broadcast({"type": "announcement", "payload": {"message": "Hi"}}) == 1
    assert await sub.receive(timeout=1) == '{"type":"announcement","payload":{"message":"Hi"}}'


async def test_broadcast_reaches_every_subscriber():
    hub = Hub()
    subs = [hub.subscribe() for _ in range(3)]
    assert hub.broadcast({"n": 1}) == 3
    for sub in subs:
        assert json.loads(await sub.receive(timeout=1)) == {"n": 1}


async def test_broadcast_without_subscribers():
    assert Hub().broadcast({"n": 1}) == 0


async def test_messages_arrive_in_broadcast_order():
    hub = Hub()
    sub = hub.subscribe()
    hub.broadcast({"n": "A"})
    hub.broadcast({"n": "B"})
    assert json.loads(await sub.receive(timeout=1))["n"] == "A"
    assert json.loads(await sub.receive(timeout=1))["n"] == "B"


async def test_stalled_subscriber_drops_without_affecting_others():
    hub = Hub()
    draining = hub.subscribe()
    stalled = hub.subscribe()
    received = []

    for n in range(CHANNEL_CAPACITY + 4):
        hub.broadcast({"n": n})
        received.append(json.loads(await draining.receive(timeout=1))["n"])

    assert received == list(range(CHANNEL_CAPACITY + 4))
    assert stalled.pending() == CHANNEL_CAPACITY
    kept = [json.loads(await stalled.receive(timeout=1))["n"] for _ in range(CHANNEL_CAPACITY)]
    assert kept == list(range(CHANNEL_CAPACITY))
    assert stalled.pending() == 0


async def test_full_channel_reports_partial_delivery():
    hub = Hub(capacity=1)
    hub.subscribe()
    busy = hub.subscribe()
    hub.broadcast({"n": 0})
    await busy.receive(timeout=1)
    assert hub.broadcast({"n": 1}) == 1


async def test_unsubscribe_removes_and_closes():
    hub = Hub()
    sub = hub.subscribe()
    assert hub.subscriber_count() == 1
    hub.unsubscribe(sub)
    assert hub.subscriber_count() == 0
    assert sub.closed
    assert hub.broadcast({"n": 1}) == 0
    assert sub.offer("late") is False
    with pytest.raises(SubscriptionClosed):
        await sub.receive(timeout=0.01)


async def test_unsubscribe_twice_is_harmless():
    hub = Hub()
    sub = hub.subscribe()
    hub.unsubscribe(sub)
    hub.unsubscribe(sub)
    assert hub.subscriber_count() == 0


async def test_receive_times_out_with_none():
    sub = Hub().subscribe()
    assert await sub.receive(timeout=0.01) is None


async def test_close_wakes_waiting_reader():
    hub = Hub()
    sub = hub.subscribe()
    waiting = asyncio.ensure_future(sub.receive(timeout=5))
    await asyncio.sleep(0.01)
    hub.unsubscribe(sub)
    with pytest.raises(SubscriptionClosed):
        await asyncio.wait_for(waiting, 1)


async def test_cancelled_receive_leaves_channel_usable():
    hub = Hub()
    sub = hub.subscribe()
    waiting = asyncio.ensure_future(sub.receive(timeout=5))
    await asyncio.sleep(0.01)
    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting
    hub.broadcast({"n": 1})
    assert json.loads(await sub.receive(timeout=1)) == {"n": 1}


async def test_broadcast_from_worker_threads():
    hub = Hub()
    draining = hub.subscribe()
    stalled = hub.subscribe()

    def producer():
        for n in range(4):
            hub.broadcast({"n": n})

    for _ in range(2):
        await anyio.to_thread.run_sync(producer)

    got = [json.loads(await draining.receive(timeout=1))["n"] for _ in range(8)]
    assert got == [0, 1, 2, 3, 0, 1, 2, 3]
    assert stalled.pending() == CHANNEL_CAPACITY


async def test_many_threaded_producers_never_block():
    hub = Hub()
    stalled = hub.subscribe()

    def producer():
        for n in range(100):
            hub.broadcast({"n": n})

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            for _ in range(4):
                tg.start_soon(anyio.to_thread.run_sync, producer)
    assert stalled.pending() == CHANNEL_CAPACITY
