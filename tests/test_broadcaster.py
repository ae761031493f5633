import asyncio
import threading

import pytest

from kairo.server.broadcaster import ProgressBroadcaster


def test_publish_without_a_loop_is_dropped():
    assert ProgressBroadcaster().publish({"type": "plan-created"}) is False


def test_events_from_worker_threads_arrive_in_order():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        first, second = [], []

        async def slow(event):
            await asyncio.sleep(0)
            first.append(event["seq"])

        async def fast(event):
            second.append(event["seq"])

        await broadcaster.subscribe(slow)
        await broadcaster.subscribe(fast)

        def produce():
            for seq in range(1, 51):
                broadcaster.publish({"type": "subtask-status", "seq": seq})

        worker = threading.Thread(target=produce)
        worker.start()
        await asyncio.to_thread(worker.join)
        await asyncio.sleep(0)
        await broadcaster.flush()
        await broadcaster.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == list(range(1, 51))
    assert second == list(range(1, 51))


def test_failing_observer_is_dropped_without_affecting_others():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        received = []

        async def broken(event):
            raise ConnectionResetError("client went away")

        async def healthy(event):
            received.append(event["seq"])

        await broadcaster.subscribe(broken)
        await broadcaster.subscribe(healthy)
        for seq in (1, 2, 3):
            broadcaster.publish({"seq": seq})
        await broadcaster.flush()
        count = broadcaster.observer_count
        await broadcaster.close()
        return received, count

    received, count = asyncio.run(scenario())
    assert received == [1, 2, 3]
    assert count == 1


def test_observer_failing_midway_does_not_stall_flush():
    async def scenario():
        broadcaster = ProgressBroadcaster()
        seen = []

        async def picky(event):
            if event["seq"] == 2:
                raise ValueError("cannot serialize")
            seen.append(event["seq"])

        await broadcaster.subscribe(picky)
        for seq in (1, 2, 3, 4):
            broadcaster.publish({"seq": seq})
        await asyncio.wait_for(broadcaster.flush(), timeout=5)
        count = broadcaster.observer_count
        await broadcaster.close()
        return seen, count

    seen, count = asyncio.run(scenario())
    assert seen == [1]
    assert count == 0


@pytest.mark.asyncio
async def test_unsubscribed_observer_stops_receiving():
    broadcaster = ProgressBroadcaster()
    received = []

    async def observer(event):
        received.append(event["seq"])

    observer_id = await broadcaster.subscribe(observer)
    broadcaster.publish({"seq": 1})
    await broadcaster.flush()
    await broadcaster.unsubscribe(observer_id)
    broadcaster.publish({"seq": 2})
    await broadcaster.flush()

    assert received == [1]
    assert broadcaster.observer_count == 0
