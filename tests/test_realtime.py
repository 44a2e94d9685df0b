"""Tests for the realtime refresh bridge."""

import asyncio
import threading

from app.db.changefeed import INSERT, ChangeEvent, ChangeFeed
from app.services.realtime import RealtimeRefreshBridge, TableBinding, admin_bindings, member_bindings


def run(coro):
    return asyncio.run(coro)


class Recorder:
    """Refresh callable that returns numbered snapshots, optionally slowly."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.calls = 0
        self.delivered = []

    async def refresh(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return {"n": self.calls}

    async def deliver(self, snapshot):
        self.delivered.append(snapshot)


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def task_event(user_id="u1"):
    return ChangeEvent("tasks", INSERT, {"id": "t1", "user_id": user_id})


# ── Bindings ──────────────────────────────────────────────────────


class TestBindings:
    def test_member_without_organization(self):
        tables = {b.table for b in member_bindings("u1")}
        assert tables == {"join_requests", "user_sessions", "profiles", "tasks", "daily_logs"}

    def test_member_with_organization(self):
        bindings = member_bindings("u1", "org-1")
        assert TableBinding("work_allotments", {"organization_id": "org-1"}) in bindings
        assert TableBinding("profiles", {"organization_id": "org-1"}) in bindings

    def test_admin_scoped_to_organization(self):
        bindings = admin_bindings("org-1")
        assert TableBinding("tasks", {"organization_id": "org-1"}) in bindings
        assert TableBinding("daily_logs") in bindings


# ── Bridge ────────────────────────────────────────────────────────


class TestBridge:
    def test_initial_snapshot_then_refresh_per_change(self):
        async def scenario():
            feed = ChangeFeed()
            recorder = Recorder()
            bridge = RealtimeRefreshBridge(
                feed, recorder.refresh, recorder.deliver, bindings=[TableBinding("tasks", {"user_id": "u1"})],
            )
            runner = asyncio.create_task(bridge.run())
            await wait_for(lambda: len(recorder.delivered) == 1)

            feed.publish(task_event("u2"))
            await asyncio.sleep(0.05)
            assert len(recorder.delivered) == 1

            # Committed from a worker thread, like a request handler would.
            publisher = threading.Thread(target=feed.publish, args=(task_event("u1"),))
            publisher.start()
            publisher.join()
            await wait_for(lambda: len(recorder.delivered) == 2)

            await bridge.close()
            await runner
            return feed, recorder

        feed, recorder = run(scenario())
        assert recorder.delivered == [{"n": 1}, {"n": 2}]
        assert feed.subscription_count == 0

    def test_events_during_refresh_coalesce(self):
        async def scenario():
            feed = ChangeFeed()
            recorder = Recorder(delay=0.1)
            bridge = RealtimeRefreshBridge(feed, recorder.refresh, recorder.deliver, bindings=[TableBinding("tasks")])
            runner = asyncio.create_task(bridge.run())
            await asyncio.sleep(0.02)
            for _ in range(5):
                feed.publish(task_event())
            await asyncio.sleep(0.4)
            await bridge.close()
            await runner
            return bridge, recorder

        bridge, recorder = run(scenario())
        assert recorder.calls == 2
        assert bridge.refresh_count == 2

    def test_manual_refresh(self):
        async def scenario():
            recorder = Recorder()
            bridge = RealtimeRefreshBridge(ChangeFeed(), recorder.refresh, recorder.deliver)
            runner = asyncio.create_task(bridge.run())
            await wait_for(lambda: len(recorder.delivered) == 1)
            bridge.request_refresh()
            await wait_for(lambda: len(recorder.delivered) == 2)
            await bridge.close()
            await runner

        run(scenario())

    def test_rebinds_when_scope_changes(self):
        async def scenario():
            feed = ChangeFeed()
            recorder = Recorder()
            bridge = RealtimeRefreshBridge(
                feed, recorder.refresh, recorder.deliver,
                bindings=member_bindings("u1"),
                bindings_for=lambda snapshot: member_bindings("u1", "org-1"),
            )
            runner = asyncio.create_task(bridge.run())
            await wait_for(lambda: len(recorder.delivered) == 1)
            count = feed.subscription_count
            await bridge.close()
            await runner
            return bridge, count

        bridge, count = run(scenario())
        assert bridge.bindings == member_bindings("u1", "org-1")
        assert count == len(member_bindings("u1", "org-1"))

    def test_close_cancels_in_flight_refresh(self):
        async def scenario():
            feed = ChangeFeed()
            recorder = Recorder(delay=10)
            bridge = RealtimeRefreshBridge(feed, recorder.refresh, recorder.deliver, bindings=[TableBinding("tasks")])
            runner = asyncio.create_task(bridge.run())
            await asyncio.sleep(0.02)
            await bridge.close()
            await asyncio.wait_for(runner, timeout=1)
            return bridge, feed, recorder

        bridge, feed, recorder = run(scenario())
        assert bridge.closed
        assert recorder.delivered == []
        assert feed.subscription_count == 0

    def test_close_threadsafe_from_another_thread(self):
        async def scenario():
            recorder = Recorder()
            bridge = RealtimeRefreshBridge(ChangeFeed(), recorder.refresh, recorder.deliver)
            runner = asyncio.create_task(bridge.run())
            await wait_for(lambda: len(recorder.delivered) == 1)
            closer = threading.Thread(target=bridge.close_threadsafe)
            closer.start()
            closer.join()
            await asyncio.wait_for(runner, timeout=1)
            return bridge

        assert run(scenario()).closed

    def test_changes_after_close_are_ignored(self):
        async def scenario():
            feed = ChangeFeed()
            recorder = Recorder()
            bridge = RealtimeRefreshBridge(feed, recorder.refresh, recorder.deliver, bindings=[TableBinding("tasks")])
            runner = asyncio.create_task(bridge.run())
            await wait_for(lambda: len(recorder.delivered) == 1)
            await bridge.close()
            await runner
            delivered = feed.publish(task_event())
            await asyncio.sleep(0.05)
            return delivered, recorder

        delivered, recorder = run(scenario())
        assert delivered == 0
        assert len(recorder.delivered) == 1
