# backend-server/app/services/realtime.py
"""
Keeps a dashboard snapshot live.

The bridge subscribes to a fixed set of tables on the change feed and re-runs
the full snapshot refresh whenever a matching row changes. Nothing is merged
incrementally, so duplicated or reordered events only cost an extra refresh.
Events that arrive while a refresh is running collapse into one follow-up
refresh.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from app.db.changefeed import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableBinding:
    table: str
    filters: Dict[str, Any] = field(default_factory=dict)


def admin_bindings(organization_id: str) -> List[TableBinding]:
    scoped = {"organization_id": organization_id}
    return [
        TableBinding("join_requests", scoped),
        # Sessions and logs carry no organization column.
        TableBinding("user_sessions"),
        TableBinding("profiles", scoped),
        TableBinding("tasks", scoped),
        TableBinding("work_allotments", scoped),
        TableBinding("daily_logs"),
    ]


def member_bindings(user_id: str, organization_id: Optional[str] = None) -> List[TableBinding]:
    own = {"user_id": user_id}
    bindings = [
        TableBinding("join_requests", own),
        TableBinding("user_sessions", own),
        TableBinding("profiles", {"id": user_id}),
        TableBinding("tasks", own),
        TableBinding("daily_logs", own),
    ]
    if organization_id:
        scoped = {"organization_id": organization_id}
        bindings.append(TableBinding("profiles", scoped))
        bindings.append(TableBinding("work_allotments", scoped))
    return bindings


class RealtimeRefreshBridge:
    def __init__(
        self,
        feed: ChangeFeed,
        refresh: Callable[[], Awaitable[Any]],
        deliver: Callable[[Any], Awaitable[None]],
        bindings: Sequence[TableBinding] = (),
        bindings_for: Optional[Callable[[Any], Sequence[TableBinding]]] = None,
    ):
        self._feed = feed
        self._refresh = refresh
        self._deliver = deliver
        self._bindings: List[TableBinding] = list(bindings)
        self._bindings_for = bindings_for
        self._subscriptions: List[Subscription] = []
        self._dirty = asyncio.Event()
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    @property
    def bindings(self) -> List[TableBinding]:
        return list(self._bindings)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Subscriptions ---

    def _on_change(self, change: ChangeEvent) -> None:
        if not self._closed:
            self._dirty.set()

    def bind(self, bindings: Sequence[TableBinding]) -> None:
        """ Replaces the current subscriptions with ones for `bindings`. """
        self._unsubscribe()
        self._bindings = list(bindings)
        if self._closed:
            return
        for binding in self._bindings:
            self._subscriptions.append(
                self._feed.subscribe(binding.table, self._on_change, filters=binding.filters)
            )
        logger.debug(f"Realtime bridge bound to {len(self._subscriptions)} table filters")

    def _unsubscribe(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    # --- Refresh loop ---

    def request_refresh(self) -> None:
        self._dirty.set()

    async def refresh_now(self) -> None:
        self._refresh_task = asyncio.create_task(self._refresh())
        try:
            snapshot = await self._refresh_task
        finally:
            self._refresh_task = None
        self.refresh_count += 1
        if self._bindings_for is not None:
            wanted = list(self._bindings_for(snapshot))
            if wanted != self._bindings:
                logger.info("Realtime scope changed, re-binding subscriptions")
                self.bind(wanted)
        await self._deliver(snapshot)

    async def run(self) -> None:
        """ Subscribes, delivers an initial snapshot, then one per change until closed. """
        self._loop = asyncio.get_running_loop()
        self.bind(self._bindings)
        try:
            if not self._closed:
                await self._refresh_unless_closed()
            while not self._closed:
                await self._dirty.wait()
                if self._closed:
                    break
                self._dirty.clear()
                await self._refresh_unless_closed()
        finally:
            self._unsubscribe()

    async def _refresh_unless_closed(self) -> None:
        try:
            await self.refresh_now()
        except asyncio.CancelledError:
            # Raised into us by close(); an outside cancellation still propagates.
            if not self._closed:
                raise
            logger.debug("In-flight refresh cancelled on close")

    def _shutdown(self) -> None:
        self._closed = True
        self._dirty.set()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
        self._unsubscribe()

    async def close(self) -> None:
        """ Tears down subscriptions and cancels an in-flight refresh. """
        self._shutdown()

    def close_threadsafe(self) -> None:
        """ Closes the bridge from any thread or event loop. """
        if self._loop is None or self._loop.is_closed():
            self._shutdown()
            return
        self._loop.call_soon_threadsafe(self._shutdown)
