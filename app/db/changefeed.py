# backend-server/app/db/changefeed.py
# In-process change feed. Committed SQLAlchemy sessions publish one event per
# inserted, updated or deleted row; subscribers receive the events that match
# their table, event types and column filters.
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = (INSERT, UPDATE, DELETE)

FEED_KEY = "change_feed"
_PENDING_KEY = "_pending_change_events"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    record: Dict[str, Any]
    old_record: Optional[Dict[str, Any]] = None

    def matches(self, filters: Dict[str, Any]) -> bool:
        """A filter matches the new row, or the old row for updates and deletes."""
        if not filters:
            return True
        for row in (self.record, self.old_record):
            if row and all(row.get(column) == value for column, value in filters.items()):
                return True
        return False


@dataclass(eq=False)
class Subscription:
    feed: "ChangeFeed"
    table: str
    callback: Callable[[ChangeEvent], Any]
    filters: Dict[str, Any] = field(default_factory=dict)
    events: tuple = ALL_EVENTS
    loop: Optional[asyncio.AbstractEventLoop] = None
    active: bool = True

    def accepts(self, change: ChangeEvent) -> bool:
        return (
            self.active
            and change.table == self.table
            and change.event_type in self.events
            and change.matches(self.filters)
        )

    def unsubscribe(self) -> None:
        self.feed.remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], Any],
        filters: Optional[Dict[str, Any]] = None,
        events: Iterable[str] = ALL_EVENTS,
    ) -> Subscription:
        """
        Registers a callback for changes on a table. When called from a running
        event loop the callback is always invoked on that loop, whichever thread
        committed the change.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        subscription = Subscription(
            feed=self, table=table, callback=callback,
            filters=dict(filters or {}), events=tuple(events), loop=loop,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} {subscription.filters or '(all rows)'}")
        return subscription

    def remove(self, subscription: Subscription) -> None:
        subscription.active = False
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, change: ChangeEvent) -> int:
        """Delivers an event to every matching subscription. Returns the delivery count."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.accepts(change)]

        delivered = 0
        for subscription in targets:
            if subscription.loop is None:
                subscription.callback(change)
                delivered += 1
                continue
            try:
                subscription.loop.call_soon_threadsafe(subscription.callback, change)
                delivered += 1
            except RuntimeError:
                # The subscriber's loop is closed; it can never be served again.
                logger.warning(f"Dropping subscription on {subscription.table}: event loop closed")
                self.remove(subscription)
        return delivered


# --- SQLAlchemy capture ---

def _plain(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row(obj) -> Dict[str, Any]:
    state = inspect(obj)
    return {attr.key: _plain(getattr(obj, attr.key)) for attr in state.mapper.column_attrs}


def _old_row(obj) -> Dict[str, Any]:
    state = inspect(obj)
    old = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            old[attr.key] = _plain(history.deleted[0])
        else:
            old[attr.key] = _plain(getattr(obj, attr.key))
    return old


def _table_name(obj) -> str:
    return inspect(obj).mapper.local_table.name


@event.listens_for(Session, "after_flush")
def _collect_changes(session, flush_context):
    if session.info.get(FEED_KEY) is None:
        return
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        pending.append(ChangeEvent(_table_name(obj), INSERT, _row(obj)))
    for obj in session.dirty:
        if session.is_modified(obj, include_collections=False):
            pending.append(ChangeEvent(_table_name(obj), UPDATE, _row(obj), _old_row(obj)))
    for obj in session.deleted:
        row = _row(obj)
        pending.append(ChangeEvent(_table_name(obj), DELETE, row, row))


@event.listens_for(Session, "after_commit")
def _publish_changes(session):
    feed = session.info.get(FEED_KEY)
    pending = session.info.pop(_PENDING_KEY, [])
    if feed is None:
        return
    for change in pending:
        feed.publish(change)


@event.listens_for(Session, "after_soft_rollback")
def _discard_changes(session, previous_transaction):
    session.info.pop(_PENDING_KEY, None)
