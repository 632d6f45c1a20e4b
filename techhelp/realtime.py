"""
In-process change feed: row-level INSERT / UPDATE / DELETE notifications.

Every write made through the TableStore is published here with a monotonic
sequence number. Subscribers are called synchronously in the writer's thread.
"""

import itertools
import sys
import threading
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from techhelp.models import utcnow_iso

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str             # "INSERT", "UPDATE" or "DELETE"
    sequence: int
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str = ""

    @property
    def record(self) -> Dict[str, Any]:
        return self.new or self.old


class Subscription:
    """A live subscription; call unsubscribe() to tear it down."""

    def __init__(self, feed: "RealtimeFeed", table: str, callback: Callable[[ChangeEvent], None],
                 event: str = "*", row_filter: Optional[Tuple[str, Any]] = None):
        if event != "*" and event not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type '{event}'")
        self.table = table
        self.event = event
        self.row_filter = row_filter
        self._callback = callback
        self._feed = feed
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if not self.active or event.table != self.table:
            return False
        if self.event != "*" and event.event_type != self.event:
            return False
        if self.row_filter is not None:
            column, value = self.row_filter
            return event.record.get(column) == value
        return True

    def deliver(self, event: ChangeEvent) -> None:
        self._callback(event)

    def unsubscribe(self) -> None:
        self._feed.remove(self)


class RealtimeFeed:
    """Publish/subscribe hub for table change events."""

    def __init__(self):
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []
        self._counter = itertools.count(1)
        self._sequence = 0

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], None],
                  event: str = "*", row_filter: Optional[Tuple[str, Any]] = None) -> Subscription:
        sub = Subscription(self, table, callback, event=event, row_filter=row_filter)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def current_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if s.table == table)

    def publish(self, table: str, event_type: str,
                new: Optional[Dict[str, Any]] = None,
                old: Optional[Dict[str, Any]] = None) -> ChangeEvent:
        with self._lock:
            self._sequence = next(self._counter)
            event = ChangeEvent(
                table=table,
                event_type=event_type,
                sequence=self._sequence,
                new=dict(new or {}),
                old=dict(old or {}),
                commit_timestamp=utcnow_iso(),
            )
            targets = [s for s in self._subscriptions if s.matches(event)]

        for sub in targets:
            try:
                sub.deliver(event)
            except Exception as e:
                print(f"[realtime] Subscriber on {table} failed: {e}", file=sys.stderr)
                traceback.print_exc()
        return event


class VersionedCollection:
    """
    A list of rows guarded by a logical version.

    Snapshots carry the feed sequence observed before they were queried,
    events carry their own sequence; anything older than the last applied
    version is discarded, so the newest logical state wins regardless of
    arrival order.
    """

    def __init__(self, key: str = "id"):
        self.key = key
        self.items: List[Any] = []
        self.version = -1
        self._lock = threading.Lock()

    def _key_of(self, item) -> Any:
        if isinstance(item, dict):
            return item.get(self.key)
        return getattr(item, self.key)

    def apply_snapshot(self, items: List[Any], version: int) -> bool:
        with self._lock:
            if version < self.version:
                return False
            self.items = list(items)
            self.version = version
            return True

    def apply_event(self, event: ChangeEvent, item: Any = None) -> bool:
        """Apply a change; *item* is the converted row (defaults to the raw record)."""
        with self._lock:
            if event.sequence <= self.version:
                return False
            self.version = event.sequence
            row = item if item is not None else event.record
            key = self._key_of(row)
            existing = [i for i, current in enumerate(self.items) if self._key_of(current) == key]
            if event.event_type == "DELETE":
                self.items = [x for x in self.items if self._key_of(x) != key]
            elif existing:
                self.items[existing[0]] = row
            else:
                self.items.insert(0, row)
            return True

    def ids(self) -> List[Any]:
        with self._lock:
            return [self._key_of(item) for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(list(self.items))
