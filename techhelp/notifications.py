"""
Announcement notifications: the locally persisted read-set and the tracker
that reconciles it with the initial fetch and the live insert feed.
"""

import json
from typing import Iterable, List, Optional

from techhelp.config import ANNOUNCEMENT_FEED_LIMIT, READ_ANNOUNCEMENTS_KEY, SNAPSHOT_ATTEMPTS
from techhelp.database import BackendError, TableStore
from techhelp.local_store import LocalStore
from techhelp.models import Announcement
from techhelp.notifier import log_error
from techhelp.realtime import ChangeEvent, RealtimeFeed, Subscription, VersionedCollection


class ReadSet:
    """Announcement ids the user has acknowledged, as a JSON array."""

    def __init__(self, local_store: LocalStore, key: str = READ_ANNOUNCEMENTS_KEY):
        self.local_store = local_store
        self.key = key

    def load(self) -> List[str]:
        raw = self.local_store.get(self.key) or "[]"
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(data, list):
            return []
        return [str(x) for x in data]

    def add_all(self, ids: Iterable[str]) -> List[str]:
        merged: List[str] = []
        for item in [*self.load(), *ids]:
            if item not in merged:
                merged.append(item)
        self.local_store.set(self.key, json.dumps(merged))
        return merged

    def __contains__(self, announcement_id) -> bool:
        return announcement_id in self.load()


class NotificationTracker:
    def __init__(self, store: TableStore, feed: RealtimeFeed, read_set: ReadSet,
                 limit: int = ANNOUNCEMENT_FEED_LIMIT):
        self.store = store
        self.feed = feed
        self.read_set = read_set
        self.limit = limit
        self.collection = VersionedCollection()
        self.unread_count = 0
        self.is_open = False
        self._subscription: Optional[Subscription] = None

    @property
    def announcements(self) -> List[Announcement]:
        return list(self.collection)

    def mount(self) -> None:
        if self._subscription is None:
            self._subscription = self.feed.subscribe("announcements", self._on_insert, event="INSERT")
        self.fetch()

    def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def fetch(self) -> None:
        """Load the newest announcements and recompute unread; failures leave it empty."""
        for _ in range(SNAPSHOT_ATTEMPTS):
            version = self.store.version()
            try:
                rows = self.store.select("announcements", order_by="created_at",
                                         descending=True, limit=self.limit)
            except BackendError as e:
                log_error("Error fetching announcements", e)
                self.collection.apply_snapshot([], version)
                self.unread_count = 0
                return
            items = [Announcement.from_row(r) for r in rows]
            if self.collection.apply_snapshot(items, version):
                read = set(self.read_set.load())
                self.unread_count = sum(1 for a in items if a.id not in read)
                return

    def _on_insert(self, event: ChangeEvent) -> None:
        announcement = Announcement.from_row(event.new)
        is_new = announcement.id not in self.collection.ids()
        if self.collection.apply_event(event, announcement) and is_new:
            self.unread_count += 1

    def toggle(self) -> bool:
        """Open or close the panel; opening marks everything loaded as read."""
        if not self.is_open and self.unread_count > 0:
            self.read_set.add_all(self.collection.ids())
            self.unread_count = 0
        self.is_open = not self.is_open
        return self.is_open


def read_set_for(local_store: LocalStore, user_id: str) -> ReadSet:
    """The read-set of one user inside a shared local store."""
    return ReadSet(local_store, key=f"{READ_ANNOUNCEMENTS_KEY}:{user_id}")
