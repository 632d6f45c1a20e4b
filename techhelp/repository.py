"""
Generic table repository and the record manager shared by every domain page.

A RecordManager wraps one Repository with the page behaviour: client-side
validation, user notices, confirmation before deletes, re-fetch after writes
and on change-feed events, and a view scope whose closing discards late
results.
"""

from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from techhelp.config import STRICT_STATUS_TRANSITIONS
from techhelp.database import BackendError, Filter, TableStore, eq
from techhelp.models import utcnow_iso
from techhelp.notifier import Notifier, log_error
from techhelp.rbac import PermissionDenied, require_admin
from techhelp.realtime import ChangeEvent, RealtimeFeed, Subscription, VersionedCollection
from techhelp.storage import StorageError

ALL = "all"


class ValidationError(ValueError):
    """A required form field is missing or malformed."""


# ── Repository ───────────────────────────────────────────────────────

class Repository:
    """Typed access to one table, optionally scoped by an owner column."""

    def __init__(self, store: TableStore, table: str, entity, order_by: str,
                 descending: bool = True, owner_column: Optional[str] = "user_id",
                 base_filters: Sequence[Filter] = ()):
        self.store = store
        self.table = table
        self.entity = entity
        self.order_by = order_by
        self.descending = descending
        self.owner_column = owner_column
        self.base_filters = list(base_filters)

    def _filters(self, owner_id: Optional[str], criteria: Optional[Mapping[str, Any]]) -> List[Filter]:
        filters = list(self.base_filters)
        if owner_id is not None and self.owner_column:
            filters.append(eq(self.owner_column, owner_id))
        for column, value in (criteria or {}).items():
            filters.append(eq(column, value))
        return filters

    def list(self, owner_id: Optional[str] = None, criteria: Optional[Mapping[str, Any]] = None,
             limit: Optional[int] = None, descending: Optional[bool] = None) -> List[Any]:
        rows = self.store.select(
            self.table,
            self._filters(owner_id, criteria),
            order_by=self.order_by,
            descending=self.descending if descending is None else descending,
            limit=limit,
        )
        return [self.entity.from_row(r) for r in rows]

    def _by_id(self, record_id: str, owner_id: Optional[str]) -> List[Filter]:
        return self._filters(owner_id, {"id": record_id})

    def get(self, record_id: str, owner_id: Optional[str] = None):
        rows = self.store.select(self.table, self._by_id(record_id, owner_id), limit=1)
        return self.entity.from_row(rows[0]) if rows else None

    def count(self, criteria: Optional[Mapping[str, Any]] = None, owner_id: Optional[str] = None) -> int:
        return self.store.count(self.table, self._filters(owner_id, criteria))

    def insert(self, values: Mapping[str, Any], owner_id: Optional[str] = None):
        row = dict(values)
        if owner_id is not None and self.owner_column:
            row[self.owner_column] = owner_id
        return self.entity.from_row(self.store.insert(self.table, row))

    def update(self, record_id: str, values: Mapping[str, Any], owner_id: Optional[str] = None):
        rows = self.store.update(self.table, values, self._by_id(record_id, owner_id))
        if not rows:
            raise BackendError(f"No {self.table} row with id {record_id}")
        return self.entity.from_row(rows[0])

    def delete(self, record_id: str, owner_id: Optional[str] = None) -> None:
        if not self.store.delete(self.table, self._by_id(record_id, owner_id)):
            raise BackendError(f"No {self.table} row with id {record_id}")

    def subscribe(self, feed: RealtimeFeed, callback: Callable[[ChangeEvent], None],
                  owner_id: Optional[str] = None) -> Subscription:
        row_filter = (self.owner_column, owner_id) if owner_id and self.owner_column else None
        return feed.subscribe(self.table, callback, row_filter=row_filter)


# ── View scope ───────────────────────────────────────────────────────

class ViewScope:
    """Lifetime of one view: owns subscriptions, drops results once closed."""

    def __init__(self):
        self.closed = False
        self._subscriptions: List[Subscription] = []

    def own(self, subscription: Subscription) -> Subscription:
        self._subscriptions.append(subscription)
        return subscription

    def run(self, fn: Callable, *args, **kwargs) -> Tuple[bool, Any]:
        """Call *fn*; the result is (False, None) when the scope closed meanwhile."""
        if self.closed:
            return False, None
        result = fn(*args, **kwargs)
        if self.closed:
            return False, None
        return True, result

    def close(self) -> None:
        self.closed = True
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()


# ── Record manager ───────────────────────────────────────────────────

def always_confirm(prompt: str) -> bool:
    return True


class RecordManager:
    """Fetch / create / update-status / remove for one domain table."""

    table: str = ""
    entity = None
    order_by: str = "created_at"
    descending: bool = True
    owner_column: Optional[str] = "user_id"
    filter_column: Optional[str] = None
    required_fields: Tuple[str, ...] = ()
    search_fields: Tuple[str, ...] = ()
    statuses: Tuple[str, ...] = ()
    transitions: Dict[str, Tuple[str, ...]] = {}
    label: str = "record"
    plural: str = "records"
    created_message: str = ""
    create_failed_message: str = ""
    all_rows: bool = False      # admin views see every owner's rows

    def __init__(self, store: TableStore, session, notifier: Notifier,
                 confirm: Callable[[str], bool] = always_confirm,
                 feed: Optional[RealtimeFeed] = None,
                 scope: Optional[ViewScope] = None,
                 strict_transitions: bool = STRICT_STATUS_TRANSITIONS):
        self.store = store
        self.session = session
        self.notifier = notifier
        self.confirm = confirm
        self.feed = feed if feed is not None else store.feed
        self.scope = scope or ViewScope()
        self.strict_transitions = strict_transitions
        self.repository = Repository(
            store, self.table, self.entity, self.order_by,
            descending=self.descending, owner_column=self.owner_column,
            base_filters=self.base_filters(),
        )
        self.records = VersionedCollection()
        self.current_filter: str = ALL
        self.is_loading = False
        self.last_failure: Optional[str] = None

    # ── Hooks ────────────────────────────────────────────────────────

    def base_filters(self) -> List[Filter]:
        return []

    def prepare(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Turn validated form fields into column values."""
        return {k: v for k, v in fields.items() if k in self.required_fields}

    def delete_record(self, record_id: str) -> None:
        self.repository.delete(record_id, owner_id=self.scoped_owner)

    # ── Helpers ──────────────────────────────────────────────────────

    @property
    def owner_id(self) -> Optional[str]:
        user = self.session.user
        return user.id if user is not None else None

    @property
    def scoped_owner(self) -> Optional[str]:
        """Owner filter for reads and writes; admin views are unscoped."""
        return None if self.all_rows else self.owner_id

    def _fail(self, kind: str, message: str, exc: Optional[BaseException] = None,
              context: str = "") -> None:
        self.last_failure = kind
        self.notifier.error(message)
        if exc is not None:
            log_error(context or message, exc)

    def _require_admin(self) -> bool:
        try:
            require_admin(self.session.profile)
        except PermissionDenied as e:
            self._fail("permission", str(e), e, f"Denied {self.label} operation")
            return False
        return True

    def _signed_in(self) -> bool:
        if self.owner_id is None:
            self._fail("permission", "You must be signed in")
            return False
        return True

    def validate(self, fields: Mapping[str, Any]) -> None:
        for name in self.required_fields:
            value = fields.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError("Please fill in all required fields")

    def _criteria(self, filter_value: Optional[str]) -> Dict[str, Any]:
        if self.filter_column and filter_value and filter_value != ALL:
            return {self.filter_column: filter_value}
        return {}

    # ── Operations ───────────────────────────────────────────────────

    def open(self, filter_value: str = ALL) -> List[Any]:
        """Fetch and keep the list fresh from the change feed until close()."""
        if self.feed is not None:
            self.scope.own(self.repository.subscribe(self.feed, self._on_change, owner_id=self.scoped_owner))
        return self.list(filter_value)

    def close(self) -> None:
        self.scope.close()

    def _on_change(self, event: ChangeEvent) -> None:
        self.list(self.current_filter)

    def fetch(self, filter_value: str = ALL, limit: Optional[int] = None) -> List[Any]:
        """Raw scoped query; raises BackendError."""
        return self.repository.list(self.scoped_owner, self._criteria(filter_value), limit=limit)

    def list(self, filter_value: str = ALL) -> List[Any]:
        self.current_filter = filter_value
        if self.all_rows and not self._require_admin():
            return []
        if not self.all_rows and self.owner_id is None:
            return []
        self.is_loading = True
        try:
            version = self.store.version()
            completed, items = self.scope.run(self.fetch, filter_value)
            if completed:
                self.records.apply_snapshot(items, version)
        except BackendError as e:
            self._fail("backend", f"Failed to load {self.plural}", e, f"Error fetching {self.plural}")
        finally:
            self.is_loading = False
        return list(self.records)

    def search(self, term: str) -> List[Any]:
        needle = (term or "").strip().lower()
        if not needle:
            return list(self.records)
        return [
            item for item in self.records
            if any(needle in str(getattr(item, f, "") or "").lower() for f in self.search_fields)
        ]

    def create(self, fields: Mapping[str, Any]):
        """Validate, insert tagged with the identity, notify and re-fetch."""
        self.last_failure = None
        try:
            self.validate(fields)
            values = self.prepare(fields)
        except ValidationError as e:
            self._fail("validation", str(e))
            return None
        if self.owner_column and not self._signed_in():
            return None
        try:
            created = self.repository.insert(values, owner_id=self.owner_id if self.owner_column else None)
        except BackendError as e:
            message = self.create_failed_message or f"Failed to add {self.label}"
            self._fail("backend", message, e, f"Error adding {self.label}")
            return None
        self.notifier.success(self.created_message or f"{self.label.capitalize()} added successfully")
        self.list(self.current_filter)
        return created

    def _check_transition(self, current: str, status: str) -> None:
        if status not in self.statuses:
            raise ValidationError(f"Unknown status '{status}'")
        if self.strict_transitions and status not in self.transitions.get(current, ()):
            raise ValidationError(f"Cannot move {self.label} from {current} to {status}")

    def update_status(self, record_id: str, status: str):
        """Admin only: write the status and the processed timestamp."""
        self.last_failure = None
        if not self._require_admin():
            return None
        return self._write_status(record_id, status, f"{self.label.capitalize()} {status}")

    def _write_status(self, record_id: str, status: str, success_message: str,
                      extra: Optional[Mapping[str, Any]] = None):
        try:
            current = self.repository.get(record_id, owner_id=self.scoped_owner)
            if current is None:
                raise BackendError(f"No {self.table} row with id {record_id}")
            self._check_transition(current.status, status)
            values = {"status": status, "processed_at": utcnow_iso(), **(extra or {})}
            updated = self.repository.update(record_id, values, owner_id=self.scoped_owner)
        except ValidationError as e:
            self._fail("validation", str(e))
            return None
        except BackendError as e:
            self._fail("backend", f"Failed to update {self.label} status", e,
                       f"Error updating {self.label} status")
            return None
        self.notifier.success(success_message)
        self.list(self.current_filter)
        return updated

    def remove(self, record_id: str) -> bool:
        """Delete after the user confirms; re-fetch."""
        self.last_failure = None
        if not self.confirm(f"Are you sure you want to delete this {self.label}?"):
            self.last_failure = "cancelled"
            return False
        try:
            self.delete_record(record_id)
        except (BackendError, StorageError) as e:
            self._fail("backend", f"Failed to delete {self.label}", e, f"Error deleting {self.label}")
            return False
        self.notifier.success(f"{self.label.capitalize()} deleted successfully")
        self.list(self.current_filter)
        return True

    def __iter__(self) -> Iterator[Any]:
        return iter(self.records)
