"""
Relational store: table definitions, engine initialisation and TableStore,
the select / insert / update / delete / count surface used by the managers.
"""

import operator
import os
import sys
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from techhelp.config import DEFAULT_DB_URI
from techhelp.models import utcnow_iso
from techhelp.realtime import RealtimeFeed

metadata = MetaData()


def _id_column():
    return Column("id", String(36), primary_key=True)


def _timestamps():
    return [
        Column("created_at", String(40), nullable=False),
        Column("updated_at", String(40), nullable=True),
    ]


profiles = Table(
    "profiles", metadata,
    _id_column(),
    Column("full_name", String(255), nullable=False, default=""),
    Column("avatar_url", Text, nullable=True),
    Column("phone", String(64), nullable=True),
    Column("address", Text, nullable=True),
    Column("date_of_birth", String(10), nullable=True),
    Column("role", String(16), nullable=False, default="user"),
    *_timestamps(),
)

financial_transactions = Table(
    "financial_transactions", metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False, index=True),
    Column("amount", Float, nullable=False),
    Column("transaction_type", String(16), nullable=False),
    Column("category", String(64), nullable=False),
    Column("payment_method", String(64), nullable=True),
    Column("transaction_date", String(40), nullable=False),
    Column("description", Text, nullable=True),
    *_timestamps(),
)

medical_appointments = Table(
    "medical_appointments", metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False, index=True),
    Column("doctor_name", String(255), nullable=False),
    Column("specialization", String(64), nullable=False),
    Column("appointment_date", String(40), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("notes", Text, nullable=True),
    Column("processed_at", String(40), nullable=True),
    *_timestamps(),
)

certificate_requests = Table(
    "certificate_requests", metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False, index=True),
    Column("certificate_type", String(64), nullable=False),
    Column("purpose", Text, nullable=True),
    Column("status", String(16), nullable=False, default="pending"),
    Column("issued_certificate_url", Text, nullable=True),
    Column("requested_at", String(40), nullable=False),
    Column("processed_at", String(40), nullable=True),
    *_timestamps(),
)

documents = Table(
    "documents", metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("file_url", Text, nullable=False),
    Column("file_type", String(128), nullable=True),
    Column("category", String(16), nullable=False),
    Column("verified", Boolean, nullable=False, default=False),
    Column("tombstoned", Boolean, nullable=False, default=False),
    *_timestamps(),
)

announcements = Table(
    "announcements", metadata,
    _id_column(),
    Column("title", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("category", String(16), nullable=False, default="general"),
    Column("visible_to", JSON, nullable=False),
    Column("created_by", String(36), nullable=True),
    *_timestamps(),
)

auth_users = Table(
    "auth_users", metadata,
    _id_column(),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("user_metadata", JSON, nullable=False),
    Column("email_confirmed_at", String(40), nullable=True),
    Column("last_sign_in_at", String(40), nullable=True),
    Column("created_at", String(40), nullable=False),
)

auth_sessions = Table(
    "auth_sessions", metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False, index=True),
    Column("created_at", String(40), nullable=False),
    Column("revoked_at", String(40), nullable=True),
)


# ── Engine ───────────────────────────────────────────────────────────

def make_engine(db_uri: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if db_uri in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            db_uri,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    if db_uri.startswith("sqlite"):
        return create_engine(db_uri, future=True, connect_args={"check_same_thread": False})
    return create_engine(db_uri, echo=False, future=True)


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine, verify the connection and create tables."""
    db_uri = db_uri or os.getenv("DB_URI", DEFAULT_DB_URI)
    engine = make_engine(db_uri)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        metadata.create_all(engine)
    except SQLAlchemyError as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


# ── Filters ──────────────────────────────────────────────────────────

_OPERATORS = {
    "eq": operator.eq,
    "gte": operator.ge,
    "in": lambda column, value: column.in_(list(value)),
}


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


class BackendError(Exception):
    """Raised when the relational store rejects or fails an operation."""


# ── TableStore ───────────────────────────────────────────────────────

class TableStore:
    """Per-table CRUD with filter predicates; every write is published to the feed."""

    def __init__(self, engine, feed: Optional[RealtimeFeed] = None):
        self.engine = engine
        self.feed = feed

    def version(self) -> int:
        return self.feed.current_sequence() if self.feed else 0

    def _table(self, name: str) -> Table:
        table = metadata.tables.get(name)
        if table is None:
            raise BackendError(f"Unknown table '{name}'")
        return table

    def _where(self, table: Table, stmt, filters: Sequence[Filter]):
        for f in filters:
            if f.column not in table.c:
                raise BackendError(f"Unknown column '{f.column}' on {table.name}")
            op = _OPERATORS.get(f.op)
            if op is None:
                raise BackendError(f"Unsupported filter operator '{f.op}'")
            stmt = stmt.where(op(table.c[f.column], f.value))
        return stmt

    def _publish(self, table: str, event_type: str, new=None, old=None) -> None:
        if self.feed is not None:
            self.feed.publish(table, event_type, new=new, old=old)

    def select(self, table_name: str, filters: Sequence[Filter] = (),
               order_by: Optional[str] = None, descending: bool = False,
               limit: Optional[int] = None,
               columns: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        table = self._table(table_name)
        missing = [c for c in (columns or []) if c not in table.c]
        if order_by and order_by not in table.c:
            missing.append(order_by)
        if missing:
            raise BackendError(f"Unknown columns for {table_name}: {missing}")
        cols = [table.c[c] for c in columns] if columns else [table]
        stmt = self._where(table, select(*cols), filters)
        if order_by:
            col = table.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings().all()]
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def single(self, table_name: str, filters: Sequence[Filter]) -> Dict[str, Any]:
        """Exactly one row, or BackendError."""
        rows = self.select(table_name, filters, limit=2)
        if len(rows) != 1:
            raise BackendError(f"Expected a single row from {table_name}, got {len(rows)}")
        return rows[0]

    def count(self, table_name: str, filters: Sequence[Filter] = ()) -> int:
        table = self._table(table_name)
        stmt = self._where(table, select(func.count()).select_from(table), filters)
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def insert(self, table_name: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(table_name)
        values = dict(row)
        values.setdefault("id", str(uuid.uuid4()))
        if "created_at" in table.c:
            values.setdefault("created_at", utcnow_iso())
        unknown = set(values) - set(table.c.keys())
        if unknown:
            raise BackendError(f"Unknown columns for {table_name}: {sorted(unknown)}")
        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert().values(**values))
                stored = conn.execute(
                    select(table).where(table.c.id == values["id"])
                ).mappings().first()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        stored = dict(stored)
        self._publish(table_name, "INSERT", new=stored)
        return stored

    def update(self, table_name: str, values: Mapping[str, Any],
               filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        table = self._table(table_name)
        changes = dict(values)
        if "updated_at" in table.c:
            changes.setdefault("updated_at", utcnow_iso())
        unknown = set(changes) - set(table.c.keys())
        if unknown:
            raise BackendError(f"Unknown columns for {table_name}: {sorted(unknown)}")
        try:
            with self.engine.begin() as conn:
                before = conn.execute(self._where(table, select(table), filters)).mappings().all()
                ids = [r["id"] for r in before]
                if not ids:
                    return []
                conn.execute(table.update().where(table.c.id.in_(ids)).values(**changes))
                after = conn.execute(select(table).where(table.c.id.in_(ids))).mappings().all()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        old_by_id = {r["id"]: dict(r) for r in before}
        updated = [dict(r) for r in after]
        for row in updated:
            self._publish(table_name, "UPDATE", new=row, old=old_by_id.get(row["id"]))
        return updated

    def delete(self, table_name: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        if not filters:
            raise BackendError("Refusing to delete without a filter")
        table = self._table(table_name)
        try:
            with self.engine.begin() as conn:
                before = conn.execute(self._where(table, select(table), filters)).mappings().all()
                ids = [r["id"] for r in before]
                if ids:
                    conn.execute(table.delete().where(table.c.id.in_(ids)))
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        removed = [dict(r) for r in before]
        for row in removed:
            self._publish(table_name, "DELETE", old=row)
        return removed
