"""
Unit tests for the relational store – CRUD, filters and change events.
"""

import pytest

from techhelp.database import BackendError, TableStore, eq, gte, in_, make_engine, metadata
from techhelp.realtime import RealtimeFeed


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    metadata.create_all(engine)
    return TableStore(engine, RealtimeFeed())


def add_tx(store, amount, kind="expense", date="2026-01-01T00:00:00+00:00"):
    return store.insert("financial_transactions", {
        "user_id": "u1", "amount": amount, "transaction_type": kind,
        "category": "Food", "transaction_date": date,
    })


def test_insert_assigns_id_and_created_at(store):
    row = add_tx(store, 10)
    assert len(row["id"]) == 36
    assert row["created_at"]
    assert row["amount"] == 10.0


def test_select_filters_order_and_limit(store):
    add_tx(store, 1, date="2026-01-01T00:00:00+00:00")
    add_tx(store, 2, date="2026-01-03T00:00:00+00:00")
    add_tx(store, 3, kind="income", date="2026-01-02T00:00:00+00:00")

    rows = store.select("financial_transactions", [eq("transaction_type", "expense")],
                        order_by="transaction_date", descending=True)
    assert [r["amount"] for r in rows] == [2.0, 1.0]

    rows = store.select("financial_transactions", [gte("amount", 2)], order_by="amount", limit=1)
    assert [r["amount"] for r in rows] == [2.0]

    assert store.count("financial_transactions", [in_("amount", [1, 3])]) == 2


def test_update_returns_rows_and_sets_updated_at(store):
    row = add_tx(store, 5)
    updated = store.update("financial_transactions", {"amount": 6}, [eq("id", row["id"])])
    assert updated[0]["amount"] == 6.0
    assert updated[0]["updated_at"]
    assert store.update("financial_transactions", {"amount": 7}, [eq("id", "missing")]) == []


def test_delete_requires_filter(store):
    add_tx(store, 5)
    with pytest.raises(BackendError):
        store.delete("financial_transactions", [])
    assert store.count("financial_transactions") == 1


def test_unknown_table_or_column_is_backend_error(store):
    with pytest.raises(BackendError):
        store.select("nope")
    with pytest.raises(BackendError):
        store.select("profiles", [eq("nope", 1)])
    with pytest.raises(BackendError):
        store.select("profiles", order_by="nope")
    with pytest.raises(BackendError):
        store.insert("profiles", {"full_name": "x", "bogus": 1})


def test_writes_are_published_with_increasing_sequence(store):
    events = []
    store.feed.subscribe("financial_transactions", events.append)

    row = add_tx(store, 1)
    store.update("financial_transactions", {"amount": 2}, [eq("id", row["id"])])
    store.delete("financial_transactions", [eq("id", row["id"])])

    assert [e.event_type for e in events] == ["INSERT", "UPDATE", "DELETE"]
    assert [e.sequence for e in events] == sorted(e.sequence for e in events)
    assert events[1].old["amount"] == 1.0 and events[1].new["amount"] == 2.0
    assert events[2].record["id"] == row["id"]
    assert store.version() == events[-1].sequence


def test_json_and_boolean_columns_round_trip(store):
    a = store.insert("announcements", {"title": "t", "content": "c", "visible_to": ["user"]})
    assert a["visible_to"] == ["user"]
    d = store.insert("documents", {"user_id": "u", "name": "n", "file_url": "u/1.pdf",
                                   "category": "financial"})
    assert d["tombstoned"] is False
    assert store.select("documents", [eq("tombstoned", False)])[0]["id"] == d["id"]
