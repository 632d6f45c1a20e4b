"""
Unit tests for the generic repository, view scopes and the record manager.
"""

import pytest

from conftest import signed_in

from techhelp.database import BackendError
from techhelp.models import FinancialTransaction
from techhelp.notifier import Notifier
from techhelp.repository import Repository, ViewScope
from techhelp.services import (
    AppointmentsAdminManager,
    FinanceManager,
    GovernmentManager,
    HealthManager,
    RequestsManager,
)


# ── Helpers / Fakes ──────────────────────────────────────────────────

class CountingStore:
    """Records every call; any backend access is a test failure signal."""

    feed = None

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append(name)
            raise BackendError(f"unexpected call to {name}")
        return record


class FakeSession:
    def __init__(self, user_id="u1"):
        self.user = type("User", (), {"id": user_id})()
        self.profile = None


def finance(backend, session, **kwargs):
    return FinanceManager(backend.store, session, session.notifier, storage=backend.storage, **kwargs)


# ── Repository ───────────────────────────────────────────────────────

def test_repository_scopes_by_owner(backend):
    repo = Repository(backend.store, "financial_transactions", FinancialTransaction, "transaction_date")
    mine = repo.insert({"amount": 1, "transaction_type": "income", "category": "Salary",
                        "transaction_date": "2026-01-01"}, owner_id="u1")
    repo.insert({"amount": 2, "transaction_type": "income", "category": "Salary",
                 "transaction_date": "2026-01-02"}, owner_id="u2")

    assert [t.id for t in repo.list("u1")] == [mine.id]
    assert repo.get(mine.id, owner_id="u2") is None
    with pytest.raises(BackendError):
        repo.update(mine.id, {"amount": 9}, owner_id="u2")
    with pytest.raises(BackendError):
        repo.delete(mine.id, owner_id="u2")
    assert repo.count(owner_id="u1") == 1


# ── View scope ───────────────────────────────────────────────────────

def test_closed_scope_discards_results():
    scope = ViewScope()
    assert scope.run(lambda: 42) == (True, 42)

    def closes_midway():
        scope.close()
        return "late"

    assert scope.run(closes_midway) == (False, None)
    assert scope.run(lambda: 1) == (False, None)


def test_late_result_does_not_replace_records(backend, user_session):
    mgr = finance(backend, user_session)
    mgr.create({"amount": "5", "category": "Food"})
    before = list(mgr.records)

    def slow_fetch(*args, **kwargs):
        mgr.close()
        return []

    mgr.fetch = slow_fetch
    mgr.list()
    assert list(mgr.records) == before


# ── Record manager ───────────────────────────────────────────────────

@pytest.mark.parametrize("fields", [
    {"amount": "", "category": "Food"},
    {"amount": "12", "category": ""},
    {"amount": None, "category": "Food"},
    {"amount": "12", "category": "   "},
])
def test_create_with_missing_fields_makes_no_backend_calls(fields):
    store = CountingStore()
    notifier = Notifier()
    mgr = FinanceManager(store, FakeSession(), notifier)

    assert mgr.create(fields) is None
    assert store.calls == []
    assert mgr.last_failure == "validation"
    assert notifier.last().message == "Please fill in all required fields"


def test_non_numeric_amount_rejected_before_backend():
    store = CountingStore()
    mgr = FinanceManager(store, FakeSession(), Notifier())
    assert mgr.create({"amount": "abc", "category": "Food"}) is None
    assert store.calls == []


def test_open_refreshes_on_changes_until_closed(backend, user_session):
    mgr = finance(backend, user_session)
    mgr.open()
    other = finance(backend, user_session)
    other.create({"amount": "3", "category": "Food"})
    assert len(mgr.records) == 1

    mgr.close()
    other.create({"amount": "4", "category": "Food"})
    assert len(mgr.records) == 1


def test_changes_from_other_users_do_not_refresh(backend, user_session):
    mgr = finance(backend, user_session)
    mgr.open()
    bob = signed_in(backend, "bob@example.com")
    finance(backend, bob).create({"amount": "3", "category": "Food"})
    assert len(mgr.records) == 0


def test_fetch_failure_notifies_and_keeps_stale_rows(backend, user_session, monkeypatch, capsys):
    mgr = finance(backend, user_session)
    mgr.create({"amount": "5", "category": "Food"})

    def broken(*args, **kwargs):
        raise BackendError("timeout")

    monkeypatch.setattr(mgr.repository, "list", broken)
    rows = mgr.list()
    assert len(rows) == 1
    assert mgr.last_failure == "backend"
    assert user_session.notifier.last().message == "Failed to load transactions"
    assert "timeout" in capsys.readouterr().err


def test_declined_confirmation_keeps_record(backend, user_session):
    mgr = finance(backend, user_session, confirm=lambda prompt: False)
    tx = mgr.create({"amount": "5", "category": "Food"})
    assert not mgr.remove(tx.id)
    assert mgr.last_failure == "cancelled"
    assert len(mgr.list()) == 1


def test_remove_other_users_record_fails(backend, user_session):
    bob = signed_in(backend, "bob@example.com")
    tx = finance(backend, bob).create({"amount": "5", "category": "Food"})
    mgr = finance(backend, user_session)
    assert not mgr.remove(tx.id)
    assert mgr.last_failure == "backend"
    assert len(finance(backend, bob).list()) == 1


def test_search_matches_configured_fields(backend, user_session):
    mgr = finance(backend, user_session)
    mgr.create({"amount": "5", "category": "Food", "description": "Weekly groceries"})
    mgr.create({"amount": "50", "category": "Utilities"})
    assert [t.category for t in mgr.search("GROCER")] == ["Food"]
    assert len(mgr.search("")) == 2


# ── Status transitions ───────────────────────────────────────────────

def test_status_updates_are_lenient_by_default(backend, admin_session, user_session):
    appointment = HealthManager(backend.store, user_session, user_session.notifier).create({
        "doctor_name": "Dr. Who", "specialization": "Cardiology",
        "appointment_date": "2026-11-02", "appointment_time": "09:30",
    })
    admin = RequestsManager(backend.store, admin_session, admin_session.notifier)
    assert admin.update_status("missing", "approved") is None

    mgr = AppointmentsAdminManager(backend.store, admin_session, admin_session.notifier)
    assert mgr.update_status(appointment.id, "completed").status == "completed"
    assert mgr.update_status(appointment.id, "pending").status == "pending"
    assert mgr.update_status(appointment.id, "bogus") is None
    assert mgr.last_failure == "validation"


def test_strict_transitions_reject_reapproval(backend, admin_session, user_session):
    req = GovernmentManager(backend.store, user_session, user_session.notifier).create(
        {"certificate_type": "Birth Certificate"})
    mgr = RequestsManager(backend.store, admin_session, admin_session.notifier, strict_transitions=True)
    assert mgr.update_status(req.id, "approved").status == "approved"
    assert mgr.update_status(req.id, "approved") is None
    assert mgr.last_failure == "validation"
    assert "Cannot move request" in admin_session.notifier.last().message


def test_status_update_requires_admin(backend, user_session):
    mgr = RequestsManager(backend.store, user_session, user_session.notifier)
    assert mgr.update_status("any", "approved") is None
    assert mgr.last_failure == "permission"
