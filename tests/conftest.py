"""
Shared fixtures: a real backend on in-memory SQLite and temp-dir storage,
plus helpers that register and sign in users.
"""

import pytest

from techhelp.backend import memory_backend
from techhelp.database import eq
from techhelp.local_store import LocalStore
from techhelp.notifier import Notifier
from techhelp.session import SessionManager

PASSWORD = "secret-pass"


@pytest.fixture
def backend(tmp_path):
    return memory_backend(tmp_path / "storage")


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(tmp_path / "runtime" / "local_store.json")


def register(backend, email, role="user", full_name="Test User"):
    user = backend.auth.sign_up(email, PASSWORD, {"full_name": full_name})
    if role != "user":
        backend.store.update("profiles", {"role": role}, [eq("id", user.id)])
    return user


def signed_in(backend, email, role="user", local_store=None):
    """A SessionManager for a fresh user, already signed in."""
    register(backend, email, role=role)
    manager = SessionManager(backend.auth, backend.store, Notifier(), local_store=local_store)
    assert manager.sign_in(email, PASSWORD)
    manager.notifier.drain()
    return manager


@pytest.fixture
def user_session(backend):
    return signed_in(backend, "alice@example.com")


@pytest.fixture
def admin_session(backend):
    return signed_in(backend, "root@example.com", role="admin")
