"""
Unit tests for document upload, download and the two-step delete.
"""

import pytest

from conftest import signed_in

from techhelp.database import BackendError, eq
from techhelp.services import DocumentManager, FinanceManager
from techhelp.storage import ObjectStorage, StorageError, object_key, private_path


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FailingRemoveStorage(ObjectStorage):
    """Uploads and downloads work; removals fail."""

    def remove(self, bucket, paths):
        raise StorageError("storage unavailable")


def documents(backend, session, storage=None):
    return DocumentManager(backend.store, session, session.notifier, storage=storage or backend.storage)


def upload(mgr, name="Payslip", category="financial", data=b"pdf-bytes"):
    return mgr.upload(category, name, "payslip.pdf", data, "application/pdf")


# ── Storage paths ────────────────────────────────────────────────────

def test_object_key_and_private_path():
    key = object_key("u1", "scan.final.PDF", now=1700000000.5)
    assert key == "u1/1700000000500.pdf"
    assert private_path(key) == "private/u1/1700000000500.pdf"


def test_storage_rejects_path_traversal(tmp_path):
    storage = ObjectStorage(tmp_path)
    with pytest.raises(StorageError):
        storage.upload("b", "../escape.txt", b"x")
    with pytest.raises(StorageError):
        storage.download("b", "/etc/passwd")


# ── Upload / download ────────────────────────────────────────────────

def test_upload_stores_private_object_and_row(backend, user_session):
    mgr = documents(backend, user_session)
    doc = upload(mgr)

    assert doc.category == "financial"
    assert doc.file_url.startswith(f"{user_session.user.id}/")
    assert backend.storage.exists("financial_documents", private_path(doc.file_url))
    assert user_session.notifier.last().message == "Document uploaded successfully"
    assert mgr.download(doc) == b"pdf-bytes"
    assert [d.id for d in mgr.list("financial")] == [doc.id]
    assert mgr.list("medical") == []


def test_upload_requires_file_and_name(backend, user_session):
    mgr = documents(backend, user_session)
    assert upload(mgr, name=" ") is None
    assert upload(mgr, data=b"") is None
    assert mgr.last_failure == "validation"
    assert upload(mgr, category="tax") is None


def test_page_upload_uses_its_category(backend, user_session):
    finance = FinanceManager(backend.store, user_session, user_session.notifier, storage=backend.storage)
    doc = finance.upload_document("Receipt", "r.jpg", b"jpg", None)
    assert doc.category == "financial"
    assert doc.file_type == "image/jpeg"


def test_failed_insert_removes_uploaded_object(backend, user_session, monkeypatch):
    mgr = documents(backend, user_session)

    def broken(*args, **kwargs):
        raise BackendError("insert failed")

    monkeypatch.setattr(mgr.repository, "insert", broken)
    assert upload(mgr) is None
    assert mgr.last_failure == "backend"
    assert list((backend.storage.root / "financial_documents").rglob("*.pdf")) == []


def test_documents_are_private_to_owner(backend, user_session):
    bob = signed_in(backend, "bob@example.com")
    doc = upload(documents(backend, bob))
    mine = documents(backend, user_session)
    assert mine.list() == []
    assert mine.get(doc.id) is None
    assert not mine.remove(doc.id)


# ── Delete ───────────────────────────────────────────────────────────

def test_delete_removes_object_and_row(backend, user_session):
    mgr = documents(backend, user_session)
    doc = upload(mgr)
    assert mgr.remove(doc.id)
    assert not backend.storage.exists("financial_documents", private_path(doc.file_url))
    assert backend.store.count("documents") == 0
    assert user_session.notifier.last().message == "Document deleted successfully"


def test_failed_object_delete_is_reported_and_row_restored(backend, user_session):
    storage = FailingRemoveStorage(backend.storage.root, backend.storage.public_base_url)
    mgr = documents(backend, user_session, storage=storage)
    doc = upload(mgr)

    assert mgr.remove(doc.id) is False
    assert mgr.last_failure == "backend"
    assert user_session.notifier.last().level == "error"
    assert user_session.notifier.last().message == "Failed to delete document"

    row = backend.store.single("documents", [eq("id", doc.id)])
    assert row["tombstoned"] is False
    assert [d.id for d in mgr.list()] == [doc.id]


def test_failed_row_delete_leaves_tombstone_for_sweep(backend, user_session, monkeypatch):
    mgr = documents(backend, user_session)
    doc = upload(mgr)
    real_delete = backend.store.delete

    def broken_delete(table, filters):
        if table == "documents":
            raise BackendError("row delete failed")
        return real_delete(table, filters)

    monkeypatch.setattr(backend.store, "delete", broken_delete)
    assert not mgr.remove(doc.id)
    assert mgr.list() == []
    assert backend.store.single("documents", [eq("id", doc.id)])["tombstoned"] is True

    monkeypatch.setattr(backend.store, "delete", real_delete)
    assert mgr.sweep_tombstones() == 1
    assert backend.store.count("documents") == 0
