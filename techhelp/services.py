"""
Domain managers: finance, health, government, documents, and the admin
consoles for users, requests, appointments and announcements.
"""

import mimetypes
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from techhelp.analysis import finance_summary
from techhelp.auth_service import AuthError, AuthService
from techhelp.config import AVATAR_BUCKET, CERTIFICATE_BUCKET, DASHBOARD_RECENT_LIMIT
from techhelp.database import BackendError, TableStore, eq
from techhelp.models import (
    ANNOUNCEMENT_CATEGORIES,
    APPOINTMENT_STATUSES,
    DOCUMENT_CATEGORIES,
    REQUEST_STATUSES,
    ROLES,
    TRANSACTION_TYPES,
    Announcement,
    CertificateRequest,
    Document,
    FinancialTransaction,
    MedicalAppointment,
    Profile,
    utcnow_iso,
)
from techhelp.notifier import Notifier, log_error
from techhelp.repository import RecordManager, Repository, ValidationError
from techhelp.storage import (
    ObjectStorage,
    StorageError,
    bucket_for_category,
    object_key,
    private_path,
)


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ── File-bearing managers ────────────────────────────────────────────

class FileBearingManager(RecordManager):
    """A manager whose page can also attach documents to one category."""

    document_category: Optional[str] = None

    def __init__(self, store: TableStore, session, notifier: Notifier,
                 storage: Optional[ObjectStorage] = None, **kwargs):
        super().__init__(store, session, notifier, **kwargs)
        self.storage = storage

    def documents(self) -> "DocumentManager":
        return DocumentManager(self.store, self.session, self.notifier, storage=self.storage,
                               confirm=self.confirm, feed=self.feed)

    def upload_document(self, name: str, filename: str, data: bytes,
                        content_type: Optional[str] = None) -> Optional[Document]:
        documents = self.documents()
        created = documents.upload(self.document_category, name, filename, data, content_type)
        self.last_failure = documents.last_failure
        return created

    def _remove_object(self, bucket: str, path: str) -> None:
        """Compensate a half-finished write by dropping the uploaded object."""
        try:
            self.storage.remove(bucket, [path])
        except StorageError as e:
            log_error(f"Orphaned object {bucket}/{path}", e)


class DocumentManager(FileBearingManager):
    table = "documents"
    entity = Document
    order_by = "created_at"
    filter_column = "category"
    search_fields = ("name",)
    label = "document"
    plural = "documents"

    def base_filters(self):
        return [eq("tombstoned", False)]

    def upload(self, category: Optional[str], name: str, filename: str, data: bytes,
               content_type: Optional[str] = None) -> Optional[Document]:
        """Store the file, then insert its row; the file is removed if the insert fails."""
        self.last_failure = None
        if not data or not filename or not (name or "").strip():
            self._fail("validation", "Please provide a file and document name")
            return None
        if category not in DOCUMENT_CATEGORIES:
            self._fail("validation", f"Unknown document category '{category}'")
            return None
        if not self._signed_in():
            return None

        bucket = bucket_for_category(category)
        key = object_key(self.owner_id, filename)
        try:
            self.storage.upload(bucket, private_path(key), data)
        except StorageError as e:
            self._fail("backend", "Failed to upload document", e, "Error uploading document")
            return None

        try:
            document = self.repository.insert({
                "name": name.strip(),
                "file_url": key,
                "file_type": content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream",
                "category": category,
                "verified": False,
                "tombstoned": False,
            }, owner_id=self.owner_id)
        except BackendError as e:
            self._remove_object(bucket, private_path(key))
            self._fail("backend", "Failed to upload document", e, "Error uploading document")
            return None

        self.notifier.success("Document uploaded successfully")
        self.list(self.current_filter)
        return document

    def download(self, document: Document) -> Optional[bytes]:
        self.last_failure = None
        try:
            return self.storage.download(bucket_for_category(document.category),
                                         private_path(document.file_url))
        except StorageError as e:
            self._fail("backend", "Failed to download document", e, "Error downloading document")
            return None

    def get(self, document_id: str) -> Optional[Document]:
        try:
            return self.repository.get(document_id, owner_id=self.scoped_owner)
        except BackendError as e:
            self._fail("backend", "Failed to load documents", e, "Error fetching document")
            return None

    def delete_record(self, record_id: str) -> None:
        """
        Tombstone the row, delete the object, then delete the row.

        A failed object delete restores the row and re-raises; a failed row
        delete leaves the tombstone for sweep_tombstones().
        """
        document = self.repository.get(record_id, owner_id=self.scoped_owner)
        if document is None:
            raise BackendError(f"No documents row with id {record_id}")
        self.repository.update(record_id, {"tombstoned": True}, owner_id=self.scoped_owner)

        bucket = bucket_for_category(document.category)
        try:
            self.storage.remove(bucket, [private_path(document.file_url)])
        except StorageError:
            try:
                self.store.update("documents", {"tombstoned": False}, [eq("id", record_id)])
            except BackendError as e:
                log_error("Error restoring document after failed removal", e)
            raise

        self.store.delete("documents", [eq("id", record_id)])

    def sweep_tombstones(self) -> int:
        """Finish deletes that stopped after the object was removed."""
        filters = [eq("tombstoned", True)]
        if self.scoped_owner is not None:
            filters.append(eq("user_id", self.scoped_owner))
        swept = 0
        for row in self.store.select("documents", filters):
            try:
                self.storage.remove(bucket_for_category(row["category"]), [private_path(row["file_url"])])
                self.store.delete("documents", [eq("id", row["id"])])
            except (StorageError, BackendError) as e:
                log_error(f"Error sweeping document {row['id']}", e)
                continue
            swept += 1
        return swept


# ── Finance ──────────────────────────────────────────────────────────

class FinanceManager(FileBearingManager):
    table = "financial_transactions"
    entity = FinancialTransaction
    order_by = "transaction_date"
    filter_column = "transaction_type"
    required_fields = ("amount", "category")
    search_fields = ("category", "description", "payment_method")
    label = "transaction"
    plural = "transactions"
    document_category = "financial"

    def prepare(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            amount = float(fields["amount"])
        except (TypeError, ValueError):
            raise ValidationError("Amount must be a number") from None
        transaction_type = fields.get("transaction_type") or "expense"
        if transaction_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type '{transaction_type}'")
        return {
            "amount": amount,
            "transaction_type": transaction_type,
            "category": str(fields["category"]).strip(),
            "payment_method": _blank_to_none(fields.get("payment_method")),
            "description": _blank_to_none(fields.get("description")),
            "transaction_date": fields.get("transaction_date") or utcnow_iso(),
        }

    def summary(self) -> Dict[str, Any]:
        return finance_summary(list(self.records))


# ── Health ───────────────────────────────────────────────────────────

class HealthManager(FileBearingManager):
    table = "medical_appointments"
    entity = MedicalAppointment
    order_by = "appointment_date"
    descending = False
    filter_column = "status"
    required_fields = ("doctor_name", "specialization", "appointment_date", "appointment_time")
    search_fields = ("doctor_name", "specialization")
    statuses = APPOINTMENT_STATUSES
    transitions = {
        "pending": ("confirmed", "cancelled"),
        "confirmed": ("completed", "cancelled"),
    }
    label = "appointment"
    plural = "appointments"
    created_message = "Appointment booked successfully"
    create_failed_message = "Failed to book appointment"
    document_category = "medical"

    def prepare(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            when = datetime.fromisoformat(f"{fields['appointment_date']}T{fields['appointment_time']}")
        except ValueError:
            raise ValidationError("Invalid appointment date or time") from None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return {
            "doctor_name": str(fields["doctor_name"]).strip(),
            "specialization": str(fields["specialization"]).strip(),
            "appointment_date": when.astimezone(timezone.utc).isoformat(timespec="microseconds"),
            "notes": _blank_to_none(fields.get("notes")),
            "status": "pending",
        }

    def cancel(self, appointment_id: str):
        """The owner cancels an appointment after confirming."""
        self.last_failure = None
        if not self.confirm("Are you sure you want to cancel this appointment?"):
            self.last_failure = "cancelled"
            return None
        return self._write_status(appointment_id, "cancelled", "Appointment cancelled successfully")


class AppointmentsAdminManager(HealthManager):
    all_rows = True


# ── Government ───────────────────────────────────────────────────────

class GovernmentManager(FileBearingManager):
    table = "certificate_requests"
    entity = CertificateRequest
    order_by = "requested_at"
    filter_column = "status"
    required_fields = ("certificate_type",)
    search_fields = ("certificate_type",)
    statuses = REQUEST_STATUSES
    transitions = {"pending": ("approved", "rejected")}
    label = "request"
    plural = "requests"
    created_message = "Certificate request submitted successfully"
    create_failed_message = "Failed to submit request"
    document_category = "government"

    def validate(self, fields: Mapping[str, Any]) -> None:
        if not _blank_to_none(fields.get("certificate_type")):
            raise ValidationError("Please select a certificate type")

    def prepare(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "certificate_type": str(fields["certificate_type"]).strip(),
            "purpose": _blank_to_none(fields.get("purpose")),
            "status": "pending",
            "requested_at": utcnow_iso(),
        }

    def get(self, request_id: str) -> Optional[CertificateRequest]:
        try:
            return self.repository.get(request_id, owner_id=self.scoped_owner)
        except BackendError as e:
            self._fail("backend", f"Failed to load {self.plural}", e, f"Error fetching {self.label}")
            return None

    def download_certificate(self, request: CertificateRequest) -> Optional[bytes]:
        self.last_failure = None
        if not request.issued_certificate_url:
            self._fail("validation", "No certificate has been issued for this request")
            return None
        try:
            return self.storage.download(CERTIFICATE_BUCKET, private_path(request.issued_certificate_url))
        except StorageError as e:
            self._fail("backend", "Failed to download certificate", e, "Error downloading certificate")
            return None


class RequestsManager(GovernmentManager):
    """Admin console over every user's certificate requests."""

    all_rows = True

    def update_status(self, record_id: str, status: str):
        self.last_failure = None
        if not self._require_admin():
            return None
        return self._write_status(record_id, status, f"Request {status}")

    def approve_with_certificate(self, request_id: str, filename: str, data: bytes):
        """Upload the issued certificate and approve; the upload is undone if the update fails."""
        self.last_failure = None
        if not self._require_admin():
            return None
        if not filename or not data:
            self._fail("validation", "Please select a file")
            return None
        try:
            request = self.repository.get(request_id)
            if request is None:
                raise BackendError(f"No certificate_requests row with id {request_id}")
            self._check_transition(request.status, "approved")
        except ValidationError as e:
            self._fail("validation", str(e))
            return None
        except BackendError as e:
            self._fail("backend", "Failed to upload certificate", e, "Error uploading certificate")
            return None

        key = object_key(request.user_id, filename)
        try:
            self.storage.upload(CERTIFICATE_BUCKET, private_path(key), data)
        except StorageError as e:
            self._fail("backend", "Failed to upload certificate", e, "Error uploading certificate")
            return None

        try:
            updated = self.repository.update(request_id, {
                "issued_certificate_url": key,
                "status": "approved",
                "processed_at": utcnow_iso(),
            })
        except BackendError as e:
            self._remove_object(CERTIFICATE_BUCKET, private_path(key))
            self._fail("backend", "Failed to upload certificate", e, "Error uploading certificate")
            return None

        self.notifier.success("Certificate uploaded successfully")
        self.list(self.current_filter)
        return updated


# ── Admin: users ─────────────────────────────────────────────────────

class UsersManager(RecordManager):
    table = "profiles"
    entity = Profile
    owner_column = None
    all_rows = True
    filter_column = "role"
    search_fields = ("full_name",)
    label = "user"
    plural = "users"

    def __init__(self, store: TableStore, session, notifier: Notifier,
                 auth: Optional[AuthService] = None, **kwargs):
        super().__init__(store, session, notifier, **kwargs)
        self.auth = auth

    def update_role(self, user_id: str, role: str) -> Optional[Profile]:
        self.last_failure = None
        if not self._require_admin():
            return None
        if role not in ROLES:
            self._fail("validation", f"Unknown role '{role}'")
            return None
        try:
            updated = self.repository.update(user_id, {"role": role})
        except BackendError as e:
            self._fail("backend", "Failed to update user role", e, "Error updating user role")
            return None
        self.notifier.success(f"User role updated to {role}")
        self.list(self.current_filter)
        return updated

    def deactivate(self, user_id: str) -> bool:
        self.last_failure = None
        if not self._require_admin():
            return False
        if not self.confirm("Are you sure you want to deactivate this user?"):
            self.last_failure = "cancelled"
            return False
        try:
            self.auth.delete_user(user_id)
        except (AuthError, BackendError) as e:
            self._fail("backend", "Failed to deactivate user", e, "Error deactivating user")
            return False
        self.notifier.success("User deactivated successfully")
        self.list(self.current_filter)
        return True


# ── Admin: announcements ─────────────────────────────────────────────

class AnnouncementsManager(RecordManager):
    table = "announcements"
    entity = Announcement
    owner_column = None
    all_rows = True
    filter_column = "category"
    required_fields = ("title", "content", "category")
    search_fields = ("title", "content")
    label = "announcement"
    plural = "announcements"
    created_message = "Announcement created successfully"
    create_failed_message = "Failed to create announcement"

    def prepare(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        category = str(fields["category"]).strip()
        if category not in ANNOUNCEMENT_CATEGORIES:
            raise ValidationError(f"Unknown announcement category '{category}'")
        audience = fields.get("visible_to")
        if audience is None:
            audience = ROLES
        elif isinstance(audience, str):
            audience = [audience]
        visible_to = [r for r in audience if r in ROLES]
        if not visible_to:
            raise ValidationError("Select at least one audience")
        return {
            "title": str(fields["title"]).strip(),
            "content": str(fields["content"]).strip(),
            "category": category,
            "visible_to": visible_to,
            "created_by": self.owner_id,
        }

    def create(self, fields: Mapping[str, Any]):
        if not self._require_admin():
            return None
        return super().create(fields)

    def remove(self, record_id: str) -> bool:
        if not self._require_admin():
            return False
        return super().remove(record_id)


# ── Profile ──────────────────────────────────────────────────────────

class ProfileService:
    EDITABLE = ("full_name", "phone", "address", "date_of_birth")

    def __init__(self, store: TableStore, storage: ObjectStorage, session, notifier: Notifier):
        self.store = store
        self.storage = storage
        self.session = session
        self.notifier = notifier
        self.last_failure: Optional[str] = None

    def update_profile(self, fields: Mapping[str, Any]) -> Optional[Profile]:
        self.last_failure = None
        values = {k: _blank_to_none(fields[k]) for k in self.EDITABLE if k in fields}
        if "full_name" in values and not values["full_name"]:
            self.last_failure = "validation"
            self.notifier.error("Please fill in all required fields")
            return None
        try:
            self.store.update("profiles", values, [eq("id", self.session.user.id)])
        except BackendError as e:
            self.last_failure = "backend"
            self.notifier.error("Failed to update profile")
            log_error("Error updating profile", e)
            return None
        profile = self.session.refresh_profile()
        self.notifier.success("Profile updated successfully")
        return profile

    def upload_avatar(self, filename: str, data: bytes) -> Optional[str]:
        """Store a profile picture and point the profile at its public URL."""
        self.last_failure = None
        if not data or not filename:
            self.last_failure = "validation"
            self.notifier.error("You must select an image to upload.")
            return None
        key = object_key(self.session.user.id, filename)
        try:
            self.storage.upload(AVATAR_BUCKET, key, data)
            public_url = self.storage.get_public_url(AVATAR_BUCKET, key)
            self.store.update("profiles", {"avatar_url": public_url}, [eq("id", self.session.user.id)])
        except (StorageError, BackendError) as e:
            self.last_failure = "backend"
            self.notifier.error("Error uploading profile picture")
            log_error("Error uploading avatar", e)
            return None
        self.session.refresh_profile()
        self.notifier.success("Profile picture updated successfully")
        return public_url


# ── User dashboard ───────────────────────────────────────────────────

def build_user_dashboard(store: TableStore, session, limit: int = DASHBOARD_RECENT_LIMIT) -> Dict[str, List[Dict[str, Any]]]:
    """Recent transactions, pending appointments and requests, latest announcements."""
    user_id = session.user.id
    role = session.profile.role if session.profile else "user"
    dashboard: Dict[str, List[Dict[str, Any]]] = {
        "recent_transactions": [],
        "upcoming_appointments": [],
        "pending_requests": [],
        "recent_announcements": [],
    }
    try:
        transactions = Repository(store, "financial_transactions", FinancialTransaction, "transaction_date")
        dashboard["recent_transactions"] = [t.to_dict() for t in transactions.list(user_id, limit=limit)]

        appointments = Repository(store, "medical_appointments", MedicalAppointment, "appointment_date",
                                  descending=False)
        dashboard["upcoming_appointments"] = [
            a.to_dict() for a in appointments.list(user_id, {"status": "pending"}, limit=limit)
        ]

        requests = Repository(store, "certificate_requests", CertificateRequest, "requested_at")
        dashboard["pending_requests"] = [
            r.to_dict() for r in requests.list(user_id, {"status": "pending"}, limit=limit)
        ]

        announcements = Repository(store, "announcements", Announcement, "created_at", owner_column=None)
        visible = [a for a in announcements.list() if role in (a.visible_to or [])]
        dashboard["recent_announcements"] = [a.to_dict() for a in visible[:limit]]
    except BackendError as e:
        log_error("Error fetching dashboard data", e)
    return dashboard
