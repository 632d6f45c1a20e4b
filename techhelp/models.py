"""
Domain dataclasses used across the application.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

ROLES = ("user", "admin")
TRANSACTION_TYPES = ("income", "expense")
APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")
REQUEST_STATUSES = ("pending", "approved", "rejected")
DOCUMENT_CATEGORIES = ("financial", "medical", "government")
ANNOUNCEMENT_CATEGORIES = ("general", "financial", "medical", "government")


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string (sortable as text)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Record:
    """Mixin for rows fetched from the relational store."""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Profile(Record):
    """One per authenticated identity."""
    id: str
    full_name: str = ""
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None
    role: str = "user"          # "user" or "admin"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class FinancialTransaction(Record):
    id: str
    user_id: str
    amount: float
    transaction_type: str       # "income" or "expense"
    category: str
    payment_method: Optional[str] = None
    transaction_date: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class MedicalAppointment(Record):
    id: str
    user_id: str
    doctor_name: str
    specialization: str
    appointment_date: str
    status: str = "pending"
    notes: Optional[str] = None
    processed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class CertificateRequest(Record):
    id: str
    user_id: str
    certificate_type: str
    purpose: Optional[str] = None
    status: str = "pending"
    issued_certificate_url: Optional[str] = None
    requested_at: Optional[str] = None
    processed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Document(Record):
    """Metadata row; file_url is the object key inside the category bucket."""
    id: str
    user_id: str
    name: str
    file_url: str
    file_type: Optional[str] = None
    category: str = "financial"
    verified: bool = False
    tombstoned: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Announcement(Record):
    id: str
    title: str
    content: str
    category: str = "general"
    visible_to: List[str] = field(default_factory=lambda: list(ROLES))
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class AuthUser:
    """The authenticated principal as reported by the auth service."""
    id: str
    email: str
    user_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthSession:
    access_token: str
    user: AuthUser
    expires_at: datetime
