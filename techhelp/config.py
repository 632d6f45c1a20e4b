"""
Centralised configuration constants and environment helpers.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean environment variable ("1", "true", "yes", "on")."""
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# ── Backend ──────────────────────────────────────────────────────────
DEFAULT_DB_URI = "sqlite:///techhelp.db"
STORAGE_DIR = os.getenv("TECHHELP_STORAGE_DIR", "storage")
RUNTIME_DIR = os.getenv("TECHHELP_RUNTIME_DIR", "runtime")
PUBLIC_URL = os.getenv("TECHHELP_PUBLIC_URL", "http://localhost:8000")

# ── Sessions ─────────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
CONFIRMATION_EXPIRY_HOURS = 48
MIN_PASSWORD_LENGTH = 6
REQUIRE_EMAIL_CONFIRMATION = env_flag("TECHHELP_REQUIRE_EMAIL_CONFIRMATION", True)
SESSION_TOKEN_KEY = "sessionToken"

# ── Navigation ───────────────────────────────────────────────────────
LOGIN_PATH = "/login"
DEFAULT_PATH = "/dashboard"

# ── Notifications ────────────────────────────────────────────────────
READ_ANNOUNCEMENTS_KEY = "readAnnouncements"
ANNOUNCEMENT_FEED_LIMIT = 5
SNAPSHOT_ATTEMPTS = 3

# ── Dashboards / analytics ───────────────────────────────────────────
DASHBOARD_RECENT_LIMIT = 3
ADMIN_RECENT_LIMIT = 5
ADMIN_DAILY_STATS_DAYS = 7
ANALYTICS_RANGES = {"7d": 7, "30d": 30, "90d": 90}

# ── Status handling ──────────────────────────────────────────────────
# Product behaviour is lenient: any status of the enumeration may be written.
STRICT_STATUS_TRANSITIONS = env_flag("TECHHELP_STRICT_STATUS_TRANSITIONS", False)

# ── Object storage buckets ───────────────────────────────────────────
PRIVATE_PREFIX = "private"
DOCUMENT_BUCKETS = {
    "financial": "financial_documents",
    "medical": "medical_documents",
    "government": "government_documents",
}
CERTIFICATE_BUCKET = "certificates"
AVATAR_BUCKET = "profile_pictures"

# ── Form vocabularies ────────────────────────────────────────────────
INCOME_CATEGORIES = ["Salary", "Freelance", "Investments", "Gifts", "Other Income"]
EXPENSE_CATEGORIES = [
    "Housing", "Food", "Transportation", "Healthcare", "Entertainment",
    "Utilities", "Education", "Shopping", "Other Expenses",
]
PAYMENT_METHODS = ["Cash", "Credit Card", "Debit Card", "Bank Transfer", "Mobile Payment", "Other"]
SPECIALIZATIONS = [
    "General Medicine", "Cardiology", "Dermatology", "Neurology", "Orthopedics",
    "Pediatrics", "Psychiatry", "Ophthalmology", "Dentistry", "Other",
]
TIME_SLOTS = [
    "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
    "14:00", "14:30", "15:00", "15:30", "16:00", "16:30",
]
CERTIFICATE_TYPES = [
    "Birth Certificate", "Income Certificate", "Residence Certificate",
    "Marriage Certificate", "Property Tax Certificate", "Business License",
    "Police Clearance", "Other",
]
