"""
Role-Based Access Control – loading profiles and gating protected views.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from techhelp.config import DEFAULT_PATH, LOGIN_PATH
from techhelp.database import TableStore, eq
from techhelp.models import ROLES, Profile

ADMIN_PREFIX = "/admin"


class PermissionDenied(Exception):
    """Raised when an identity lacks the admin role for an operation."""


class GateDecision(Enum):
    LOADING = "loading"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_DEFAULT = "redirect_default"
    RENDER = "render"


@dataclass(frozen=True)
class GateResult:
    decision: GateDecision
    location: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision is GateDecision.RENDER


def load_profile(store: TableStore, user_id: str) -> Profile:
    """Look up the single profile row of an identity."""
    rows = store.select("profiles", [eq("id", user_id)], limit=2)
    if len(rows) != 1:
        raise ValueError(f"Expected one profile for user {user_id}, found {len(rows)}.")

    row = rows[0]
    role = str(row.get("role") or "user").strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unsupported role '{row.get('role')}' in profiles.")
    row["role"] = role
    return Profile.from_row(row)


def route_requires_admin(path: str) -> bool:
    return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")


def authorize(user, is_loading: bool, role: Optional[str], require_admin: bool = False) -> GateResult:
    """Decide what a protected view shows for the current session state."""
    if is_loading:
        return GateResult(GateDecision.LOADING)
    if user is None:
        return GateResult(GateDecision.REDIRECT_LOGIN, LOGIN_PATH)
    if require_admin and role != "admin":
        return GateResult(GateDecision.REDIRECT_DEFAULT, DEFAULT_PATH)
    return GateResult(GateDecision.RENDER)


def authorize_session(manager, require_admin: bool = False) -> GateResult:
    role = manager.profile.role if manager.profile else None
    return authorize(manager.user, manager.is_loading, role, require_admin=require_admin)


def authorize_path(manager, path: str) -> GateResult:
    return authorize_session(manager, require_admin=route_requires_admin(path))


def require_admin(profile: Optional[Profile]) -> None:
    if profile is None or not profile.is_admin:
        who = profile.full_name or profile.id if profile else "anonymous"
        raise PermissionDenied(f"{who} lacks required role: admin")
