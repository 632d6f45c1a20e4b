"""
Authentication service: password sign-in, sign-up with profile metadata,
session issuance and revocation.

Access tokens are HS256 JWTs that carry the session id; a session is valid
while its token verifies and its auth_sessions row is not revoked.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from techhelp.config import (
    CONFIRMATION_EXPIRY_HOURS,
    MIN_PASSWORD_LENGTH,
    REQUIRE_EMAIL_CONFIRMATION,
    SECRET_KEY,
    TOKEN_EXPIRY_HOURS,
)
from techhelp.database import BackendError, TableStore, eq
from techhelp.models import AuthSession, AuthUser, utcnow_iso

ACCESS_PURPOSE = "access"
CONFIRM_PURPOSE = "email_confirmation"


class AuthError(Exception):
    """Raised for bad credentials, unconfirmed accounts or invalid sessions."""


class AuthService:
    def __init__(self, store: TableStore, secret_key: str = SECRET_KEY,
                 expiry_hours: int = TOKEN_EXPIRY_HOURS,
                 require_confirmation: bool = REQUIRE_EMAIL_CONFIRMATION):
        self.store = store
        self.secret_key = secret_key
        self.expiry_hours = expiry_hours
        self.require_confirmation = require_confirmation

    # ── Tokens ───────────────────────────────────────────────────────

    def _encode(self, payload: Dict[str, Any], hours: int) -> str:
        now = datetime.now(timezone.utc)
        claims = dict(payload, iat=now, exp=now + timedelta(hours=hours))
        return jwt.encode(claims, self.secret_key, algorithm="HS256")

    def _decode(self, token: str, purpose: str) -> Optional[Dict[str, Any]]:
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None
        if claims.get("purpose") != purpose:
            return None
        return claims

    @staticmethod
    def _user(row: Dict[str, Any]) -> AuthUser:
        return AuthUser(id=row["id"], email=row["email"], user_metadata=dict(row.get("user_metadata") or {}))

    def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        rows = self.store.select("auth_users", [eq("email", email.strip().lower())], limit=1)
        return rows[0] if rows else None

    # ── Operations ───────────────────────────────────────────────────

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> AuthUser:
        """Register an identity and its profile row; returns the new user."""
        email = (email or "").strip().lower()
        if "@" not in email:
            raise AuthError("A valid email address is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        if self._find_by_email(email):
            raise AuthError("User already registered")

        metadata = dict(metadata or {})
        row = self.store.insert("auth_users", {
            "email": email,
            "password_hash": generate_password_hash(password),
            "user_metadata": metadata,
            "email_confirmed_at": None if self.require_confirmation else utcnow_iso(),
        })
        self.store.insert("profiles", {
            "id": row["id"],
            "full_name": metadata.get("full_name", ""),
            "role": "user",
        })
        if self.require_confirmation:
            token = self.confirmation_token(row["id"])
            print(f"[auth] Confirmation token for {email}: {token}")
        return self._user(row)

    def confirmation_token(self, user_id: str) -> str:
        return self._encode({"sub": user_id, "purpose": CONFIRM_PURPOSE}, CONFIRMATION_EXPIRY_HOURS)

    def confirm_email(self, token: str) -> AuthUser:
        claims = self._decode(token, CONFIRM_PURPOSE)
        if not claims:
            raise AuthError("Confirmation link is invalid or has expired")
        rows = self.store.update("auth_users", {"email_confirmed_at": utcnow_iso()}, [eq("id", claims["sub"])])
        if not rows:
            raise AuthError("User not found")
        return self._user(rows[0])

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        row = self._find_by_email(email or "")
        if not row or not check_password_hash(row["password_hash"], password or ""):
            raise AuthError("Invalid login credentials")
        if self.require_confirmation and not row.get("email_confirmed_at"):
            raise AuthError("Email not confirmed")

        session_row = self.store.insert("auth_sessions", {"user_id": row["id"]})
        self.store.update("auth_users", {"last_sign_in_at": utcnow_iso()}, [eq("id", row["id"])])
        token = self._encode(
            {"sub": row["id"], "email": row["email"], "sid": session_row["id"], "purpose": ACCESS_PURPOSE},
            self.expiry_hours,
        )
        return AuthSession(
            access_token=token,
            user=self._user(row),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=self.expiry_hours),
        )

    def get_session(self, token: Optional[str]) -> Optional[AuthSession]:
        """Return the live session for *token*, or None."""
        if not token:
            return None
        claims = self._decode(token, ACCESS_PURPOSE)
        if not claims:
            return None
        sessions = self.store.select("auth_sessions", [eq("id", claims.get("sid"))], limit=1)
        if not sessions or sessions[0].get("revoked_at"):
            return None
        users = self.store.select("auth_users", [eq("id", claims["sub"])], limit=1)
        if not users:
            return None
        return AuthSession(
            access_token=token,
            user=self._user(users[0]),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )

    def sign_out(self, token: Optional[str]) -> None:
        claims = self._decode(token, ACCESS_PURPOSE) if token else None
        if not claims:
            raise AuthError("Auth session missing")
        self.store.update("auth_sessions", {"revoked_at": utcnow_iso()}, [eq("id", claims.get("sid"))])

    def delete_user(self, user_id: str) -> None:
        """Remove an identity, its sessions and its profile."""
        removed = self.store.delete("auth_users", [eq("id", user_id)])
        if not removed:
            raise AuthError("User not found")
        try:
            self.store.delete("auth_sessions", [eq("user_id", user_id)])
            self.store.delete("profiles", [eq("id", user_id)])
        except BackendError as e:
            raise AuthError(f"User removed but cleanup failed: {e}") from e
