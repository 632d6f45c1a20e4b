"""
Session store: the current identity, its cached profile, and the
sign-in / sign-up / sign-out / session-check operations.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from techhelp.auth_service import AuthError, AuthService
from techhelp.config import DEFAULT_PATH, LOGIN_PATH, SESSION_TOKEN_KEY
from techhelp.database import BackendError, TableStore
from techhelp.local_store import LocalStore
from techhelp.models import AuthUser, Profile
from techhelp.notifier import Notifier, log_error
from techhelp.rbac import load_profile


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"


class Navigator:
    """Records where the surface should take the user next."""

    def __init__(self, location: str = "/"):
        self.location = location
        self.history: List[str] = []

    def go(self, path: str) -> None:
        self.history.append(path)
        self.location = path


class SessionManager:
    """
    Holds the identity and profile; the only place they are mutated.

    ``is_loading`` is true while any operation is in flight and until the
    first session check (or sign-in) has completed.
    """

    def __init__(self, auth: AuthService, store: TableStore, notifier: Notifier,
                 navigator: Optional[Navigator] = None,
                 local_store: Optional[LocalStore] = None):
        self.auth = auth
        self.store = store
        self.notifier = notifier
        self.navigator = navigator or Navigator()
        self.local_store = local_store
        self.user: Optional[AuthUser] = None
        self.profile: Optional[Profile] = None
        self.access_token: Optional[str] = None
        self._in_flight = 0
        self._checked = False

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0 or not self._checked

    @property
    def state(self) -> SessionState:
        if self.is_loading:
            return SessionState.LOADING
        if self.user is not None:
            return SessionState.AUTHENTICATED
        return SessionState.UNAUTHENTICATED

    @property
    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.is_admin

    @contextmanager
    def _loading(self):
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1
            self._checked = True

    def _clear_identity(self) -> None:
        self.user = None
        self.profile = None
        self.access_token = None

    def _fetch_profile(self, user_id: str) -> Optional[Profile]:
        try:
            self.profile = load_profile(self.store, user_id)
        except (BackendError, ValueError) as e:
            log_error("Error fetching profile", e)
            self.profile = None
            return None
        return self.profile

    def _apply_session(self, token: Optional[str]) -> bool:
        try:
            session = self.auth.get_session(token)
        except (AuthError, BackendError) as e:
            log_error("Error checking auth session", e)
            session = None
        if not session:
            self._clear_identity()
            return False
        self.user = session.user
        self.access_token = session.access_token
        self._fetch_profile(session.user.id)
        return True

    # ── Operations ───────────────────────────────────────────────────

    def check_session(self, token: Optional[str] = None) -> None:
        """Restore the session for *token* (or the persisted one). Never raises."""
        with self._loading():
            if token is None and self.local_store is not None:
                token = self.local_store.get(SESSION_TOKEN_KEY)
            self._apply_session(token)

    def revalidate(self, token: str) -> bool:
        """
        Re-check an already restored session and reload its profile.

        Runs outside the loading state so concurrent requests on the same
        session are not gated as loading. Returns False (identity cleared)
        once the token is expired, revoked or its user is gone.
        """
        return self._apply_session(token)

    def refresh_profile(self) -> Optional[Profile]:
        if self.user is None:
            return None
        with self._loading():
            return self._fetch_profile(self.user.id)

    def sign_in(self, email: str, password: str) -> bool:
        with self._loading():
            try:
                session = self.auth.sign_in_with_password(email, password)
            except (AuthError, BackendError) as e:
                self.notifier.error(str(e) or "Error signing in")
                log_error("Sign in error", e)
                return False

            self.user = session.user
            self.access_token = session.access_token
            if self.local_store is not None:
                self.local_store.set(SESSION_TOKEN_KEY, session.access_token)
            self._fetch_profile(session.user.id)

            self.notifier.success("Successfully signed in!")
            self.navigator.go(DEFAULT_PATH)
            return True

    def sign_up(self, email: str, password: str, full_name: str) -> bool:
        with self._loading():
            try:
                self.auth.sign_up(email, password, {"full_name": full_name})
            except (AuthError, BackendError) as e:
                self.notifier.error(str(e) or "Error signing up")
                log_error("Sign up error", e)
                return False

            self.notifier.success(
                "Registration successful! \n"
                "Please check your email to verify your account before signing in."
            )
            self.navigator.go(LOGIN_PATH)
            return True

    def sign_out(self) -> bool:
        with self._loading():
            try:
                self.auth.sign_out(self.access_token)
            except (AuthError, BackendError) as e:
                self.notifier.error(str(e) or "Error signing out")
                log_error("Sign out error", e)
                return False

            self.user = None
            self.profile = None
            self.access_token = None
            if self.local_store is not None:
                self.local_store.remove(SESSION_TOKEN_KEY)

            self.notifier.success("Successfully signed out!")
            self.navigator.go(LOGIN_PATH)
            return True


@dataclass
class SessionContext:
    """Everything one client session owns, passed explicitly to managers."""
    manager: SessionManager
    notifier: Notifier
    tracker: Optional[object] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)

    def close(self) -> None:
        if self.tracker is not None:
            self.tracker.unmount()
