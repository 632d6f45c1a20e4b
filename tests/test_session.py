"""
Unit tests for the session manager – sign-up, sign-in, restore and sign-out.
"""

from conftest import PASSWORD, register

from techhelp.backend import memory_backend
from techhelp.config import SESSION_TOKEN_KEY
from techhelp.database import eq
from techhelp.notifier import Notifier
from techhelp.session import SessionContext, SessionManager, SessionState


def make_manager(backend, local_store=None):
    return SessionManager(backend.auth, backend.store, Notifier(), local_store=local_store)


def test_loading_until_first_check(backend):
    manager = make_manager(backend)
    assert manager.is_loading
    assert manager.state is SessionState.LOADING
    manager.check_session()
    assert not manager.is_loading
    assert manager.state is SessionState.UNAUTHENTICATED


def test_sign_up_creates_profile_and_redirects_to_login(backend):
    manager = make_manager(backend)
    assert manager.sign_up("bob@example.com", PASSWORD, "Bob")
    assert manager.navigator.location == "/login"
    assert "Registration successful" in manager.notifier.last().message
    profile = backend.store.select("profiles")[0]
    assert profile["full_name"] == "Bob" and profile["role"] == "user"


def test_sign_up_rejects_short_password_and_duplicates(backend):
    manager = make_manager(backend)
    assert not manager.sign_up("bob@example.com", "123", "Bob")
    assert "at least" in manager.notifier.last().message
    assert manager.sign_up("bob@example.com", PASSWORD, "Bob")
    assert not manager.sign_up("BOB@example.com", PASSWORD, "Bob")
    assert manager.notifier.last().message == "User already registered"


def test_sign_in_loads_profile_and_persists_token(backend, local_store):
    register(backend, "carol@example.com", full_name="Carol")
    manager = make_manager(backend, local_store)

    assert manager.sign_in("carol@example.com", PASSWORD)
    assert manager.user.email == "carol@example.com"
    assert manager.profile.full_name == "Carol"
    assert manager.navigator.location == "/dashboard"
    assert manager.notifier.last().message == "Successfully signed in!"
    assert local_store.get(SESSION_TOKEN_KEY) == manager.access_token


def test_sign_in_wrong_password(backend):
    register(backend, "carol@example.com")
    manager = make_manager(backend)
    assert not manager.sign_in("carol@example.com", "wrong-password")
    assert manager.user is None
    assert manager.notifier.last().level == "error"
    assert manager.notifier.last().message == "Invalid login credentials"


def test_unconfirmed_email_cannot_sign_in(tmp_path):
    backend = memory_backend(tmp_path, require_confirmation=True)
    user = backend.auth.sign_up("dave@example.com", PASSWORD, {"full_name": "Dave"})
    manager = make_manager(backend)

    assert not manager.sign_in("dave@example.com", PASSWORD)
    assert manager.notifier.last().message == "Email not confirmed"

    backend.auth.confirm_email(backend.auth.confirmation_token(user.id))
    assert manager.sign_in("dave@example.com", PASSWORD)


def test_check_session_restores_persisted_token(backend, local_store):
    register(backend, "erin@example.com")
    first = make_manager(backend, local_store)
    first.sign_in("erin@example.com", PASSWORD)

    second = make_manager(backend, local_store)
    second.check_session()
    assert second.user.id == first.user.id
    assert second.profile is not None


def test_sign_out_clears_state_and_revokes(backend, local_store):
    register(backend, "fay@example.com")
    manager = make_manager(backend, local_store)
    manager.sign_in("fay@example.com", PASSWORD)
    token = manager.access_token

    assert manager.sign_out()
    assert manager.user is None and manager.profile is None
    assert manager.navigator.location == "/login"
    assert local_store.get(SESSION_TOKEN_KEY) is None
    assert backend.auth.get_session(token) is None


def test_sign_out_without_session_reports_error(backend):
    manager = make_manager(backend)
    manager.check_session()
    assert not manager.sign_out()
    assert manager.notifier.last().message == "Auth session missing"


def test_profile_failure_keeps_identity(backend, capsys):
    user = register(backend, "gus@example.com")
    backend.store.delete("profiles", [eq("id", user.id)])

    manager = make_manager(backend)
    assert manager.sign_in("gus@example.com", PASSWORD)
    assert manager.user is not None
    assert manager.profile is None
    assert "Error fetching profile" in capsys.readouterr().err


def test_check_session_clears_identity_once_revoked(backend):
    register(backend, "hal@example.com")
    manager = make_manager(backend)
    manager.sign_in("hal@example.com", PASSWORD)
    token = manager.access_token
    backend.auth.sign_out(token)

    manager.check_session(token)
    assert manager.user is None
    assert manager.profile is None
    assert manager.access_token is None
    assert manager.state is SessionState.UNAUTHENTICATED


def test_revalidate_reloads_role_without_loading(backend):
    register(backend, "ivy@example.com", role="admin")
    manager = make_manager(backend)
    manager.sign_in("ivy@example.com", PASSWORD)
    backend.store.update("profiles", {"role": "user"}, [eq("id", manager.user.id)])

    assert manager.revalidate(manager.access_token)
    assert not manager.is_admin
    assert not manager.is_loading

    backend.auth.delete_user(manager.user.id)
    assert not manager.revalidate(manager.access_token)
    assert manager.user is None


def test_context_close_unmounts_tracker(backend):
    class Tracker:
        unmounted = False

        def unmount(self):
            self.unmounted = True

    tracker = Tracker()
    ctx = SessionContext(manager=make_manager(backend), notifier=Notifier(), tracker=tracker)
    before = ctx.last_activity
    ctx.touch()
    assert ctx.last_activity >= before
    ctx.close()
    assert tracker.unmounted
