"""
Bearer-token session handling and the protected-view gate for the Flask API.
"""

from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Optional

from flask import current_app, jsonify, request

from techhelp.config import LOGIN_PATH, TOKEN_EXPIRY_HOURS
from techhelp.local_store import LocalStore
from techhelp.notifications import NotificationTracker, read_set_for
from techhelp.notifier import Notifier
from techhelp.rbac import GateDecision, authorize_session
from techhelp.session import SessionContext, SessionManager

# In-process client sessions keyed by access token.
sessions: Dict[str, SessionContext] = {}

GATE_STATUS = {
    GateDecision.LOADING: 503,
    GateDecision.REDIRECT_LOGIN: 401,
    GateDecision.REDIRECT_DEFAULT: 403,
}


def attach_session(backend, local_store: LocalStore, manager: SessionManager,
                   notifier: Notifier) -> SessionContext:
    """Register a signed-in manager under its token and start its notification tracker."""
    tracker = NotificationTracker(backend.store, backend.feed, read_set_for(local_store, manager.user.id))
    tracker.mount()
    ctx = SessionContext(manager=manager, notifier=notifier, tracker=tracker)
    sessions[manager.access_token] = ctx
    return ctx


def restore_session(backend, local_store: LocalStore, token: str) -> Optional[SessionContext]:
    """Rebuild a context for a token issued earlier (e.g. before a restart)."""
    notifier = Notifier()
    manager = SessionManager(backend.auth, backend.store, notifier)
    manager.check_session(token)
    if manager.user is None:
        return None
    return attach_session(backend, local_store, manager, notifier)


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header:
        parts = header.split(" ")
        return parts[1] if len(parts) == 2 else None
    return request.args.get("token")


def session_required(admin: bool = False):
    """
    Protect an endpoint; *admin* additionally requires the admin role.

    Cached sessions are re-checked against the auth service and the profile
    reloaded on every request, so revoked, expired, deleted or demoted
    identities lose access immediately. Each request gets its own Notifier.
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = bearer_token()
            if not token:
                return jsonify({"error": "Authentication token is missing", "redirect": LOGIN_PATH}), 401

            ctx = sessions.get(token)
            if ctx is None:
                ctx = restore_session(current_app.config["BACKEND"], current_app.config["LOCAL_STORE"], token)
            elif not ctx.manager.revalidate(token):
                drop_session(token)
                ctx = None
            if ctx is None:
                return jsonify({"error": "Invalid or expired session", "redirect": LOGIN_PATH}), 401

            gate = authorize_session(ctx.manager, require_admin=admin)
            if not gate.allowed:
                body = {"error": f"Access denied ({gate.decision.value})"}
                if gate.location:
                    body["redirect"] = gate.location
                return jsonify(body), GATE_STATUS[gate.decision]

            ctx.touch()
            request.session_ctx = ctx
            request.notifier = Notifier()
            request.token = token
            return f(*args, **kwargs)

        return decorated
    return decorator


def drop_session(token: str) -> None:
    ctx = sessions.pop(token, None)
    if ctx is not None:
        ctx.close()


def cleanup_expired_sessions():
    """Remove sessions that have been inactive beyond TOKEN_EXPIRY_HOURS."""
    now = datetime.now(timezone.utc)
    expired = [
        tok for tok, ctx in list(sessions.items())
        if (now - ctx.last_activity).total_seconds() > TOKEN_EXPIRY_HOURS * 3600
    ]
    for tok in expired:
        drop_session(tok)
    if expired:
        print(f"[cleanup] Removed {len(expired)} expired sessions")
