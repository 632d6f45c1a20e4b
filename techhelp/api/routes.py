"""
Flask route handlers for the REST API.
"""

import io
import os
import sys
import traceback
from typing import Any, Optional

from flask import jsonify, request, send_file
from sqlalchemy import text as sa_text
from werkzeug.exceptions import HTTPException

from techhelp.analysis import admin_overview, compute_analytics
from techhelp.auth_service import AuthError
from techhelp.config import AVATAR_BUCKET, TOKEN_EXPIRY_HOURS
from techhelp.database import BackendError
from techhelp.notifier import Notifier, log_error
from techhelp.repository import ALL
from techhelp.services import (
    AnnouncementsManager,
    AppointmentsAdminManager,
    DocumentManager,
    FileBearingManager,
    FinanceManager,
    GovernmentManager,
    HealthManager,
    ProfileService,
    RequestsManager,
    UsersManager,
    build_user_dashboard,
)
from techhelp.session import SessionManager
from techhelp.storage import StorageError
from techhelp.api.auth import attach_session, drop_session, session_required, sessions

FAILURE_STATUS = {"validation": 400, "permission": 403, "backend": 502, "cancelled": 409}


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _respond(notifier: Notifier, data: Any = None, failure: Optional[str] = None, status: int = 200):
    """JSON envelope: success flag, payload and the notices raised while handling."""
    notices = notifier.drain()
    if failure:
        errors = [n["message"] for n in notices if n["level"] == "error"]
        message = errors[-1] if errors else "Operation cancelled"
        return jsonify({"success": False, "error": message, "notices": notices}), FAILURE_STATUS[failure]
    return jsonify({"success": True, "data": _dump(data), "notices": notices}), status


def _confirmed(prompt: str) -> bool:
    return request.args.get("confirm", "").lower() in ("1", "true", "yes")


def _json() -> dict:
    return request.get_json(silent=True) or {}


def register_routes(app, backend, local_store):
    """Register all API routes on the Flask *app*."""

    def manager(cls, **extra):
        ctx = request.session_ctx
        if issubclass(cls, FileBearingManager):
            extra.setdefault("storage", backend.storage)
        return cls(backend.store, ctx.manager, request.notifier, confirm=_confirmed, **extra)

    def listing(mgr):
        items = mgr.list(request.args.get("filter", ALL))
        if mgr.last_failure:
            return _respond(mgr.notifier, failure=mgr.last_failure)
        term = request.args.get("search")
        if term:
            items = mgr.search(term)
        return _respond(mgr.notifier, items)

    def outcome(mgr, result, status: int = 200):
        if mgr.last_failure:
            return _respond(mgr.notifier, failure=mgr.last_failure)
        return _respond(mgr.notifier, result, status=status)

    def uploaded_file():
        upload = request.files.get("file")
        if upload is None:
            return None, None, None
        return upload.filename, upload.read(), upload.mimetype

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "techHelp API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "dashboard": "/api/dashboard",
                "notifications": "/api/notifications",
                "admin": "/api/admin/overview",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False, "storage": False}
        try:
            with backend.engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            log_error("Health check database", e)

        checks["storage"] = backend.storage.ping()
        all_healthy = all(checks.values())

        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(sessions),
            "realtime_subscribers": backend.feed.subscriber_count(),
        }), 200 if all_healthy else 503

    @app.route(f"/storage/{AVATAR_BUCKET}/<path:path>", methods=["GET"])
    def public_avatar(path):
        try:
            data = backend.storage.download(AVATAR_BUCKET, path)
        except StorageError:
            return jsonify({"error": "Object not found"}), 404
        return send_file(io.BytesIO(data), download_name=os.path.basename(path))

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/signup", methods=["POST"])
    def signup():
        data = _json()
        notifier = Notifier()
        mgr = SessionManager(backend.auth, backend.store, notifier)
        ok = mgr.sign_up(data.get("email", "").strip(), data.get("password", ""),
                         data.get("full_name", "").strip())
        if not ok:
            return _respond(notifier, failure="validation")
        return _respond(notifier, {"redirect": mgr.navigator.location}, status=201)

    @app.route("/api/auth/confirm", methods=["POST"])
    def confirm_email():
        token = _json().get("token", "")
        try:
            user = backend.auth.confirm_email(token)
        except AuthError as e:
            log_error("Email confirmation", e)
            return jsonify({"success": False, "error": str(e)}), 400
        return jsonify({"success": True, "data": {"id": user.id, "email": user.email}}), 200

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        data = request.json
        notifier = Notifier()
        mgr = SessionManager(backend.auth, backend.store, notifier)
        if not mgr.sign_in(data.get("email", "").strip(), data.get("password", "")):
            notices = notifier.drain()
            return jsonify({"success": False, "error": notices[-1]["message"], "notices": notices}), 401

        ctx = attach_session(backend, local_store, mgr, notifier)
        return jsonify({
            "success": True,
            "token": mgr.access_token,
            "user": {"id": mgr.user.id, "email": mgr.user.email},
            "profile": _dump(mgr.profile),
            "redirect": mgr.navigator.location,
            "expires_in_hours": TOKEN_EXPIRY_HOURS,
            "notices": ctx.notifier.drain(),
        }), 200

    @app.route("/api/auth/logout", methods=["POST"])
    @session_required()
    def logout():
        ctx = request.session_ctx
        ok = ctx.manager.sign_out()
        drop_session(request.token)
        if not ok:
            return _respond(ctx.notifier, failure="backend")
        return _respond(ctx.notifier, {"redirect": ctx.manager.navigator.location})

    @app.route("/api/session", methods=["GET"])
    @session_required()
    def get_session():
        ctx = request.session_ctx
        mgr = ctx.manager
        return jsonify({
            "success": True,
            "user": {"id": mgr.user.id, "email": mgr.user.email},
            "profile": _dump(mgr.profile),
            "state": mgr.state.value,
            "session": {
                "created_at": ctx.created_at.isoformat(),
                "last_activity": ctx.last_activity.isoformat(),
            },
        }), 200

    # ── Profile / dashboard ──────────────────────────────────────────

    @app.route("/api/profile", methods=["GET", "PUT"])
    @session_required()
    def profile():
        ctx = request.session_ctx
        if request.method == "GET":
            return _respond(request.notifier, ctx.manager.profile)
        svc = ProfileService(backend.store, backend.storage, ctx.manager, request.notifier)
        updated = svc.update_profile(_json())
        return outcome(svc, updated)

    @app.route("/api/profile/avatar", methods=["POST"])
    @session_required()
    def upload_avatar():
        ctx = request.session_ctx
        svc = ProfileService(backend.store, backend.storage, ctx.manager, request.notifier)
        filename, data, _ = uploaded_file()
        url = svc.upload_avatar(filename, data)
        return outcome(svc, {"avatar_url": url})

    @app.route("/api/dashboard", methods=["GET"])
    @session_required()
    def dashboard():
        ctx = request.session_ctx
        return _respond(request.notifier, build_user_dashboard(backend.store, ctx.manager))

    # ── Finance ──────────────────────────────────────────────────────

    @app.route("/api/finance/transactions", methods=["GET", "POST"])
    @session_required()
    def transactions():
        mgr = manager(FinanceManager)
        if request.method == "GET":
            return listing(mgr)
        return outcome(mgr, mgr.create(_json()), status=201)

    @app.route("/api/finance/transactions/<record_id>", methods=["DELETE"])
    @session_required()
    def delete_transaction(record_id):
        mgr = manager(FinanceManager)
        return outcome(mgr, mgr.remove(record_id))

    @app.route("/api/finance/summary", methods=["GET"])
    @session_required()
    def finance_summary():
        mgr = manager(FinanceManager)
        mgr.list()
        if mgr.last_failure:
            return _respond(mgr.notifier, failure=mgr.last_failure)
        return _respond(mgr.notifier, mgr.summary())

    # ── Health ───────────────────────────────────────────────────────

    @app.route("/api/health/appointments", methods=["GET", "POST"])
    @session_required()
    def appointments():
        mgr = manager(HealthManager)
        if request.method == "GET":
            return listing(mgr)
        return outcome(mgr, mgr.create(_json()), status=201)

    @app.route("/api/health/appointments/<record_id>/cancel", methods=["POST"])
    @session_required()
    def cancel_appointment(record_id):
        mgr = manager(HealthManager)
        return outcome(mgr, mgr.cancel(record_id))

    # ── Government ───────────────────────────────────────────────────

    @app.route("/api/government/requests", methods=["GET", "POST"])
    @session_required()
    def certificate_requests():
        mgr = manager(GovernmentManager)
        if request.method == "GET":
            return listing(mgr)
        return outcome(mgr, mgr.create(_json()), status=201)

    @app.route("/api/government/requests/<record_id>/certificate", methods=["GET"])
    @session_required()
    def download_certificate(record_id):
        mgr = manager(GovernmentManager)
        req = mgr.get(record_id)
        if req is None:
            if not mgr.last_failure:
                mgr.notifier.error("Request not found")
                return _respond(mgr.notifier, failure="validation")
            return _respond(mgr.notifier, failure=mgr.last_failure)
        data = mgr.download_certificate(req)
        if data is None:
            return _respond(mgr.notifier, failure=mgr.last_failure)
        return send_file(io.BytesIO(data), as_attachment=True,
                         download_name=os.path.basename(req.issued_certificate_url))

    # ── Documents ────────────────────────────────────────────────────

    document_pages = {
        "finance": FinanceManager,
        "health": HealthManager,
        "government": GovernmentManager,
    }

    @app.route("/api/<page>/documents", methods=["POST"])
    @session_required()
    def upload_page_document(page):
        cls = document_pages.get(page)
        if cls is None:
            return jsonify({"error": "Endpoint not found"}), 404
        mgr = manager(cls)
        filename, data, content_type = uploaded_file()
        created = mgr.upload_document(request.form.get("name", ""), filename, data, content_type)
        return outcome(mgr, created, status=201)

    @app.route("/api/documents", methods=["GET", "POST"])
    @session_required()
    def documents():
        mgr = manager(DocumentManager)
        if request.method == "GET":
            return listing(mgr)
        filename, data, content_type = uploaded_file()
        created = mgr.upload(request.form.get("category"), request.form.get("name", ""),
                             filename, data, content_type)
        return outcome(mgr, created, status=201)

    @app.route("/api/documents/<record_id>/download", methods=["GET"])
    @session_required()
    def download_document(record_id):
        mgr = manager(DocumentManager)
        doc = mgr.get(record_id)
        if doc is None:
            if not mgr.last_failure:
                return jsonify({"error": "Document not found"}), 404
            return _respond(mgr.notifier, failure=mgr.last_failure)
        data = mgr.download(doc)
        if data is None:
            return _respond(mgr.notifier, failure=mgr.last_failure)
        return send_file(io.BytesIO(data), mimetype=doc.file_type, as_attachment=True,
                         download_name=doc.name)

    @app.route("/api/documents/<record_id>", methods=["DELETE"])
    @session_required()
    def delete_document(record_id):
        mgr = manager(DocumentManager)
        return outcome(mgr, mgr.remove(record_id))

    # ── Notifications ────────────────────────────────────────────────

    @app.route("/api/notifications", methods=["GET"])
    @session_required()
    def notifications():
        ctx = request.session_ctx
        tracker = ctx.tracker
        return _respond(request.notifier, {
            "announcements": tracker.announcements,
            "unread_count": tracker.unread_count,
            "is_open": tracker.is_open,
        })

    @app.route("/api/notifications/toggle", methods=["POST"])
    @session_required()
    def toggle_notifications():
        ctx = request.session_ctx
        tracker = ctx.tracker
        is_open = tracker.toggle()
        return _respond(request.notifier, {"is_open": is_open, "unread_count": tracker.unread_count})

    # ── Admin ────────────────────────────────────────────────────────

    @app.route("/api/admin/overview", methods=["GET"])
    @session_required(admin=True)
    def overview():
        notifier = request.notifier
        try:
            data = admin_overview(backend.store)
        except BackendError as e:
            log_error("Error fetching dashboard data", e)
            notifier.error("Failed to load dashboard data")
            return _respond(notifier, failure="backend")
        return _respond(notifier, data)

    @app.route("/api/admin/analytics", methods=["GET"])
    @session_required(admin=True)
    def analytics():
        notifier = request.notifier
        try:
            data = compute_analytics(backend.store, request.args.get("range", "7d"))
        except ValueError as e:
            notifier.error(str(e))
            return _respond(notifier, failure="validation")
        except BackendError as e:
            log_error("Error fetching analytics", e)
            notifier.error("Failed to load analytics")
            return _respond(notifier, failure="backend")
        return _respond(notifier, data)

    @app.route("/api/admin/users", methods=["GET"])
    @session_required(admin=True)
    def users():
        return listing(manager(UsersManager, auth=backend.auth))

    @app.route("/api/admin/users/<user_id>/role", methods=["PUT"])
    @session_required(admin=True)
    def update_user_role(user_id):
        mgr = manager(UsersManager, auth=backend.auth)
        return outcome(mgr, mgr.update_role(user_id, _json().get("role", "")))

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @session_required(admin=True)
    def deactivate_user(user_id):
        mgr = manager(UsersManager, auth=backend.auth)
        return outcome(mgr, mgr.deactivate(user_id))

    @app.route("/api/admin/requests", methods=["GET"])
    @session_required(admin=True)
    def admin_requests():
        return listing(manager(RequestsManager))

    @app.route("/api/admin/requests/<record_id>/status", methods=["PUT"])
    @session_required(admin=True)
    def update_request_status(record_id):
        mgr = manager(RequestsManager)
        return outcome(mgr, mgr.update_status(record_id, _json().get("status", "")))

    @app.route("/api/admin/requests/<record_id>/certificate", methods=["POST"])
    @session_required(admin=True)
    def upload_certificate(record_id):
        mgr = manager(RequestsManager)
        filename, data, _ = uploaded_file()
        return outcome(mgr, mgr.approve_with_certificate(record_id, filename, data))

    @app.route("/api/admin/appointments", methods=["GET"])
    @session_required(admin=True)
    def admin_appointments():
        return listing(manager(AppointmentsAdminManager))

    @app.route("/api/admin/appointments/<record_id>/status", methods=["PUT"])
    @session_required(admin=True)
    def update_appointment_status(record_id):
        mgr = manager(AppointmentsAdminManager)
        return outcome(mgr, mgr.update_status(record_id, _json().get("status", "")))

    @app.route("/api/admin/announcements", methods=["GET", "POST"])
    @session_required(admin=True)
    def announcements():
        mgr = manager(AnnouncementsManager)
        if request.method == "GET":
            return listing(mgr)
        return outcome(mgr, mgr.create(_json()), status=201)

    @app.route("/api/admin/announcements/<record_id>", methods=["DELETE"])
    @session_required(admin=True)
    def delete_announcement(record_id):
        mgr = manager(AnnouncementsManager)
        return outcome(mgr, mgr.remove(record_id))

    @app.route("/api/admin/documents/sweep", methods=["POST"])
    @session_required(admin=True)
    def sweep_documents():
        mgr = manager(DocumentManager)
        mgr.all_rows = True
        try:
            swept = mgr.sweep_tombstones()
        except BackendError as e:
            log_error("Error sweeping documents", e)
            mgr.notifier.error("Failed to sweep documents")
            return _respond(mgr.notifier, failure="backend")
        return _respond(mgr.notifier, {"swept": swept})

    @app.route("/api/sessions", methods=["GET"])
    def get_sessions_info():
        if os.getenv("FLASK_ENV") != "development":
            return jsonify({"error": "Not available in production"}), 403
        return jsonify({
            "active_sessions": len(sessions),
            "sessions": [
                {
                    "user_id": ctx.manager.user.id if ctx.manager.user else None,
                    "role": ctx.manager.profile.role if ctx.manager.profile else None,
                    "created_at": ctx.created_at.isoformat(),
                    "last_activity": ctx.last_activity.isoformat(),
                }
                for ctx in sessions.values()
            ],
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.name, "message": str(e)}), e.code
        print(f"[ERROR] Unhandled API error: {e}", file=sys.stderr)
        traceback.print_exc()
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
