"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback
from pathlib import Path

from flask import Flask
from flask_cors import CORS

from techhelp.backend import Backend, init_backend
from techhelp.config import RUNTIME_DIR, TOKEN_EXPIRY_HOURS
from techhelp.local_store import LocalStore
from techhelp.api.auth import cleanup_expired_sessions
from techhelp.api.routes import register_routes


def create_app(backend: Backend = None, local_store: LocalStore = None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if backend is None:
            print("[init] Initializing backend...")
            backend = init_backend()
        if local_store is None:
            local_store = LocalStore(Path(RUNTIME_DIR) / "local_store.json")
        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    app.config["BACKEND"] = backend
    app.config["LOCAL_STORE"] = local_store

    # Idle client sessions hold live feed subscriptions.
    app.before_request(cleanup_expired_sessions)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, backend, local_store)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("techHelp – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS enabled: True")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/signup")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - GET  http://{host}:{port}/api/dashboard")
    print(f"  - GET  http://{host}:{port}/api/finance/transactions")
    print(f"  - GET  http://{host}:{port}/api/health/appointments")
    print(f"  - GET  http://{host}:{port}/api/government/requests")
    print(f"  - GET  http://{host}:{port}/api/documents")
    print(f"  - GET  http://{host}:{port}/api/notifications")
    print(f"  - GET  http://{host}:{port}/api/admin/overview")
    print(f"  - POST http://{host}:{port}/api/auth/logout")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
