"""
API tests through the Flask test client on an in-memory backend.
"""

import io
from datetime import datetime, timedelta, timezone

import pytest

from conftest import PASSWORD, register

from techhelp.api import auth as api_auth
from techhelp.api.app import create_app
from techhelp.config import TOKEN_EXPIRY_HOURS
from techhelp.database import eq


@pytest.fixture
def client(backend, local_store):
    api_auth.sessions.clear()
    app = create_app(backend=backend, local_store=local_store)
    app.config["TESTING"] = True
    yield app.test_client()
    for token in list(api_auth.sessions):
        api_auth.drop_session(token)


def login(client, backend, email, role="user"):
    register(backend, email, role=role)
    resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


# ── Auth / gate ──────────────────────────────────────────────────────

def test_health_and_index(client):
    assert client.get("/").get_json()["service"] == "techHelp API"
    body = client.get("/health").get_json()
    assert body["status"] == "healthy"


@pytest.mark.parametrize("path", ["/api/dashboard", "/api/finance/transactions", "/api/admin/overview"])
def test_protected_routes_without_session_redirect_to_login(client, path):
    resp = client.get(path)
    assert resp.status_code == 401
    assert resp.get_json()["redirect"] == "/login"


def test_invalid_token_redirects_to_login(client):
    resp = client.get("/api/dashboard", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
    assert resp.get_json()["redirect"] == "/login"


@pytest.mark.parametrize("path", ["/api/admin/overview", "/api/admin/users", "/api/admin/analytics"])
def test_non_admin_redirected_to_dashboard(client, backend, path):
    headers = login(client, backend, "user@example.com")
    resp = client.get(path, headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()["redirect"] == "/dashboard"


def test_signup_then_login_and_logout(client, backend):
    resp = client.post("/api/auth/signup", json={"email": "new@example.com", "password": PASSWORD,
                                                 "full_name": "New"})
    assert resp.status_code == 201
    assert resp.get_json()["data"]["redirect"] == "/login"

    resp = client.post("/api/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    body = resp.get_json()
    assert body["profile"]["full_name"] == "New"
    assert body["notices"][0]["message"] == "Successfully signed in!"
    headers = {"Authorization": f"Bearer {body['token']}"}

    assert client.get("/api/session", headers=headers).get_json()["state"] == "authenticated"
    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/dashboard", headers=headers).status_code == 401


def test_bad_credentials(client, backend):
    register(backend, "x@example.com")
    resp = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Invalid login credentials"


def test_session_survives_server_side_cache_loss(client, backend):
    headers = login(client, backend, "cache@example.com")
    api_auth.sessions.clear()
    assert client.get("/api/dashboard", headers=headers).status_code == 200


def token_of(headers):
    return headers["Authorization"].split(" ")[1]


def test_deactivated_user_loses_cached_session(client, backend):
    user = login(client, backend, "gone@example.com")
    admin = login(client, backend, "boss@example.com", role="admin")
    assert client.get("/api/dashboard", headers=user).status_code == 200
    user_id = client.get("/api/session", headers=user).get_json()["user"]["id"]

    assert client.delete(f"/api/admin/users/{user_id}?confirm=1", headers=admin).status_code == 200

    resp = client.get("/api/dashboard", headers=user)
    assert resp.status_code == 401
    assert resp.get_json()["redirect"] == "/login"
    assert token_of(user) not in api_auth.sessions


def test_demoted_admin_is_redirected_to_dashboard(client, backend):
    admin = login(client, backend, "demoted@example.com", role="admin")
    assert client.get("/api/admin/overview", headers=admin).status_code == 200
    user_id = client.get("/api/session", headers=admin).get_json()["user"]["id"]
    backend.store.update("profiles", {"role": "user"}, [eq("id", user_id)])

    resp = client.get("/api/admin/overview", headers=admin)
    assert resp.status_code == 403
    assert resp.get_json()["redirect"] == "/dashboard"
    assert client.get("/api/dashboard", headers=admin).status_code == 200


def test_expired_token_loses_cached_session(client, backend):
    backend.auth.expiry_hours = -1
    headers = login(client, backend, "late@example.com")
    assert token_of(headers) in api_auth.sessions

    assert client.get("/api/dashboard", headers=headers).status_code == 401
    assert token_of(headers) not in api_auth.sessions


def test_session_revoked_elsewhere_loses_cached_session(client, backend):
    headers = login(client, backend, "elsewhere@example.com")
    assert client.get("/api/dashboard", headers=headers).status_code == 200

    backend.auth.sign_out(token_of(headers))
    assert client.get("/api/dashboard", headers=headers).status_code == 401


def test_idle_sessions_are_evicted(client, backend):
    headers = login(client, backend, "idle@example.com")
    token = token_of(headers)
    subscribers = backend.feed.subscriber_count("announcements")
    api_auth.sessions[token].last_activity = (
        datetime.now(timezone.utc) - timedelta(hours=TOKEN_EXPIRY_HOURS + 1)
    )

    assert client.get("/health").status_code == 200
    assert token not in api_auth.sessions
    assert backend.feed.subscriber_count("announcements") == subscribers - 1


def test_notices_are_scoped_to_their_request(client, backend):
    headers = login(client, backend, "quiet@example.com")
    resp = client.post("/api/finance/transactions", headers=headers,
                       json={"transaction_type": "expense", "amount": "12", "category": "Food"})
    assert [n["message"] for n in resp.get_json()["notices"]] == ["Transaction added successfully"]
    assert client.get("/api/dashboard", headers=headers).get_json()["notices"] == []


# ── Domain endpoints ─────────────────────────────────────────────────

def test_finance_create_list_and_validation(client, backend):
    headers = login(client, backend, "fin@example.com")
    resp = client.post("/api/finance/transactions", headers=headers,
                       json={"amount": 50.0, "transaction_type": "expense", "category": "Food"})
    assert resp.status_code == 201
    assert resp.get_json()["data"]["payment_method"] is None

    resp = client.post("/api/finance/transactions", headers=headers, json={"amount": "", "category": "Food"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Please fill in all required fields"

    rows = client.get("/api/finance/transactions?filter=expense", headers=headers).get_json()["data"]
    assert [r["category"] for r in rows] == ["Food"]
    summary = client.get("/api/finance/summary", headers=headers).get_json()["data"]
    assert summary["expense"] == 50.0


def test_delete_needs_confirmation(client, backend):
    headers = login(client, backend, "del@example.com")
    tx = client.post("/api/finance/transactions", headers=headers,
                     json={"amount": "5", "category": "Food"}).get_json()["data"]
    assert client.delete(f"/api/finance/transactions/{tx['id']}", headers=headers).status_code == 409
    assert client.delete(f"/api/finance/transactions/{tx['id']}?confirm=true", headers=headers).status_code == 200


def test_certificate_flow(client, backend):
    user = login(client, backend, "cit@example.com")
    admin = login(client, backend, "gov@example.com", role="admin")

    req = client.post("/api/government/requests", headers=user,
                      json={"certificate_type": "Birth Certificate", "purpose": ""}).get_json()["data"]
    resp = client.post(f"/api/admin/requests/{req['id']}/certificate", headers=admin,
                       data={"file": (io.BytesIO(b"certificate"), "birth.pdf")},
                       content_type="multipart/form-data")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "approved"

    download = client.get(f"/api/government/requests/{req['id']}/certificate", headers=user)
    assert download.status_code == 200
    assert download.data == b"certificate"


def test_document_upload_download_delete(client, backend):
    headers = login(client, backend, "doc@example.com")
    resp = client.post("/api/documents", headers=headers,
                       data={"category": "medical", "name": "Lab results",
                             "file": (io.BytesIO(b"results"), "lab.pdf")},
                       content_type="multipart/form-data")
    assert resp.status_code == 201
    doc = resp.get_json()["data"]

    assert client.get(f"/api/documents/{doc['id']}/download", headers=headers).data == b"results"
    assert client.delete(f"/api/documents/{doc['id']}?confirm=true", headers=headers).status_code == 200
    assert client.get("/api/documents", headers=headers).get_json()["data"] == []


def test_notifications_unread_and_toggle(client, backend):
    user = login(client, backend, "reader@example.com")
    admin = login(client, backend, "boss@example.com", role="admin")

    resp = client.post("/api/admin/announcements", headers=admin,
                       json={"title": "Hello", "content": "World", "category": "general"})
    assert resp.status_code == 201

    body = client.get("/api/notifications", headers=user).get_json()["data"]
    assert body["unread_count"] == 1
    toggled = client.post("/api/notifications/toggle", headers=user).get_json()["data"]
    assert toggled == {"is_open": True, "unread_count": 0}


def test_admin_overview_and_analytics(client, backend):
    admin = login(client, backend, "stats@example.com", role="admin")
    overview = client.get("/api/admin/overview", headers=admin).get_json()["data"]
    assert overview["stats"]["total_users"] == 1
    assert client.get("/api/admin/analytics?range=30d", headers=admin).status_code == 200
    assert client.get("/api/admin/analytics?range=5y", headers=admin).status_code == 400


def test_unknown_endpoint_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Endpoint not found"
