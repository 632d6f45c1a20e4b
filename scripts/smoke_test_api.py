#!/usr/bin/env python3
"""
Smoke test for a running techHelp API.
Start the server first (techhelp-api), seed it (scripts/seed_demo_data.py),
then run: python scripts/smoke_test_api.py demo0@example.com demo-password
"""

import json
import sys

import requests

BASE_URL = "http://localhost:8000"


def banner(title):
    print("\n" + "=" * 50)
    print(f"TEST: {title}")
    print("=" * 50)


def check(title, response, expected):
    banner(title)
    print(f"Status Code: {response.status_code}")
    try:
        print(f"Response: {json.dumps(response.json(), indent=2)[:1500]}")
    except ValueError:
        print(f"Response: {len(response.content)} bytes")
    return response.status_code == expected


def main():
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)
    email, password = sys.argv[1], sys.argv[2]

    results = {}
    results["health"] = check("Health Check", requests.get(f"{BASE_URL}/health"), 200)
    results["no_token"] = check("Dashboard Without Token", requests.get(f"{BASE_URL}/api/dashboard"), 401)
    results["bad_login"] = check(
        "Login with Invalid Credentials",
        requests.post(f"{BASE_URL}/api/auth/login", json={"email": email, "password": "wrong"}),
        401,
    )

    response = requests.post(f"{BASE_URL}/api/auth/login", json={"email": email, "password": password})
    results["login"] = check("Login", response, 200)
    if response.status_code != 200:
        print("\n❌ Cannot continue without a session.")
        sys.exit(1)
    headers = {"Authorization": f"Bearer {response.json()['token']}"}
    is_admin = (response.json().get("profile") or {}).get("role") == "admin"

    results["dashboard"] = check("Dashboard", requests.get(f"{BASE_URL}/api/dashboard", headers=headers), 200)
    results["add_transaction"] = check(
        "Add Transaction",
        requests.post(f"{BASE_URL}/api/finance/transactions", headers=headers,
                      json={"amount": "12.50", "category": "Food", "transaction_type": "expense"}),
        201,
    )
    results["missing_fields"] = check(
        "Add Transaction Without Category",
        requests.post(f"{BASE_URL}/api/finance/transactions", headers=headers, json={"amount": "1"}),
        400,
    )
    results["summary"] = check("Finance Summary",
                               requests.get(f"{BASE_URL}/api/finance/summary", headers=headers), 200)
    results["notifications"] = check("Notifications",
                                     requests.get(f"{BASE_URL}/api/notifications", headers=headers), 200)
    results["toggle"] = check("Open Notifications",
                              requests.post(f"{BASE_URL}/api/notifications/toggle", headers=headers), 200)
    results["admin_overview"] = check(
        "Admin Overview",
        requests.get(f"{BASE_URL}/api/admin/overview", headers=headers),
        200 if is_admin else 403,
    )
    results["logout"] = check("Logout", requests.post(f"{BASE_URL}/api/auth/logout", headers=headers), 200)
    results["after_logout"] = check("Dashboard After Logout",
                                    requests.get(f"{BASE_URL}/api/dashboard", headers=headers), 401)

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    for name, ok in results.items():
        print(f"{'✓' if ok else '❌'} {name}")
    passed = sum(results.values())
    print(f"\n{passed}/{len(results)} checks passed")
    sys.exit(0 if passed == len(results) else 1)


if __name__ == "__main__":
    main()
