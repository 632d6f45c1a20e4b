#!/usr/bin/env python3
"""
Fill the configured database with Faker-generated demo users and records.
Every user gets the password DEMO_PASSWORD; the first one is made admin
unless --no-admin is given.
"""

import argparse
import random
from datetime import timedelta

from faker import Faker

from techhelp.backend import init_backend
from techhelp.config import (
    CERTIFICATE_TYPES,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    PAYMENT_METHODS,
    SPECIALIZATIONS,
)
from techhelp.database import eq
from techhelp.models import ANNOUNCEMENT_CATEGORIES, APPOINTMENT_STATUSES, REQUEST_STATUSES

DEMO_PASSWORD = "demo-password"

# min, max rows per user
PER_USER = {
    "financial_transactions": (3, 12),
    "medical_appointments": (0, 4),
    "certificate_requests": (0, 3),
}

fake = Faker()


def seed_user(backend, index: int) -> str:
    email = f"demo{index}@{fake.free_email_domain()}"
    user = backend.auth.sign_up(email, DEMO_PASSWORD, {"full_name": fake.name()})
    backend.store.update("profiles", {
        "phone": fake.phone_number(),
        "address": fake.address().replace("\n", ", "),
        "date_of_birth": fake.date_of_birth(minimum_age=18, maximum_age=85).isoformat(),
    }, [eq("id", user.id)])
    print(f"[seed] {email}")
    return user.id


def seed_records(backend, user_id: str) -> None:
    store = backend.store

    for _ in range(random.randint(*PER_USER["financial_transactions"])):
        kind = random.choice(["income", "expense"])
        store.insert("financial_transactions", {
            "user_id": user_id,
            "transaction_type": kind,
            "amount": round(random.uniform(5, 3000 if kind == "income" else 600), 2),
            "category": random.choice(INCOME_CATEGORIES if kind == "income" else EXPENSE_CATEGORIES),
            "payment_method": random.choice(PAYMENT_METHODS),
            "description": fake.sentence(nb_words=5),
            "transaction_date": fake.date_time_between("-90d", "now").isoformat(),
        })

    for _ in range(random.randint(*PER_USER["medical_appointments"])):
        when = fake.date_time_between("-30d", "+60d").replace(minute=random.choice([0, 30]), second=0)
        store.insert("medical_appointments", {
            "user_id": user_id,
            "doctor_name": f"Dr. {fake.last_name()}",
            "specialization": random.choice(SPECIALIZATIONS),
            "appointment_date": when.isoformat(),
            "status": random.choice(APPOINTMENT_STATUSES),
            "notes": fake.sentence() if random.random() < 0.4 else None,
        })

    for _ in range(random.randint(*PER_USER["certificate_requests"])):
        requested = fake.date_time_between("-60d", "now")
        status = random.choice(REQUEST_STATUSES)
        store.insert("certificate_requests", {
            "user_id": user_id,
            "certificate_type": random.choice(CERTIFICATE_TYPES),
            "purpose": fake.sentence(nb_words=6) if random.random() < 0.7 else None,
            "status": status,
            "requested_at": requested.isoformat(),
            "processed_at": (requested + timedelta(days=2)).isoformat() if status != "pending" else None,
        })


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--users", type=int, default=10)
    parser.add_argument("--announcements", type=int, default=6)
    parser.add_argument("--no-admin", action="store_true")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    random.seed(args.seed)
    Faker.seed(args.seed)

    backend = init_backend()
    backend.auth.require_confirmation = False

    user_ids = [seed_user(backend, i) for i in range(args.users)]
    for user_id in user_ids:
        seed_records(backend, user_id)

    admin_id = None
    if user_ids and not args.no_admin:
        admin_id = user_ids[0]
        backend.store.update("profiles", {"role": "admin"}, [eq("id", admin_id)])
        print(f"[seed] admin: {admin_id}")

    for _ in range(args.announcements):
        backend.store.insert("announcements", {
            "title": fake.catch_phrase(),
            "content": fake.paragraph(nb_sentences=3),
            "category": random.choice(ANNOUNCEMENT_CATEGORIES),
            "visible_to": random.choice([["user", "admin"], ["user"], ["admin"]]),
            "created_by": admin_id,
        })

    print(f"[seed] Done: {len(user_ids)} users, password '{DEMO_PASSWORD}'.")


if __name__ == "__main__":
    main()
