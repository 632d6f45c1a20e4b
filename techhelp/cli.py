"""
Interactive console for techHelp.
Sign in, then browse and manage finance, health, government and document
records; admins also get the overview, analytics and announcements.
"""

from pathlib import Path
from typing import List

import pandas as pd

from techhelp.analysis import admin_overview, compute_analytics, format_analytics
from techhelp.backend import init_backend
from techhelp.config import (
    CERTIFICATE_TYPES,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    RUNTIME_DIR,
    SPECIALIZATIONS,
    TIME_SLOTS,
)
from techhelp.database import BackendError
from techhelp.local_store import LocalStore
from techhelp.models import ANNOUNCEMENT_CATEGORIES
from techhelp.notifications import NotificationTracker, read_set_for
from techhelp.notifier import Notifier
from techhelp.repository import ALL
from techhelp.services import (
    AnnouncementsManager,
    DocumentManager,
    FinanceManager,
    GovernmentManager,
    HealthManager,
    build_user_dashboard,
)
from techhelp.session import SessionContext, SessionManager

MAX_PREVIEW_ROWS = 20

HELP = """Commands:
  dashboard                      recent activity
  finance [income|expense]       list transactions      add      new transaction
  summary                        income / expense / balance
  appointments [status]          list appointments      book     new appointment
  cancel <id>                    cancel an appointment
  requests [status]              list requests          request  new certificate request
  documents [category]           list documents
  upload <category> <file> <name>
  download <id> <dest>           delete <id>
  notifications                  open / close the announcement panel
  overview | analytics [7d|30d|90d] | announce     (admin)
  logout | quit"""


def confirm(prompt: str) -> bool:
    try:
        return input(f"{prompt} [y/N] ").strip().lower() in {"y", "yes"}
    except (EOFError, KeyboardInterrupt):
        return False


def ask(label: str, choices: List[str] = None) -> str:
    if choices:
        print(f"  options: {', '.join(choices)}")
    return input(f"  {label}: ").strip()


def show(records) -> None:
    rows = [r.to_dict() if hasattr(r, "to_dict") else r for r in records]
    if not rows:
        print("(no rows)")
        return
    print(pd.DataFrame(rows).head(MAX_PREVIEW_ROWS).to_string(index=False))


def login(manager: SessionManager) -> bool:
    """Restore the persisted session or prompt until signed in; False to quit."""
    manager.check_session()
    while manager.user is None:
        try:
            choice = input("\n[l]ogin, [s]ign up or 'quit': ").strip().lower()
            if choice in {"quit", "exit", "q"}:
                return False
            email = input("Email: ").strip()
            password = input("Password: ")
            if choice.startswith("s"):
                manager.sign_up(email, password, input("Full name: ").strip())
            else:
                manager.sign_in(email, password)
        except (EOFError, KeyboardInterrupt):
            return False
    return True


def main():
    print("=== techHelp console ===\n")

    backend = init_backend()
    local_store = LocalStore(Path(RUNTIME_DIR) / "local_store.json")
    notifier = Notifier(echo=True)
    manager = SessionManager(backend.auth, backend.store, notifier, local_store=local_store)

    if not login(manager):
        print("Goodbye.")
        return

    tracker = NotificationTracker(backend.store, backend.feed, read_set_for(local_store, manager.user.id))
    tracker.mount()
    ctx = SessionContext(manager=manager, notifier=notifier, tracker=tracker)
    who = manager.profile.full_name if manager.profile else manager.user.email
    print(f"\n[auth] Signed in as: {who} (role={manager.profile.role if manager.profile else '?'})")
    print(f"[notifications] {tracker.unread_count} unread announcement(s)")
    print(HELP)

    common = dict(confirm=confirm, feed=backend.feed)
    finance = FinanceManager(backend.store, manager, notifier, storage=backend.storage, **common)
    health = HealthManager(backend.store, manager, notifier, storage=backend.storage, **common)
    government = GovernmentManager(backend.store, manager, notifier, storage=backend.storage, **common)
    documents = DocumentManager(backend.store, manager, notifier, storage=backend.storage, **common)
    announcements = AnnouncementsManager(backend.store, manager, notifier, **common)

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            line = input("\ntechhelp> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not line:
            continue
        cmd, *args = line.split()
        cmd = cmd.lower()
        arg = args[0] if args else ALL
        ctx.touch()

        if cmd in {"quit", "exit"}:
            print("Goodbye.")
            break
        if cmd == "help":
            print(HELP)
        elif cmd == "logout":
            if manager.sign_out():
                break
        elif cmd == "dashboard":
            for section, items in build_user_dashboard(backend.store, manager).items():
                print(f"\n[{section}]")
                show(items)
        elif cmd == "finance":
            show(finance.list(arg))
        elif cmd == "summary":
            finance.list()
            print(finance.summary())
        elif cmd == "add":
            kind = ask("type", ["income", "expense"]) or "expense"
            finance.create({
                "transaction_type": kind,
                "amount": ask("amount"),
                "category": ask("category", INCOME_CATEGORIES if kind == "income" else EXPENSE_CATEGORIES),
                "payment_method": ask("payment method (optional)"),
                "description": ask("description (optional)"),
            })
        elif cmd == "appointments":
            show(health.list(arg))
        elif cmd == "book":
            health.create({
                "doctor_name": ask("doctor"),
                "specialization": ask("specialization", SPECIALIZATIONS),
                "appointment_date": ask("date (YYYY-MM-DD)"),
                "appointment_time": ask("time", TIME_SLOTS),
                "notes": ask("notes (optional)"),
            })
        elif cmd == "cancel" and args:
            health.cancel(args[0])
        elif cmd == "requests":
            show(government.list(arg))
        elif cmd == "request":
            government.create({
                "certificate_type": ask("certificate type", CERTIFICATE_TYPES),
                "purpose": ask("purpose (optional)"),
            })
        elif cmd == "documents":
            show(documents.list(arg))
        elif cmd == "upload" and len(args) >= 3:
            path = Path(args[1])
            try:
                data = path.read_bytes()
            except OSError as e:
                print(f"[ERROR] Cannot read {path}: {e}")
                continue
            documents.upload(args[0], " ".join(args[2:]), path.name, data)
        elif cmd == "download" and len(args) == 2:
            doc = documents.get(args[0])
            data = documents.download(doc) if doc else None
            if data is not None:
                Path(args[1]).write_bytes(data)
                print(f"Saved {len(data)} bytes to {args[1]}")
        elif cmd == "delete" and args:
            documents.remove(args[0])
        elif cmd == "notifications":
            opened = tracker.toggle()
            if opened:
                show(tracker.announcements)
            print(f"[notifications] panel {'open' if opened else 'closed'}, {tracker.unread_count} unread")
        elif cmd == "overview" and manager.is_admin:
            try:
                overview = admin_overview(backend.store)
            except BackendError as e:
                print(f"[ERROR] Failed to load overview: {e}")
                continue
            print(pd.Series(overview["stats"]).to_markdown())
            print("\n[daily activity]")
            print(pd.DataFrame(overview["daily_stats"]).to_markdown(index=False))
        elif cmd == "analytics" and manager.is_admin:
            try:
                print(format_analytics(compute_analytics(backend.store, args[0] if args else "7d")))
            except (ValueError, BackendError) as e:
                print(f"[ERROR] {e}")
        elif cmd == "announce" and manager.is_admin:
            announcements.create({
                "title": ask("title"),
                "content": ask("content"),
                "category": ask("category", list(ANNOUNCEMENT_CATEGORIES)),
            })
        else:
            print("Unknown command or missing arguments. Type 'help'.")

    for mgr in (finance, health, government, documents, announcements):
        mgr.close()
    ctx.close()


if __name__ == "__main__":
    main()
