"""
Admin analytics – overview counts, time-range series and distributions,
plus the per-user finance summary. Computed with pandas over plain rows.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from techhelp.config import ADMIN_DAILY_STATS_DAYS, ADMIN_RECENT_LIMIT, ANALYTICS_RANGES
from techhelp.database import TableStore, eq


def _frame(rows: Iterable[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(list(rows))
    if df.empty:
        return pd.DataFrame(columns=columns)
    return df


def _day_range(days: int, today: Optional[date] = None) -> List[str]:
    """The last *days* calendar days (UTC), oldest first, as YYYY-MM-DD."""
    today = today or datetime.now(timezone.utc).date()
    return [(today - timedelta(days=i)).isoformat() for i in reversed(range(days))]


def _daily_counts(df: pd.DataFrame, column: str, dates: List[str]) -> List[int]:
    if df.empty:
        return [0] * len(dates)
    counts = df[column].astype(str).str[:10].value_counts()
    return [int(counts.get(d, 0)) for d in dates]


# ── Finance ──────────────────────────────────────────────────────────

def finance_summary(transactions: Iterable[Any]) -> Dict[str, Any]:
    """Income, expense, balance and per-category totals for a list of transactions."""
    rows = [t.to_dict() if hasattr(t, "to_dict") else dict(t) for t in transactions]
    df = _frame(rows, ["amount", "transaction_type", "category"])
    if df.empty:
        return {"income": 0.0, "expense": 0.0, "balance": 0.0, "by_category": {}}

    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    totals = df.groupby("transaction_type")["amount"].sum()
    income = float(totals.get("income", 0.0))
    expense = float(totals.get("expense", 0.0))
    by_category = df.groupby("category")["amount"].sum().sort_values(ascending=False)
    return {
        "income": round(income, 2),
        "expense": round(expense, 2),
        "balance": round(income - expense, 2),
        "by_category": {k: round(float(v), 2) for k, v in by_category.items()},
    }


# ── Admin overview ───────────────────────────────────────────────────

def admin_overview(store: TableStore, today: Optional[date] = None,
                   days: int = ADMIN_DAILY_STATS_DAYS,
                   recent_limit: int = ADMIN_RECENT_LIMIT) -> Dict[str, Any]:
    """Totals, pending counts, most recent users/requests and daily activity."""
    stats = {
        "total_users": store.count("profiles"),
        "total_requests": store.count("certificate_requests"),
        "total_appointments": store.count("medical_appointments"),
        "total_transactions": store.count("financial_transactions"),
        "pending_requests": store.count("certificate_requests", [eq("status", "pending")]),
        "pending_appointments": store.count("medical_appointments", [eq("status", "pending")]),
    }
    recent_users = store.select("profiles", order_by="created_at", descending=True, limit=recent_limit)
    recent_requests = store.select("certificate_requests", order_by="requested_at",
                                   descending=True, limit=recent_limit)

    dates = _day_range(days, today)
    requests = _frame(store.select("certificate_requests", columns=["requested_at"]), ["requested_at"])
    appointments = _frame(store.select("medical_appointments", columns=["created_at"]), ["created_at"])
    transactions = _frame(store.select("financial_transactions", columns=["created_at"]), ["created_at"])
    daily = pd.DataFrame({
        "date": dates,
        "requests": _daily_counts(requests, "requested_at", dates),
        "appointments": _daily_counts(appointments, "created_at", dates),
        "transactions": _daily_counts(transactions, "created_at", dates),
    })

    return {
        "stats": stats,
        "recent_users": recent_users,
        "recent_requests": recent_requests,
        "daily_stats": daily.to_dict(orient="records"),
    }


# ── Analytics ────────────────────────────────────────────────────────

def compute_analytics(store: TableStore, time_range: str = "7d",
                      today: Optional[date] = None) -> Dict[str, Any]:
    """
    Series over the chosen range (7d / 30d / 90d):
      - user growth: cumulative profile count at the end of each day
      - transaction volume: daily income and expense sums
    and whole-table distributions of certificate types and appointment statuses.
    """
    if time_range not in ANALYTICS_RANGES:
        raise ValueError(f"Unknown time range '{time_range}'; expected one of {sorted(ANALYTICS_RANGES)}")
    dates = _day_range(ANALYTICS_RANGES[time_range], today)

    profiles = _frame(store.select("profiles", columns=["created_at"]), ["created_at"])
    created_days = profiles["created_at"].astype(str).str[:10]
    user_growth = [{"date": d, "count": int((created_days <= d).sum())} for d in dates]

    tx = _frame(store.select("financial_transactions",
                             columns=["amount", "transaction_type", "transaction_date"]),
                ["amount", "transaction_type", "transaction_date"])
    volume = pd.DataFrame(0.0, index=dates, columns=["income", "expense"])
    if not tx.empty:
        tx["day"] = tx["transaction_date"].astype(str).str[:10]
        tx["amount"] = pd.to_numeric(tx["amount"], errors="coerce").fillna(0.0)
        in_range = tx[tx["day"].isin(dates)]
        sums = in_range.pivot_table(index="day", columns="transaction_type",
                                    values="amount", aggfunc="sum", fill_value=0.0)
        for kind in ("income", "expense"):
            if kind in sums.columns:
                volume[kind] = sums[kind].reindex(dates, fill_value=0.0)
    transaction_volume = [
        {"date": d, "income": round(float(row.income), 2), "expense": round(float(row.expense), 2)}
        for d, row in volume.iterrows()
    ]

    requests = _frame(store.select("certificate_requests", columns=["certificate_type"]), ["certificate_type"])
    request_distribution = [
        {"category": k, "count": int(v)}
        for k, v in requests["certificate_type"].value_counts().items()
    ]

    appointments = _frame(store.select("medical_appointments", columns=["status"]), ["status"])
    appointment_status = [
        {"status": k, "count": int(v)}
        for k, v in appointments["status"].value_counts().items()
    ]

    return {
        "time_range": time_range,
        "user_growth": user_growth,
        "transaction_volume": transaction_volume,
        "request_distribution": request_distribution,
        "appointment_status": appointment_status,
    }


def format_analytics(analytics: Dict[str, Any]) -> str:
    """Markdown tables for the console."""
    sections = []
    for title, key in (
        ("User growth", "user_growth"),
        ("Transaction volume", "transaction_volume"),
        ("Requests by certificate type", "request_distribution"),
        ("Appointments by status", "appointment_status"),
    ):
        df = pd.DataFrame(analytics.get(key) or [])
        body = df.to_markdown(index=False) if not df.empty else "(no rows)"
        sections.append(f"{title}\n{body}")
    return "\n\n".join(sections)
