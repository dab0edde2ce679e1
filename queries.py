"""
queries.py
Search / filter / sort / paginate helpers and KPI summaries for the list pages.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from operator import attrgetter
from typing import Generic, Iterable, TypeVar

from models import Expense, ExpenseStatus, Member, MemberStatus, Payment, PaymentStatus, Plan
from utils import add_months

T = TypeVar("T")

ITEMS_PER_PAGE = 10


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    page: int
    total_pages: int
    total_items: int


def paginate(items: list[T], page: int = 1, per_page: int = ITEMS_PER_PAGE) -> Page[T]:
    """Slice a 1-based page; out-of-range pages are clamped."""
    total_pages = max(1, math.ceil(len(items) / per_page))
    page = min(max(1, page), total_pages)
    start = (page - 1) * per_page
    return Page(items[start:start + per_page], page, total_pages, len(items))


def _digits(s: str | None) -> str:
    return re.sub(r"\D", "", s or "")


def _in_range(d: date, start: date | None, end: date | None) -> bool:
    return (start is None or d >= start) and (end is None or d <= end)


def filter_members(
    members: Iterable[Member],
    search: str = "",
    status: MemberStatus | None = None,
    plan_id: str | None = None,
) -> list[Member]:
    term = search.strip().lower()
    term_digits = _digits(search)
    out = []
    for m in members:
        if term and not (
            term in m.name.lower()
            or term in m.email.lower()
            or (term_digits and term_digits in _digits(m.phone))
        ):
            continue
        if status is not None and m.status != status:
            continue
        if plan_id is not None and m.plan_id != plan_id:
            continue
        out.append(m)
    return out


def filter_payments(
    payments: Iterable[Payment],
    members: Iterable[Member] = (),
    search: str = "",
    status: PaymentStatus | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[Payment]:
    """Search matches member name or description; dates filter on the due date."""
    names = {m.id: m.name.lower() for m in members}
    term = search.strip().lower()
    out = []
    for p in payments:
        if term and term not in names.get(p.member_id, "") and term not in (p.description or "").lower():
            continue
        if status is not None and p.status != status:
            continue
        if not _in_range(p.date, start, end):
            continue
        out.append(p)
    return out


def sort_payments(
    payments: Iterable[Payment],
    key: str = "date",
    descending: bool = True,
    members: Iterable[Member] = (),
    plans: Iterable[Plan] = (),
) -> list[Payment]:
    """Sort by a payment field, or by `member_name` / `plan_name`. Empty values go last."""
    payments = list(payments)
    if key in ("member_name", "plan_name"):
        source, ref = (members, "member_id") if key == "member_name" else (plans, "plan_id")
        names = {x.id: x.name for x in source}
        return sorted(payments, key=lambda p: names.get(getattr(p, ref), ""), reverse=descending)

    present = [p for p in payments if getattr(p, key) is not None]
    missing = [p for p in payments if getattr(p, key) is None]
    return sorted(present, key=attrgetter(key), reverse=descending) + missing


def filter_expenses(
    expenses: Iterable[Expense],
    search: str = "",
    start: date | None = None,
    end: date | None = None,
) -> list[Expense]:
    term = search.strip().lower()
    return [
        e for e in expenses
        if (not term or term in e.description.lower() or term in e.category.value.lower())
        and _in_range(e.date, start, end)
    ]


# ---------- KPIs ----------

def payment_kpis(payments: Iterable[Payment]) -> dict[str, dict[str, float]]:
    kpis = {s: {"total": 0.0, "count": 0} for s in ("paid", "pending", "overdue")}
    for p in payments:
        bucket = kpis[p.status.name.lower()]
        bucket["total"] += p.amount
        bucket["count"] += 1
    return kpis


def expense_summary(expenses: Iterable[Expense]) -> dict[str, float]:
    expenses = list(expenses)
    total = sum(e.amount for e in expenses)
    paid = sum(e.amount for e in expenses if e.status == ExpenseStatus.PAID)
    return {"total": total, "paid": paid, "pending": total - paid}


def dashboard_summary(
    members: Iterable[Member],
    payments: Iterable[Payment],
    expenses: Iterable[Expense],
    start: date | None = None,
    end: date | None = None,
) -> dict:
    """Period figures for the dashboard. Revenue counts paid payments only."""
    period_payments = [p for p in payments if _in_range(p.date, start, end)]
    return {
        "revenue": sum(p.amount for p in period_payments if p.status == PaymentStatus.PAID),
        "expenses": sum(e.amount for e in expenses if _in_range(e.date, start, end)),
        "new_members": sum(1 for m in members if _in_range(m.join_date, start, end)),
        "overdue": sum(1 for p in period_payments if p.status == PaymentStatus.OVERDUE),
        "recent_payments": sorted(period_payments, key=lambda p: p.date, reverse=True)[:5],
    }


def plan_expiry(member: Member, plan: Plan | None, payments: Iterable[Payment]) -> date | None:
    """
    When the member's current paid period ends: last paid cycle (paid date, else due date)
    plus the plan duration. None for non-active members or members with nothing paid.
    """
    if plan is None or member.status != MemberStatus.ACTIVE:
        return None
    paid = [p for p in payments if p.member_id == member.id and p.status == PaymentStatus.PAID]
    if not paid:
        return None
    last = max(paid, key=lambda p: p.date)
    return add_months(last.paid_date or last.date, plan.duration_in_months)
