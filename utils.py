"""
utils.py
Dates, ids, validation, CSV exports, revenue reports, sample data.
"""

from __future__ import annotations

import calendar
import re
import uuid
from dataclasses import asdict
from datetime import date, datetime, timedelta

import pandas as pd

from models import (
    Announcement,
    AnnouncementType,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    Member,
    MemberStatus,
    Payment,
    PaymentStatus,
    Plan,
)

EMAIL_RE = re.compile(r"^[^@\s]+@([A-Za-z0-9-]+\.)+[A-Za-z]{2,}$")
DDMMYYYY_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    return with_day(date(y, m, 1), start.day)


def with_day(d: date, day: int) -> date:
    """
    Set the day of month, clamped to the last day of that month (day 31 in February => 28/29).
    """
    last_day = calendar.monthrange(d.year, d.month)[1]
    return d.replace(day=max(1, min(day, last_day)))


def same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month


def month_bounds(d: date) -> tuple[date, date]:
    """First and last day of the month containing d."""
    return d.replace(day=1), with_day(d, 31)


# ---------- Display / input formats ----------

def validate_date(date_str: str) -> bool:
    """True if date_str is DD/MM/YYYY and a real calendar date."""
    return parse_ddmmyyyy(date_str) is not None


def parse_ddmmyyyy(date_str: str) -> date | None:
    if not DDMMYYYY_RE.match(date_str or ""):
        return None
    day, month, year = (int(x) for x in date_str.split("/"))
    if year < 1900 or year > 2100:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_ddmmyyyy(d: date) -> str:
    return d.strftime("%d/%m/%Y")


def format_currency(amount: float, symbol: str = "R$") -> str:
    return f"{symbol} {amount:,.2f}"


def phone_mask(value: str | None) -> str:
    """Format 10/11 digit phone numbers as (11) 98765-4321 / (11) 3456-7890."""
    digits = re.sub(r"\D", "", value or "")[:11]
    if len(digits) <= 2:
        return f"({digits}" if digits else ""
    area, rest = digits[:2], digits[2:]
    if len(rest) <= 4:
        return f"({area}) {rest}"
    split = 5 if len(rest) == 9 else 4
    return f"({area}) {rest[:split]}-{rest[split:]}"


# ---------- Validation ----------

def validate_email(email: str) -> bool:
    return bool(EMAIL_RE.match((email or "").strip().lower()))


def validate_member_inputs(name: str, email: str, plan_id: str | None, join_date) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    if not validate_email(email):
        errors.append("A valid email is required.")
    if not plan_id:
        errors.append("Plan is required.")
    if not isinstance(join_date, date):
        try:
            parse_iso(str(join_date))
        except ValueError:
            errors.append("Join date must be a valid ISO date (YYYY-MM-DD).")
    return errors


def validate_plan_inputs(name: str, price, duration_in_months, due_day_of_month=None) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Plan name is required.")
    try:
        if float(price) <= 0:
            errors.append("Price must be greater than zero.")
    except (TypeError, ValueError):
        errors.append("Price must be numeric.")
    try:
        if int(duration_in_months) < 1:
            errors.append("Duration must be at least 1 month.")
    except (TypeError, ValueError):
        errors.append("Duration must be a whole number of months.")
    if due_day_of_month not in (None, ""):
        try:
            if not 1 <= int(due_day_of_month) <= 31:
                errors.append("Due day must be between 1 and 31.")
        except (TypeError, ValueError):
            errors.append("Due day must be a whole number.")
    return errors


def validate_amount(amount) -> list[str]:
    try:
        if float(amount) <= 0:
            return ["Amount must be > 0."]
    except (TypeError, ValueError):
        return ["Amount must be numeric."]
    return []


# ---------- Exports / reports ----------

def _to_frame(items) -> pd.DataFrame:
    rows = []
    for item in items:
        row = asdict(item)
        for k, v in row.items():
            if isinstance(v, (set, frozenset)):
                row[k] = ",".join(sorted(str(x.value if hasattr(x, "value") else x) for x in v))
            elif hasattr(v, "value"):
                row[k] = v.value
        rows.append(row)
    return pd.DataFrame(rows)


def members_to_csv_bytes(members: list[Member]) -> bytes:
    df = _to_frame(members)
    if "password_hash" in df.columns:
        df = df.drop(columns=["password_hash"])
    return df.to_csv(index=False).encode("utf-8")


def payments_to_csv_bytes(payments: list[Payment], members: list[Member] | None = None) -> bytes:
    df = _to_frame(payments)
    if members is not None and not df.empty:
        names = {m.id: m.name for m in members}
        df.insert(2, "member_name", df["member_id"].map(names).fillna("N/A"))
    return df.to_csv(index=False).encode("utf-8")


def expenses_to_csv_bytes(expenses: list[Expense]) -> bytes:
    return _to_frame(expenses).to_csv(index=False).encode("utf-8")


def revenue_summary_by_month(payments: list[Payment]) -> pd.DataFrame:
    """Paid revenue grouped by due month, newest first."""
    paid = [p for p in payments if p.status == PaymentStatus.PAID]
    if not paid:
        return pd.DataFrame(columns=["month", "revenue"])
    df = pd.DataFrame({"month": [p.date.strftime("%Y-%m") for p in paid], "revenue": [p.amount for p in paid]})
    return df.groupby("month", as_index=False)["revenue"].sum().sort_values("month", ascending=False)


def monthly_financials(payments: list[Payment], expenses: list[Expense], today: date, months: int = 12) -> pd.DataFrame:
    """Revenue (paid payments) vs expenses for the last `months` months, oldest first."""
    keys = [add_months(today.replace(day=1), -i).strftime("%Y-%m") for i in range(months - 1, -1, -1)]
    revenue = {k: 0.0 for k in keys}
    spent = {k: 0.0 for k in keys}
    for p in payments:
        k = p.date.strftime("%Y-%m")
        if p.status == PaymentStatus.PAID and k in revenue:
            revenue[k] += p.amount
    for e in expenses:
        k = e.date.strftime("%Y-%m")
        if k in spent:
            spent[k] += e.amount
    df = pd.DataFrame({"month": keys, "revenue": [revenue[k] for k in keys], "expenses": [spent[k] for k in keys]})
    df["net"] = df["revenue"] - df["expenses"]
    return df


# ---------- Sample data ----------

SAMPLE_PLANS = [
    Plan("plan1", "Basic Monthly", 30.0, 1, 5),
    Plan("plan2", "Pro Quarterly", 80.0, 3),
    Plan("plan3", "Elite Annual", 300.0, 12, 1),
]


def _sample_history(member: Member, plan: Plan, today: date) -> list[Payment]:
    """
    Past cycles from join date up to today: paid for active members, a single overdue
    charge for pending members, and history that stops early for inactive members.
    """
    out: list[Payment] = []
    cycle_start = member.join_date
    if plan.due_day_of_month and member.join_date.day > plan.due_day_of_month:
        # joined after this month's due day: first charge falls in the next month
        cycle_start = add_months(cycle_start, 1)
    while cycle_start <= today:
        due = with_day(cycle_start, plan.due_day_of_month) if plan.due_day_of_month else cycle_start
        if due > today:
            break
        if member.status == MemberStatus.PENDING:
            out.append(Payment(
                id=f"pay-{member.id}-{len(out) + 1}", member_id=member.id, plan_id=plan.id,
                amount=plan.price, date=due, status=PaymentStatus.OVERDUE,
                description=f"Pending payment for {plan.name}",
            ))
            break
        if member.status == MemberStatus.INACTIVE and due > date(2023, 3, 1):
            break
        out.append(Payment(
            id=f"pay-{member.id}-{len(out) + 1}", member_id=member.id, plan_id=plan.id,
            amount=plan.price, date=due, status=PaymentStatus.PAID,
            description=f"Payment for {plan.name}", paid_date=due - timedelta(days=1), method="cash",
        ))
        cycle_start = add_months(cycle_start, plan.duration_in_months)
    return out


def build_sample_data(today: date | None = None) -> dict:
    """
    Demo dataset: 3 plans, 5 members, their payment history, 4 expenses, 3 announcements.
    """
    today = today or date.today()
    members = [
        Member("mem1", "Alice Johnson", "alice@example.com", date(2023, 1, 15), "plan3", MemberStatus.ACTIVE, "(11) 98765-4321"),
        Member("mem2", "Bob Williams", "bob@example.com", date(2023, 3, 22), "plan1", MemberStatus.ACTIVE, "(21) 91234-5678"),
        Member("mem3", "Charlie Brown", "charlie@example.com", add_months(today, -2), "plan2", MemberStatus.PENDING),
        Member("mem4", "Diana Prince", "diana@example.com", date(2022, 11, 1), "plan3", MemberStatus.INACTIVE, "(31) 99999-8888"),
        Member("mem5", "Ethan Hunt", "ethan@example.com", date(2023, 6, 20), "plan1", MemberStatus.ACTIVE),
    ]
    plans = {p.id: p for p in SAMPLE_PLANS}
    payments: list[Payment] = []
    for m in members:
        payments.extend(_sample_history(m, plans[m.plan_id], today))
    payments.sort(key=lambda p: p.date, reverse=True)

    expenses = [
        Expense("exp1", "Space rent", 1200.0, today.replace(day=1), ExpenseCategory.RENT, ExpenseStatus.PAID),
        Expense("exp2", "Trainer salary", 800.0, today.replace(day=min(5, today.day)), ExpenseCategory.SALARIES, ExpenseStatus.PAID),
        Expense("exp3", "Treadmill maintenance", 150.0, today, ExpenseCategory.EQUIPMENT, ExpenseStatus.PENDING),
        Expense("exp4", "Social media ads", 200.0, today, ExpenseCategory.MARKETING, ExpenseStatus.PAID),
    ]

    now = datetime.combine(today, datetime.min.time())
    announcements = [
        Announcement("ann1", "Holiday closure", "The gym **will be closed** on the holiday.\n\nRegular hours resume the next day.",
                     AnnouncementType.WARNING, now - timedelta(days=1), "user1", frozenset({"mem1"})),
        Announcement("ann2", "Bring a friend!", "Bring a friend and **get 50% off** your next monthly fee when they enroll.",
                     AnnouncementType.PROMOTION, now - timedelta(days=3), "user1"),
        Announcement("ann3", "New equipment", "New machines have arrived in the weight room.",
                     AnnouncementType.INFO, now - timedelta(days=7), "user1", frozenset({"mem1", "mem2"})),
    ]
    return {
        "plans": list(SAMPLE_PLANS),
        "members": members,
        "payments": payments,
        "expenses": expenses,
        "announcements": announcements,
    }
