"""
db.py
SQLite helpers + initialization (creates DB/tables, seeds roles and the default admin)
and the entity store used by the app and the billing tick.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime
from typing import Iterable

from config import get_settings
from models import (
    Announcement,
    AnnouncementType,
    BillingRulerSettings,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    Member,
    MemberStatus,
    Payment,
    PaymentStatus,
    Permission,
    Plan,
    ReminderRule,
    Role,
    User,
)
from utils import validate_amount, validate_plan_inputs

logger = logging.getLogger(__name__)

DB_FILE = get_settings().db_file


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def locked_conn():
    """
    Connection that takes the write lock up front (BEGIN IMMEDIATE) and holds it until
    commit, so a read-modify-write cannot interleave with other sessions' writes.
    """
    conn = sqlite3.connect(DB_FILE, check_same_thread=False, isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables() -> None:
    # Payments keep plain member/plan ids (no FK) so deleting a member or plan leaves history intact
    with get_conn() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS plans (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price REAL NOT NULL CHECK(price > 0),
                duration_in_months INTEGER NOT NULL CHECK(duration_in_months >= 1),
                due_day_of_month INTEGER CHECK(due_day_of_month BETWEEN 1 AND 31)
            );

            CREATE TABLE IF NOT EXISTS members (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT,
                join_date TEXT NOT NULL,
                plan_id TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('Active','Inactive','Pending')),
                password_hash TEXT
            );

            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                plan_id TEXT NOT NULL,
                description TEXT,
                amount REAL NOT NULL,
                date TEXT NOT NULL,
                paid_date TEXT,
                status TEXT NOT NULL CHECK(status IN ('Paid','Pending','Overdue')),
                method TEXT
            );

            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                amount REAL NOT NULL,
                date TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS roles (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL,
                permissions TEXT NOT NULL,
                is_editable INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                role_id TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                user_id TEXT,
                user_name TEXT NOT NULL,
                action TEXT NOT NULL,
                details TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS announcements (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                type TEXT NOT NULL,
                created_at TEXT NOT NULL,
                author_id TEXT,
                read_by TEXT NOT NULL DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def _delete_setting(key: str) -> None:
    execute("DELETE FROM app_settings WHERE key = ?", (key,))


# ---------- Row mapping ----------

def _iso(d: date | datetime | None) -> str | None:
    return d.isoformat() if d else None


def _date(s: str | None) -> date | None:
    return date.fromisoformat(s) if s else None


def _plan(r) -> Plan:
    return Plan(r["id"], r["name"], float(r["price"]), int(r["duration_in_months"]), r["due_day_of_month"])


def _member(r) -> Member:
    return Member(
        id=r["id"], name=r["name"], email=r["email"], join_date=_date(r["join_date"]),
        plan_id=r["plan_id"], status=MemberStatus(r["status"]), phone=r["phone"],
        password_hash=r["password_hash"],
    )


def _payment(r) -> Payment:
    return Payment(
        id=r["id"], member_id=r["member_id"], plan_id=r["plan_id"], amount=float(r["amount"]),
        date=_date(r["date"]), status=PaymentStatus(r["status"]), description=r["description"],
        paid_date=_date(r["paid_date"]), method=r["method"],
    )


PLAN_UPSERT = """
    INSERT INTO plans(id, name, price, duration_in_months, due_day_of_month) VALUES(?,?,?,?,?)
    ON CONFLICT(id) DO UPDATE SET name=excluded.name, price=excluded.price,
        duration_in_months=excluded.duration_in_months, due_day_of_month=excluded.due_day_of_month
"""

MEMBER_UPSERT = """
    INSERT INTO members(id, name, email, phone, join_date, plan_id, status, password_hash)
    VALUES(?,?,?,?,?,?,?,?)
    ON CONFLICT(id) DO UPDATE SET name=excluded.name, email=excluded.email, phone=excluded.phone,
        join_date=excluded.join_date, plan_id=excluded.plan_id, status=excluded.status,
        password_hash=excluded.password_hash
"""

PAYMENT_UPSERT = """
    INSERT OR REPLACE INTO payments(id, member_id, plan_id, description, amount, date, paid_date, status, method)
    VALUES(?,?,?,?,?,?,?,?,?)
"""

EXPENSE_UPSERT = """
    INSERT OR REPLACE INTO expenses(id, description, amount, date, category, status) VALUES(?,?,?,?,?,?)
"""

ANNOUNCEMENT_UPSERT = """
    INSERT OR REPLACE INTO announcements(id, title, content, type, created_at, author_id, read_by)
    VALUES(?,?,?,?,?,?,?)
"""


def _plan_params(plan: Plan) -> tuple:
    return (plan.id, plan.name, plan.price, plan.duration_in_months, plan.due_day_of_month)


def _member_params(m: Member) -> tuple:
    return (m.id, m.name, m.email, m.phone, _iso(m.join_date), m.plan_id, m.status.value, m.password_hash)


def _payment_params(p: Payment) -> tuple:
    return (p.id, p.member_id, p.plan_id, p.description, p.amount, _iso(p.date),
            _iso(p.paid_date), p.status.value, p.method)


def _expense_params(e: Expense) -> tuple:
    return (e.id, e.description, e.amount, _iso(e.date), e.category.value, e.status.value)


def _announcement_params(a: Announcement) -> tuple:
    return (a.id, a.title, a.content, a.type.value, _iso(a.created_at), a.author_id,
            json.dumps(sorted(a.read_by_member_ids)))


def _expense(r) -> Expense:
    return Expense(r["id"], r["description"], float(r["amount"]), _date(r["date"]),
                   ExpenseCategory(r["category"]), ExpenseStatus(r["status"]))


def _role(r) -> Role:
    perms = frozenset(Permission(p) for p in json.loads(r["permissions"]))
    return Role(r["id"], r["name"], r["description"], perms, bool(r["is_editable"]))


def _user(r) -> User:
    return User(r["id"], r["name"], r["email"], r["password_hash"], r["role_id"])


def _announcement(r) -> Announcement:
    return Announcement(
        id=r["id"], title=r["title"], content=r["content"], type=AnnouncementType(r["type"]),
        created_at=datetime.fromisoformat(r["created_at"]), author_id=r["author_id"],
        read_by_member_ids=frozenset(json.loads(r["read_by"])),
    )


# ---------- Store: plans ----------

def get_plans() -> list[Plan]:
    return [_plan(r) for r in fetch_all("SELECT * FROM plans ORDER BY name ASC")]


def get_plan(plan_id: str) -> Plan | None:
    r = fetch_one("SELECT * FROM plans WHERE id = ?", (plan_id,))
    return _plan(r) if r else None


def save_plan(plan: Plan) -> None:
    execute(PLAN_UPSERT, _plan_params(plan))


def delete_plan(plan_id: str) -> None:
    execute("DELETE FROM plans WHERE id = ?", (plan_id,))


# ---------- Store: members ----------

def get_members() -> list[Member]:
    return [_member(r) for r in fetch_all("SELECT * FROM members ORDER BY name ASC")]


def get_member(member_id: str) -> Member | None:
    r = fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
    return _member(r) if r else None


def get_member_by_email(email: str) -> Member | None:
    r = fetch_one("SELECT * FROM members WHERE lower(email) = lower(?)", (email.strip(),))
    return _member(r) if r else None


def save_member(member: Member) -> None:
    execute(MEMBER_UPSERT, _member_params(member))


def delete_member(member_id: str) -> None:
    execute("DELETE FROM members WHERE id = ?", (member_id,))


# ---------- Store: payments ----------

def get_payments(member_id: str | None = None) -> list[Payment]:
    if member_id is None:
        rows = fetch_all("SELECT * FROM payments ORDER BY date DESC, id DESC")
    else:
        rows = fetch_all("SELECT * FROM payments WHERE member_id = ? ORDER BY date DESC, id DESC", (member_id,))
    return [_payment(r) for r in rows]


def save_payment(payment: Payment) -> None:
    execute(PAYMENT_UPSERT, _payment_params(payment))


def add_payment(payment: Payment) -> None:
    """Insert a payment; a paid registration activates a member still in Pending."""
    save_payment(payment)
    if payment.status == PaymentStatus.PAID:
        member = get_member(payment.member_id)
        if member and member.status == MemberStatus.PENDING:
            execute("UPDATE members SET status = ? WHERE id = ?", (MemberStatus.ACTIVE.value, member.id))
            logger.info("Member %s activated by payment %s", member.id, payment.id)


def delete_payment(payment_id: str) -> None:
    execute("DELETE FROM payments WHERE id = ?", (payment_id,))


def replace_payments(payments: Iterable[Payment]) -> None:
    """Swap the whole payment table in a single transaction."""
    params = [_payment_params(p) for p in payments]
    with get_conn() as conn:
        conn.execute("DELETE FROM payments")
        conn.executemany(PAYMENT_UPSERT, params)


def load_billing_state(conn: sqlite3.Connection) -> tuple[list[Member], list[Plan], list[Payment]]:
    """Members, plans and payments read through one connection (see locked_conn)."""
    return (
        [_member(r) for r in conn.execute("SELECT * FROM members ORDER BY name ASC")],
        [_plan(r) for r in conn.execute("SELECT * FROM plans ORDER BY name ASC")],
        [_payment(r) for r in conn.execute("SELECT * FROM payments ORDER BY date DESC, id DESC")],
    )


def apply_billing_changes(conn: sqlite3.Connection, overdue_ids: Iterable[str], new_payments: Iterable[Payment]) -> int:
    """
    Persist a billing run as a delta: flip the given ids Pending -> Overdue and insert the
    generated charges. Rows that are no longer Pending are left alone. Returns rows flipped.
    """
    flipped = 0
    for pid in overdue_ids:
        cur = conn.execute(
            "UPDATE payments SET status = ? WHERE id = ? AND status = ?",
            (PaymentStatus.OVERDUE.value, pid, PaymentStatus.PENDING.value),
        )
        flipped += cur.rowcount
    conn.executemany(
        "INSERT OR IGNORE INTO payments(id, member_id, plan_id, description, amount, date, paid_date, status, method)"
        " VALUES(?,?,?,?,?,?,?,?,?)",
        [_payment_params(p) for p in new_payments],
    )
    return flipped


# ---------- Store: expenses ----------

def get_expenses() -> list[Expense]:
    return [_expense(r) for r in fetch_all("SELECT * FROM expenses ORDER BY date DESC, id DESC")]


def save_expense(expense: Expense) -> None:
    execute(EXPENSE_UPSERT, _expense_params(expense))


def delete_expense(expense_id: str) -> None:
    execute("DELETE FROM expenses WHERE id = ?", (expense_id,))


# ---------- Store: roles / users ----------

def get_roles() -> list[Role]:
    return [_role(r) for r in fetch_all("SELECT * FROM roles ORDER BY is_editable ASC, name ASC")]


def get_role(role_id: str) -> Role | None:
    r = fetch_one("SELECT * FROM roles WHERE id = ?", (role_id,))
    return _role(r) if r else None


def save_role(role: Role) -> None:
    execute(
        "INSERT OR REPLACE INTO roles(id, name, description, permissions, is_editable) VALUES(?,?,?,?,?)",
        (role.id, role.name, role.description, json.dumps(sorted(p.value for p in role.permissions)),
         int(role.is_editable)),
    )


def delete_role(role_id: str) -> None:
    execute("DELETE FROM roles WHERE id = ?", (role_id,))


def get_users() -> list[User]:
    return [_user(r) for r in fetch_all("SELECT * FROM users ORDER BY name ASC")]


def get_user(user_id: str) -> User | None:
    r = fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
    return _user(r) if r else None


def get_user_by_email(email: str) -> User | None:
    r = fetch_one("SELECT * FROM users WHERE lower(email) = lower(?)", (email.strip(),))
    return _user(r) if r else None


def save_user(user: User) -> None:
    execute(
        "INSERT OR REPLACE INTO users(id, name, email, password_hash, role_id) VALUES(?,?,?,?,?)",
        (user.id, user.name, user.email, user.password_hash, user.role_id),
    )


def delete_user(user_id: str) -> None:
    execute("DELETE FROM users WHERE id = ?", (user_id,))


# ---------- Store: announcements ----------

def get_announcements() -> list[Announcement]:
    return [_announcement(r) for r in fetch_all("SELECT * FROM announcements ORDER BY created_at DESC")]


def save_announcement(a: Announcement) -> None:
    execute(ANNOUNCEMENT_UPSERT, _announcement_params(a))


def delete_announcement(announcement_id: str) -> None:
    execute("DELETE FROM announcements WHERE id = ?", (announcement_id,))


def mark_announcement_read(announcement_id: str, member_id: str) -> None:
    r = fetch_one("SELECT read_by FROM announcements WHERE id = ?", (announcement_id,))
    if not r:
        return
    read_by = set(json.loads(r["read_by"]))
    read_by.add(member_id)
    execute("UPDATE announcements SET read_by = ? WHERE id = ?", (json.dumps(sorted(read_by)), announcement_id))


# ---------- Settings ----------

def get_billing_ruler_settings() -> BillingRulerSettings:
    raw = _get_setting("billing_ruler_settings")
    if raw is None:
        return BillingRulerSettings()
    data = json.loads(raw)
    return BillingRulerSettings(
        before_due=ReminderRule(**data["before_due"]),
        on_due=ReminderRule(**data["on_due"]),
        after_due=ReminderRule(**data["after_due"]),
    )


def set_billing_ruler_settings(settings: BillingRulerSettings) -> None:
    _set_setting("billing_ruler_settings", json.dumps(asdict(settings)))


def get_primary_color() -> str:
    return _get_setting("primary_color", "#8b5cf6")


def set_primary_color(color: str) -> None:
    _set_setting("primary_color", color)


def get_logo() -> str | None:
    return _get_setting("custom_logo")


def set_logo(logo: str | None) -> None:
    if logo:
        _set_setting("custom_logo", logo)
    else:
        _delete_setting("custom_logo")


def is_force_password_change() -> bool:
    return _get_setting("force_password_change") == "1"


def clear_force_password_change() -> None:
    _set_setting("force_password_change", "0")


# ---------- Init / bulk ----------

STAFF_PERMISSIONS = frozenset({
    Permission.VIEW_DASHBOARD, Permission.VIEW_MEMBERS, Permission.CREATE_MEMBERS,
    Permission.UPDATE_MEMBERS, Permission.VIEW_PAYMENTS, Permission.CREATE_PAYMENTS,
    Permission.UPDATE_PAYMENTS, Permission.VIEW_ANNOUNCEMENTS,
})

MANAGER_PERMISSIONS = frozenset(Permission) - {Permission.MANAGE_ROLES, Permission.VIEW_AUDIT_LOG}

DEFAULT_ROLES = [
    Role("role_admin", "Administrator", "Full access to every feature.", frozenset(Permission), is_editable=False),
    Role("role_manager", "Manager", "Manages members, plans, payments and finances.", MANAGER_PERMISSIONS),
    Role("role_staff", "Receptionist", "Manages members and registers payments.", STAFF_PERMISSIONS),
]


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default roles and the default admin if no user exists
    - Force password change on first login
    """
    _create_tables()

    if not fetch_one("SELECT id FROM roles LIMIT 1"):
        for role in DEFAULT_ROLES:
            save_role(role)

    if not fetch_one("SELECT id FROM users LIMIT 1"):
        save_user(User("user1", "Admin", get_settings().default_admin_email, default_admin_hash, "role_admin"))
        _set_setting("force_password_change", "1")
        logger.info("Created default admin %s", get_settings().default_admin_email)
    elif _get_setting("force_password_change") is None:
        _set_setting("force_password_change", "0")


def _write_dataset(conn: sqlite3.Connection, data: dict) -> None:
    conn.executemany(PLAN_UPSERT, [_plan_params(p) for p in data.get("plans", [])])
    conn.executemany(MEMBER_UPSERT, [_member_params(m) for m in data.get("members", [])])
    conn.executemany(PAYMENT_UPSERT, [_payment_params(p) for p in data.get("payments", [])])
    conn.executemany(EXPENSE_UPSERT, [_expense_params(e) for e in data.get("expenses", [])])
    conn.executemany(ANNOUNCEMENT_UPSERT, [_announcement_params(a) for a in data.get("announcements", [])])


def insert_dataset(data: dict) -> None:
    """Write plans/members/payments/expenses/announcements from a dict of domain objects."""
    with get_conn() as conn:
        _write_dataset(conn, data)


def _check(record: dict, errors: list[str]) -> None:
    if errors:
        raise ValueError(f"Invalid record {record.get('id', '?')!r}: {' '.join(errors)}")


def _parse_plan(p: dict) -> Plan:
    _check(p, validate_plan_inputs(str(p.get("name", "")), p.get("price"), p.get("duration_in_months"),
                                   p.get("due_day_of_month")))
    due_day = p.get("due_day_of_month")
    return Plan(p["id"], p["name"], float(p["price"]), int(p["duration_in_months"]),
                int(due_day) if due_day not in (None, "") else None)


def _parse_payment(p: dict) -> Payment:
    _check(p, validate_amount(p.get("amount")))
    return Payment(p["id"], p["member_id"], p["plan_id"], float(p["amount"]),
                   date.fromisoformat(p["date"]), PaymentStatus(p["status"]),
                   p.get("description"), _date(p.get("paid_date")), p.get("method"))


def _parse_expense(e: dict) -> Expense:
    _check(e, validate_amount(e.get("amount")))
    return Expense(e["id"], e["description"], float(e["amount"]), date.fromisoformat(e["date"]),
                   ExpenseCategory(e["category"]), ExpenseStatus(e.get("status", "Pending")))


def _parse_import(data: dict) -> dict:
    # Validate everything first so a bad record rejects the whole import
    try:
        return {
            "plans": [_parse_plan(p) for p in data.get("plans", [])],
            "members": [Member(m["id"], m["name"], m["email"], date.fromisoformat(m["join_date"]),
                               m["plan_id"], MemberStatus(m["status"]), m.get("phone"))
                        for m in data.get("members", [])],
            "payments": [_parse_payment(p) for p in data.get("payments", [])],
            "expenses": [_parse_expense(e) for e in data.get("expenses", [])],
        }
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Malformed import data: {e!r}") from e


def import_data(data: dict) -> dict[str, int]:
    """
    Replace the sections present in `data` (JSON-like dict, ISO date strings).
    Raises ValueError before touching the store if any record is invalid.
    """
    parsed = _parse_import(data)
    sections = [t for t in ("plans", "members", "payments", "expenses") if t in data]
    with get_conn() as conn:
        for table in sections:
            conn.execute(f"DELETE FROM {table}")
        _write_dataset(conn, {t: parsed[t] for t in sections})
    counts = {t: len(parsed[t]) for t in sections}
    logger.info("Imported data: %s", counts)
    return counts
