"""
models.py
Domain types: plans, members, payments, expenses, roles, audit entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class PaymentStatus(str, Enum):
    PAID = "Paid"
    PENDING = "Pending"
    OVERDUE = "Overdue"


# Expenses share the payment lifecycle labels
ExpenseStatus = PaymentStatus


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"


class ExpenseCategory(str, Enum):
    SALARIES = "Salaries"
    RENT = "Rent"
    EQUIPMENT = "Equipment"
    MARKETING = "Marketing"
    OTHER = "Other"


class AnnouncementType(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    PROMOTION = "Promotion"


class Permission(str, Enum):
    VIEW_DASHBOARD = "VIEW_DASHBOARD"
    VIEW_MEMBERS = "VIEW_MEMBERS"
    CREATE_MEMBERS = "CREATE_MEMBERS"
    UPDATE_MEMBERS = "UPDATE_MEMBERS"
    DELETE_MEMBERS = "DELETE_MEMBERS"
    VIEW_PLANS = "VIEW_PLANS"
    CREATE_PLANS = "CREATE_PLANS"
    UPDATE_PLANS = "UPDATE_PLANS"
    DELETE_PLANS = "DELETE_PLANS"
    VIEW_PAYMENTS = "VIEW_PAYMENTS"
    CREATE_PAYMENTS = "CREATE_PAYMENTS"
    UPDATE_PAYMENTS = "UPDATE_PAYMENTS"
    DELETE_PAYMENTS = "DELETE_PAYMENTS"
    VIEW_EXPENSES = "VIEW_EXPENSES"
    CREATE_EXPENSES = "CREATE_EXPENSES"
    UPDATE_EXPENSES = "UPDATE_EXPENSES"
    DELETE_EXPENSES = "DELETE_EXPENSES"
    VIEW_REPORTS = "VIEW_REPORTS"
    VIEW_ANNOUNCEMENTS = "VIEW_ANNOUNCEMENTS"
    CREATE_ANNOUNCEMENTS = "CREATE_ANNOUNCEMENTS"
    MANAGE_SETTINGS = "MANAGE_SETTINGS"
    MANAGE_ROLES = "MANAGE_ROLES"
    VIEW_AUDIT_LOG = "VIEW_AUDIT_LOG"


class LogActionType(str, Enum):
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    CREATE_MEMBER = "CREATE_MEMBER"
    UPDATE_MEMBER = "UPDATE_MEMBER"
    DELETE_MEMBER = "DELETE_MEMBER"
    CREATE_PLAN = "CREATE_PLAN"
    UPDATE_PLAN = "UPDATE_PLAN"
    DELETE_PLAN = "DELETE_PLAN"
    CREATE_PAYMENT = "CREATE_PAYMENT"
    UPDATE_PAYMENT = "UPDATE_PAYMENT"
    DELETE_PAYMENT = "DELETE_PAYMENT"
    CREATE_EXPENSE = "CREATE_EXPENSE"
    UPDATE_EXPENSE = "UPDATE_EXPENSE"
    DELETE_EXPENSE = "DELETE_EXPENSE"
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    CREATE_ROLE = "CREATE_ROLE"
    UPDATE_ROLE = "UPDATE_ROLE"
    DELETE_ROLE = "DELETE_ROLE"
    CREATE_ANNOUNCEMENT = "CREATE_ANNOUNCEMENT"
    DELETE_ANNOUNCEMENT = "DELETE_ANNOUNCEMENT"
    IMPORT_DATA = "IMPORT_DATA"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"
    BILLING_RUN = "BILLING_RUN"


PAYMENT_METHODS = ("cash", "card", "transfer", "pix", "boleto")


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: float
    duration_in_months: int
    due_day_of_month: int | None = None  # 1..31, clamped to month end


@dataclass(frozen=True)
class Member:
    id: str
    name: str
    email: str
    join_date: date
    plan_id: str
    status: MemberStatus
    phone: str | None = None
    password_hash: str | None = None  # member portal login


@dataclass(frozen=True)
class Payment:
    id: str
    member_id: str
    plan_id: str
    amount: float
    date: date  # due date
    status: PaymentStatus
    description: str | None = None
    paid_date: date | None = None
    method: str | None = None


@dataclass(frozen=True)
class Expense:
    id: str
    description: str
    amount: float
    date: date
    category: ExpenseCategory
    status: ExpenseStatus = ExpenseStatus.PENDING


@dataclass(frozen=True)
class Role:
    id: str
    name: str
    description: str
    permissions: frozenset[Permission]
    is_editable: bool = True


@dataclass(frozen=True)
class User:
    id: str
    name: str
    email: str
    password_hash: str
    role_id: str


@dataclass(frozen=True)
class AuditLog:
    id: int | None
    timestamp: datetime
    user_id: str | None
    user_name: str
    action: LogActionType
    details: str


@dataclass(frozen=True)
class Announcement:
    id: str
    title: str
    content: str
    type: AnnouncementType
    created_at: datetime
    author_id: str | None
    read_by_member_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ReminderRule:
    enabled: bool
    days: int = 0


@dataclass(frozen=True)
class BillingRulerSettings:
    before_due: ReminderRule = ReminderRule(True, 3)
    on_due: ReminderRule = ReminderRule(True)
    after_due: ReminderRule = ReminderRule(True, 5)


@dataclass(frozen=True)
class Notification:
    title: str
    message: str


@dataclass(frozen=True)
class CycleResult:
    payments: list[Payment] = field(default_factory=list)
    updated_count: int = 0
    generated_count: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.updated_count or self.generated_count)
