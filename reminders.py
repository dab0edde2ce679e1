"""
reminders.py
Billing reminder rules (before / on / after due date) and the in-app notification inbox.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from models import BillingRulerSettings, Member, Notification, Payment, PaymentStatus
from utils import format_currency, format_ddmmyyyy


def _member_name(members: dict[str, Member], member_id: str) -> str:
    m = members.get(member_id)
    return m.name if m else "N/A"


def evaluate_reminders(
    settings: BillingRulerSettings,
    payments: Iterable[Payment],
    today: date,
    members: Iterable[Member] | None = None,
) -> list[Notification]:
    """
    Notifications for payments hitting a reminder window today.

    Rules are tried in order before-due, on-due, after-due; the first match wins and
    each payment yields at most one notification per call.
    """
    member_map = {m.id: m for m in (members or [])}
    out: list[Notification] = []
    seen: set[str] = set()

    for p in payments:
        if p.id in seen:
            continue
        name = _member_name(member_map, p.member_id)
        amount = format_currency(p.amount)
        due = format_ddmmyyyy(p.date)
        note = None

        before, on, after = settings.before_due, settings.on_due, settings.after_due
        if before.enabled and p.status == PaymentStatus.PENDING and p.date == today + timedelta(days=before.days):
            note = Notification(
                "Upcoming payment",
                f"{name}'s payment of {amount} is due in {before.days} day(s) ({due}).",
            )
        elif on.enabled and p.status == PaymentStatus.PENDING and p.date == today:
            note = Notification("Payment due today", f"{name}'s payment of {amount} is due today.")
        elif after.enabled and p.status == PaymentStatus.OVERDUE and p.date == today - timedelta(days=after.days):
            note = Notification(
                "Payment overdue",
                f"{name}'s payment of {amount} has been overdue for {after.days} day(s) (due {due}).",
            )

        if note is not None:
            seen.add(p.id)
            out.append(note)
    return out


@dataclass
class InboxItem:
    id: int
    title: str
    message: str
    read: bool = False


class NotificationInbox:
    """Session-scoped list of notifications, newest first, ignoring exact duplicates."""

    def __init__(self):
        self.items: list[InboxItem] = []
        self._ids = itertools.count(1)

    def add(self, title: str, message: str) -> InboxItem | None:
        if any(n.title == title and n.message == message for n in self.items):
            return None
        item = InboxItem(next(self._ids), title, message)
        self.items.insert(0, item)
        return item

    def extend(self, notifications: Iterable[Notification]) -> int:
        return sum(1 for n in notifications if self.add(n.title, n.message) is not None)

    def mark_as_read(self, item_id: int) -> None:
        for n in self.items:
            if n.id == item_id:
                n.read = True

    def mark_all_read(self) -> None:
        for n in self.items:
            n.read = True

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.items if not n.read)
