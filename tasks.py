"""
tasks.py
Session start-up / scheduled tick: run the billing cycle against the store and
collect billing reminders.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date

import audit
import auth
import billing
import db
import reminders
from config import get_settings
from models import CycleResult, LogActionType, Notification, Payment, User
from utils import build_sample_data, format_currency

logger = logging.getLogger(__name__)

SAMPLE_PORTAL_PASSWORD = "password"


def run_billing_tick(today: date | None = None, actor: User | None = None) -> CycleResult:
    """
    Reconcile overdue payments and generate missing recurring charges, then persist.

    Load, cycle and write happen under one write lock, and only the delta is written
    (status flips and new rows), so payments other sessions save are never overwritten.
    """
    today = today or date.today()
    with db.locked_conn() as conn:
        members, plans, payments = db.load_billing_state(conn)
        result = billing.run_cycle(members, plans, payments, today, max_cycles=get_settings().max_backfill_cycles)
        if result.changed:
            before = {p.id: p.status for p in payments}
            overdue_ids = [p.id for p in result.payments if p.id in before and before[p.id] != p.status]
            generated = [p for p in result.payments if p.id not in before]
            db.apply_billing_changes(conn, overdue_ids, generated)

    if result.changed:
        summary = billing.cycle_summary(result)
        audit.record(actor, LogActionType.BILLING_RUN,
                     f"{summary} ({result.updated_count} overdue, {result.generated_count} generated)")
        logger.info("Billing tick persisted: %s", summary)
    else:
        logger.debug("Billing tick: nothing to do")
    return result


def confirm_payment(payment: Payment, method: str | None = None, actor: User | None = None,
                    paid_on: date | None = None) -> Payment:
    """
    Mark a payment as paid, save it and record who did it. `actor=None` means the member
    paid through the portal.
    """
    paid = billing.confirm_payment(payment, paid_on=paid_on, method=method)
    db.add_payment(paid)
    member = db.get_member(paid.member_id)
    name = member.name if member else "N/A"
    by = "" if actor else " via member portal"
    audit.record(actor, LogActionType.UPDATE_PAYMENT,
                 f'Confirmed payment of {format_currency(paid.amount, get_settings().currency_symbol)} for "{name}"{by}.')
    return paid


def collect_reminders(today: date | None = None) -> list[Notification]:
    today = today or date.today()
    return reminders.evaluate_reminders(
        db.get_billing_ruler_settings(),
        db.get_payments(),
        today,
        members=db.get_members(),
    )


def startup(today: date | None = None) -> tuple[CycleResult, list[Notification]]:
    """Once per session: billing cycle first, then reminders over the updated payments."""
    today = today or date.today()
    result = run_billing_tick(today)
    return result, collect_reminders(today)


def seed_sample_data(today: date | None = None, actor: User | None = None) -> None:
    """Load the demo dataset; the first two members get a portal password."""
    data = build_sample_data(today)
    pw_hash = auth.hash_password(SAMPLE_PORTAL_PASSWORD)
    data["members"] = [
        replace(m, password_hash=pw_hash) if m.id in ("mem1", "mem2") else m
        for m in data["members"]
    ]
    db.insert_dataset(data)
    audit.record(actor, LogActionType.IMPORT_DATA, "Loaded sample data.")
