"""
billing.py
Recurring billing cycle: overdue reconciliation, recurring charge generation,
payment confirmation.

Everything here is pure: functions take snapshots and return new lists. Callers
(see tasks.py) load state from the store and write the result back.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Iterable

from models import CycleResult, Member, MemberStatus, Payment, PaymentStatus, Plan
from utils import add_months, new_id, same_month, with_day

logger = logging.getLogger(__name__)

RECURRING_DESCRIPTION = "Recurring charge - {plan}"


class InvalidTransition(ValueError):
    """Raised when a payment status change is not allowed."""


def _by_date_desc(payments: Iterable[Payment]) -> list[Payment]:
    return sorted(payments, key=lambda p: p.date, reverse=True)


def initial_status(due_date: date, today: date) -> PaymentStatus:
    """Status of a freshly generated charge."""
    return PaymentStatus.OVERDUE if due_date < today else PaymentStatus.PENDING


def reconcile_statuses(payments: Iterable[Payment], today: date) -> list[Payment]:
    """
    Mark every Pending payment whose due date is before today as Overdue.
    Paid and Overdue payments pass through unchanged.
    """
    out = []
    for p in payments:
        if p.status == PaymentStatus.PENDING and p.date < today:
            p = replace(p, status=PaymentStatus.OVERDUE)
        out.append(p)
    return out


def next_due_date(anchor: date, plan: Plan) -> date:
    due = add_months(anchor, plan.duration_in_months)
    if plan.due_day_of_month:
        due = with_day(due, plan.due_day_of_month)
    return due


def _charges_for_member(
    member: Member,
    plan: Plan,
    existing: list[Payment],
    today: date,
    max_cycles: int | None,
    id_factory: Callable[[], str],
) -> list[Payment]:
    anchor = existing[0].date if existing else member.join_date
    taken = [p.date for p in existing]
    out: list[Payment] = []
    cycles = 0

    while True:
        due = next_due_date(anchor, plan)
        if due > today:
            break
        if max_cycles is not None and cycles >= max_cycles:
            logger.warning(
                "Backfill for member %s stopped after %d cycles (next due %s)",
                member.id, cycles, due.isoformat(),
            )
            break
        cycles += 1
        if not any(same_month(d, due) for d in taken):
            out.append(Payment(
                id=id_factory(),
                member_id=member.id,
                plan_id=plan.id,
                amount=plan.price,
                date=due,
                status=initial_status(due, today),
                description=RECURRING_DESCRIPTION.format(plan=plan.name),
            ))
            taken.append(due)
        anchor = due
    return out


def generate_recurring_charges(
    members: Iterable[Member],
    plans: Iterable[Plan],
    payments: Iterable[Payment],
    today: date,
    max_cycles: int | None = None,
    id_factory: Callable[[], str] | None = None,
) -> list[Payment]:
    """
    New recurring charges for every active member, one per missed cycle up to today.

    The anchor is the due date of the member's latest payment, or the join date when
    the member has none. A cycle is skipped when the member already has a payment
    due in the same calendar month. Inputs are not modified; only the new records
    are returned.
    """
    plan_map = {p.id: p for p in plans}
    id_factory = id_factory or (lambda: new_id("pay-auto-"))

    by_member: dict[str, list[Payment]] = {}
    for p in payments:
        by_member.setdefault(p.member_id, []).append(p)

    generated: list[Payment] = []
    for member in members:
        if member.status != MemberStatus.ACTIVE:
            continue
        plan = plan_map.get(member.plan_id)
        if plan is None:
            logger.warning("Member %s references missing plan %s; skipped", member.id, member.plan_id)
            continue
        if not plan.duration_in_months or plan.duration_in_months <= 0:
            logger.warning("Plan %s has non-positive duration; member %s skipped", plan.id, member.id)
            continue
        existing = _by_date_desc(by_member.get(member.id, []))
        generated.extend(_charges_for_member(member, plan, existing, today, max_cycles, id_factory))
    return generated


def run_cycle(
    members: Iterable[Member],
    plans: Iterable[Plan],
    payments: Iterable[Payment],
    today: date,
    max_cycles: int | None = None,
    id_factory: Callable[[], str] | None = None,
) -> CycleResult:
    """Reconcile statuses, then generate missing charges against the reconciled set."""
    payments = list(payments)
    reconciled = reconcile_statuses(payments, today)
    updated = sum(1 for before, after in zip(payments, reconciled) if before.status != after.status)
    new = generate_recurring_charges(members, plans, reconciled, today, max_cycles, id_factory)
    logger.info("Billing cycle %s: %d marked overdue, %d generated", today.isoformat(), updated, len(new))
    return CycleResult(
        payments=_by_date_desc(reconciled + new),
        updated_count=updated,
        generated_count=len(new),
    )


def cycle_summary(result: CycleResult) -> str | None:
    """One-line user message; generated charges take priority. None when nothing changed."""
    if result.generated_count:
        return f"{result.generated_count} charge(s) generated."
    if result.updated_count:
        return f"{result.updated_count} payment(s) marked overdue."
    return None


def edit_payment(
    payment: Payment,
    amount: float,
    due: date,
    status: PaymentStatus,
    description: str | None = None,
    method: str | None = None,
    today: date | None = None,
) -> Payment:
    """
    Manual edit from the staff console. Any field may change, including moving a Paid
    payment back to Pending/Overdue; paid_date follows the status.
    """
    if status == PaymentStatus.PAID:
        paid_date = payment.paid_date or today or date.today()
    else:
        paid_date = None
        method = None
    return replace(
        payment,
        amount=amount,
        date=due,
        status=status,
        description=description,
        paid_date=paid_date,
        method=method,
    )


def confirm_payment(payment: Payment, paid_on: date | None = None, method: str | None = None) -> Payment:
    """Pending/Overdue -> Paid. Paid is terminal."""
    if payment.status == PaymentStatus.PAID:
        raise InvalidTransition(f"Payment {payment.id} is already paid")
    return replace(
        payment,
        status=PaymentStatus.PAID,
        paid_date=paid_on or date.today(),
        method=method or payment.method,
    )
