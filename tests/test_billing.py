from collections import Counter
from datetime import date

import pytest

import billing
from models import CycleResult, MemberStatus, PaymentStatus, Plan


def _ids():
    counter = iter(range(1, 10_000))
    return lambda: f"gen{next(counter)}"


# ---------- reconcile_statuses ----------

def test_reconcile_marks_past_pending_as_overdue(make_payment):
    payments = [
        make_payment("a", due=date(2024, 3, 1)),
        make_payment("b", due=date(2024, 3, 10)),
        make_payment("c", due=date(2024, 3, 20)),
    ]
    out = billing.reconcile_statuses(payments, date(2024, 3, 10))
    assert [p.status for p in out] == [PaymentStatus.OVERDUE, PaymentStatus.PENDING, PaymentStatus.PENDING]
    # inputs untouched
    assert payments[0].status == PaymentStatus.PENDING


def test_reconcile_is_idempotent(make_payment):
    payments = [
        make_payment("a", due=date(2024, 1, 1)),
        make_payment("b", due=date(2024, 5, 1)),
        make_payment("c", due=date(2023, 12, 1), status=PaymentStatus.PAID),
        make_payment("d", due=date(2023, 11, 1), status=PaymentStatus.OVERDUE),
    ]
    today = date(2024, 2, 1)
    once = billing.reconcile_statuses(payments, today)
    assert billing.reconcile_statuses(once, today) == once


def test_reconcile_never_touches_paid(make_payment):
    paid = make_payment("a", due=date(2020, 1, 1), status=PaymentStatus.PAID)
    assert billing.reconcile_statuses([paid], date(2024, 1, 1)) == [paid]


# ---------- generate_recurring_charges ----------

def test_monthly_plan_backfills_missed_cycles(make_member, monthly_plan):
    member = make_member(join=date(2024, 1, 15))
    today = date(2024, 4, 20)

    new = billing.generate_recurring_charges([member], [monthly_plan], [], today, id_factory=_ids())

    assert [p.date for p in new] == [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)]
    assert all(p.status == PaymentStatus.OVERDUE for p in new)
    assert all(p.amount == 30.0 and p.plan_id == "plan-m" for p in new)
    assert all(p.description == "Recurring charge - Monthly" for p in new)

    # second run sees the generated charges and produces nothing
    again = billing.generate_recurring_charges([member], [monthly_plan], new, today)
    assert again == []


def test_due_day_override_moves_the_day(make_member):
    plan = Plan("p5", "Fifth", 50.0, 1, due_day_of_month=5)
    member = make_member(join=date(2024, 1, 10), plan_id="p5")

    new = billing.generate_recurring_charges([member], [plan], [], date(2024, 3, 1))

    assert [p.date for p in new] == [date(2024, 2, 5)]


def test_due_day_beyond_month_end_is_clamped(make_member):
    plan = Plan("p31", "End of month", 40.0, 1, due_day_of_month=31)
    member = make_member(join=date(2024, 1, 31), plan_id="p31")

    new = billing.generate_recurring_charges([member], [plan], [], date(2024, 4, 30))

    assert [p.date for p in new] == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]


def test_due_today_is_pending(make_member, monthly_plan):
    member = make_member(join=date(2024, 1, 15))
    new = billing.generate_recurring_charges([member], [monthly_plan], [], date(2024, 2, 15))
    assert len(new) == 1
    assert new[0].status == PaymentStatus.PENDING


def test_anchor_is_latest_existing_payment(make_member, make_payment, monthly_plan):
    member = make_member(join=date(2023, 1, 15))
    existing = [
        make_payment("old", due=date(2023, 2, 15), status=PaymentStatus.PAID),
        make_payment("last", due=date(2024, 2, 15), status=PaymentStatus.PAID),
    ]
    new = billing.generate_recurring_charges([member], [monthly_plan], existing, date(2024, 3, 20))
    assert [p.date for p in new] == [date(2024, 3, 15)]


def test_payment_later_in_month_becomes_anchor(make_member, make_payment):
    plan = Plan("p5", "Fifth", 50.0, 1, due_day_of_month=5)
    member = make_member(join=date(2024, 1, 5), plan_id="p5")
    # a manual payment on another day of February counts as the February cycle
    manual = make_payment("manual", due=date(2024, 2, 20), plan_id="p5", status=PaymentStatus.PAID)
    new = billing.generate_recurring_charges([member], [plan], [manual], date(2024, 3, 10))
    assert [p.date for p in new] == [date(2024, 3, 5)]


@pytest.mark.parametrize("status", [MemberStatus.INACTIVE, MemberStatus.PENDING])
def test_non_active_members_are_never_billed(make_member, monthly_plan, status):
    member = make_member(join=date(2020, 1, 1), status=status)
    assert billing.generate_recurring_charges([member], [monthly_plan], [], date(2024, 1, 1)) == []


def test_missing_plan_or_bad_duration_is_skipped(make_member, monthly_plan, caplog):
    orphan = make_member("orphan", plan_id="gone")
    broken = make_member("broken", plan_id="zero")
    ok = make_member("ok")
    plans = [monthly_plan, Plan("zero", "Broken", 10.0, 0)]

    with caplog.at_level("WARNING"):
        new = billing.generate_recurring_charges([orphan, broken, ok], plans, [], date(2024, 2, 20))

    assert {p.member_id for p in new} == {"ok"}
    assert "missing plan" in caplog.text


def test_backfill_cap_limits_cycles(make_member, monthly_plan, caplog):
    member = make_member(join=date(2020, 1, 15))
    with caplog.at_level("WARNING"):
        new = billing.generate_recurring_charges([member], [monthly_plan], [], date(2024, 1, 20), max_cycles=6)
    assert len(new) == 6
    assert new[-1].date == date(2020, 7, 15)
    assert "stopped after 6 cycles" in caplog.text


def test_no_duplicate_months_per_member(make_member, make_payment):
    quarterly = Plan("q", "Quarterly", 80.0, 3)
    members = [make_member("a", join=date(2022, 5, 31), plan_id="q"), make_member("b", join=date(2023, 1, 1), plan_id="q")]
    existing = [make_payment("x", member_id="b", due=date(2023, 4, 10), plan_id="q")]

    new = billing.generate_recurring_charges(members, [quarterly], existing, date(2024, 6, 1))

    seen = Counter((p.member_id, p.date.year, p.date.month) for p in existing + new)
    assert max(seen.values()) == 1


def test_generation_does_not_mutate_inputs(make_member, make_payment, monthly_plan):
    members = [make_member()]
    payments = [make_payment(due=date(2024, 1, 15))]
    snapshot = list(payments)
    billing.generate_recurring_charges(members, [monthly_plan], payments, date(2024, 5, 1))
    assert payments == snapshot


# ---------- run_cycle ----------

def test_run_cycle_reconciles_then_generates(make_member, make_payment, monthly_plan):
    member = make_member(join=date(2024, 1, 15))
    payments = [make_payment("first", due=date(2024, 2, 15))]

    result = billing.run_cycle([member], [monthly_plan], payments, date(2024, 4, 20), id_factory=_ids())

    assert result.updated_count == 1
    assert result.generated_count == 2
    assert [p.date for p in result.payments] == [date(2024, 4, 15), date(2024, 3, 15), date(2024, 2, 15)]
    assert all(p.status == PaymentStatus.OVERDUE for p in result.payments)


def test_overdue_iff_past_and_not_paid(make_member, make_payment, monthly_plan):
    today = date(2024, 6, 10)
    members = [make_member("a", join=date(2024, 1, 10)), make_member("b", join=date(2024, 3, 1))]
    payments = [
        make_payment("p", member_id="a", due=date(2024, 2, 10), status=PaymentStatus.PAID),
        make_payment("q", member_id="b", due=date(2024, 6, 12)),
    ]
    result = billing.run_cycle(members, [monthly_plan], payments, today)
    for p in result.payments:
        expected = p.date < today and p.status != PaymentStatus.PAID
        assert (p.status == PaymentStatus.OVERDUE) == expected


def test_cycle_summary_priorities():
    assert billing.cycle_summary(CycleResult([], 2, 3)) == "3 charge(s) generated."
    assert billing.cycle_summary(CycleResult([], 2, 0)) == "2 payment(s) marked overdue."
    assert billing.cycle_summary(CycleResult([], 0, 0)) is None


# ---------- payment state machine ----------

def test_confirm_payment_sets_paid(make_payment):
    p = make_payment(status=PaymentStatus.OVERDUE)
    paid = billing.confirm_payment(p, paid_on=date(2024, 2, 1), method="pix")
    assert paid.status == PaymentStatus.PAID
    assert paid.paid_date == date(2024, 2, 1)
    assert paid.method == "pix"


def test_confirm_payment_rejects_paid(make_payment):
    with pytest.raises(billing.InvalidTransition):
        billing.confirm_payment(make_payment(status=PaymentStatus.PAID))


def test_manual_edit_can_reopen_a_paid_payment(make_payment):
    paid = billing.confirm_payment(make_payment(), paid_on=date(2024, 1, 20), method="cash")

    reopened = billing.edit_payment(paid, 35.0, date(2024, 1, 16), PaymentStatus.PENDING, "Adjusted", "cash")

    assert reopened.status == PaymentStatus.PENDING
    assert reopened.paid_date is None and reopened.method is None
    assert (reopened.amount, reopened.date, reopened.description) == (35.0, date(2024, 1, 16), "Adjusted")


def test_manual_edit_to_paid_sets_paid_date(make_payment):
    edited = billing.edit_payment(make_payment(), 30.0, date(2024, 1, 15), PaymentStatus.PAID,
                                  method="card", today=date(2024, 1, 18))
    assert edited.paid_date == date(2024, 1, 18)
    assert edited.method == "card"


def test_clamped_day_carries_into_later_cycles(make_member, monthly_plan):
    # without a due-day override each cycle advances from the previous due date
    member = make_member(join=date(2024, 1, 31))

    new = billing.generate_recurring_charges([member], [monthly_plan], [], date(2024, 4, 30))

    assert [p.date for p in new] == [date(2024, 2, 29), date(2024, 3, 29), date(2024, 4, 29)]
