from dataclasses import replace
from datetime import date

import pytest

import queries
from models import Expense, ExpenseCategory, ExpenseStatus, Member, MemberStatus, PaymentStatus, Plan


@pytest.mark.parametrize(
    "page, expected_page, expected_first",
    [(1, 1, 0), (3, 3, 20), (0, 1, 0), (99, 3, 20)],
)
def test_paginate_clamps(page, expected_page, expected_first):
    result = queries.paginate(list(range(25)), page, per_page=10)
    assert result.page == expected_page
    assert result.items[0] == expected_first
    assert result.total_pages == 3 and result.total_items == 25


def test_paginate_empty():
    result = queries.paginate([], 1)
    assert result.items == [] and result.total_pages == 1


def test_filter_members():
    members = [
        Member("a", "Alice Johnson", "alice@example.com", date(2024, 1, 1), "p1", MemberStatus.ACTIVE, "(11) 98765-4321"),
        Member("b", "Bob Williams", "bob@example.com", date(2024, 1, 1), "p2", MemberStatus.PENDING),
        Member("c", "Carol", "carol@gym.org", date(2024, 1, 1), "p1", MemberStatus.INACTIVE),
    ]
    assert [m.id for m in queries.filter_members(members, "alice")] == ["a"]
    assert [m.id for m in queries.filter_members(members, "98765")] == ["a"]
    assert [m.id for m in queries.filter_members(members, "GYM.ORG")] == ["c"]
    assert [m.id for m in queries.filter_members(members, status=MemberStatus.PENDING)] == ["b"]
    assert [m.id for m in queries.filter_members(members, plan_id="p1")] == ["a", "c"]


def test_filter_payments(make_payment, make_member):
    payments = [
        make_payment("a", member_id="m1", due=date(2024, 1, 5), status=PaymentStatus.PAID),
        make_payment("b", member_id="m2", due=date(2024, 2, 5)),
        make_payment("c", member_id="m1", due=date(2024, 3, 5), status=PaymentStatus.OVERDUE),
    ]
    members = [make_member("m1"), make_member("m2")]

    assert [p.id for p in queries.filter_payments(payments, members, "member m2")] == ["b"]
    assert [p.id for p in queries.filter_payments(payments, members, status=PaymentStatus.OVERDUE)] == ["c"]
    assert [p.id for p in queries.filter_payments(payments, start=date(2024, 2, 1), end=date(2024, 3, 5))] == ["b", "c"]


def test_sort_payments_by_field_and_name(make_payment, make_member):
    payments = [
        make_payment("a", member_id="m2", amount=50),
        make_payment("b", member_id="m1", amount=10),
        make_payment("c", member_id="m3", amount=30),
    ]
    members = [make_member("m1"), make_member("m2"), make_member("m3")]

    assert [p.id for p in queries.sort_payments(payments, "amount", descending=False)] == ["b", "c", "a"]
    assert [p.id for p in queries.sort_payments(payments, "member_name", descending=False, members=members)] == ["b", "a", "c"]


def test_sort_payments_puts_missing_values_last(make_payment):
    paid = replace(make_payment("paid"), paid_date=date(2024, 1, 3))
    unpaid = make_payment("unpaid")
    older = replace(make_payment("older"), paid_date=date(2023, 12, 1))

    asc = queries.sort_payments([unpaid, paid, older], "paid_date", descending=False)
    desc = queries.sort_payments([unpaid, paid, older], "paid_date", descending=True)

    assert [p.id for p in asc] == ["older", "paid", "unpaid"]
    assert [p.id for p in desc] == ["paid", "older", "unpaid"]


def test_sort_by_plan_name(make_payment):
    plans = [Plan("x", "Zeta", 1.0, 1), Plan("y", "Alpha", 1.0, 1)]
    payments = [make_payment("a", plan_id="x"), make_payment("b", plan_id="y")]
    assert [p.id for p in queries.sort_payments(payments, "plan_name", descending=False, plans=plans)] == ["b", "a"]


def test_filter_expenses():
    expenses = [
        Expense("1", "Space rent", 1200.0, date(2024, 5, 1), ExpenseCategory.RENT, ExpenseStatus.PAID),
        Expense("2", "Ads", 200.0, date(2024, 6, 1), ExpenseCategory.MARKETING, ExpenseStatus.PENDING),
    ]
    assert [e.id for e in queries.filter_expenses(expenses, "rent")] == ["1"]
    assert [e.id for e in queries.filter_expenses(expenses, "marketing")] == ["2"]
    assert [e.id for e in queries.filter_expenses(expenses, start=date(2024, 5, 15))] == ["2"]

    summary = queries.expense_summary(expenses)
    assert summary == {"total": 1400.0, "paid": 1200.0, "pending": 200.0}


def test_payment_kpis(make_payment):
    payments = [
        make_payment("a", status=PaymentStatus.PAID, amount=30),
        make_payment("b", status=PaymentStatus.PAID, amount=20),
        make_payment("c", status=PaymentStatus.OVERDUE, amount=15),
    ]
    kpis = queries.payment_kpis(payments)
    assert kpis["paid"] == {"total": 50.0, "count": 2}
    assert kpis["pending"] == {"total": 0.0, "count": 0}
    assert kpis["overdue"]["count"] == 1


def test_dashboard_summary_period(make_member, make_payment):
    members = [make_member("new", join=date(2024, 5, 3)), make_member("old", join=date(2023, 1, 1))]
    payments = [
        make_payment("a", due=date(2024, 5, 5), status=PaymentStatus.PAID, amount=30),
        make_payment("b", due=date(2024, 5, 6), status=PaymentStatus.OVERDUE, amount=30),
        make_payment("c", due=date(2024, 4, 5), status=PaymentStatus.PAID, amount=99),
    ]
    expenses = [Expense("e", "Rent", 100.0, date(2024, 5, 1), ExpenseCategory.RENT, ExpenseStatus.PAID)]

    summary = queries.dashboard_summary(members, payments, expenses, date(2024, 5, 1), date(2024, 5, 31))

    assert summary["revenue"] == 30
    assert summary["expenses"] == 100.0
    assert summary["new_members"] == 1
    assert summary["overdue"] == 1
    assert [p.id for p in summary["recent_payments"]] == ["b", "a"]


def test_plan_expiry(make_member, make_payment, monthly_plan):
    member = make_member()
    payments = [
        replace(make_payment("a", due=date(2024, 1, 15), status=PaymentStatus.PAID), paid_date=date(2024, 1, 14)),
        make_payment("b", due=date(2024, 2, 15)),
    ]
    assert queries.plan_expiry(member, monthly_plan, payments) == date(2024, 2, 14)
    assert queries.plan_expiry(make_member(status=MemberStatus.INACTIVE), monthly_plan, payments) is None
    assert queries.plan_expiry(member, monthly_plan, []) is None
