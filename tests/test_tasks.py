from datetime import date

import audit
import db
import tasks
from models import LogActionType, MemberStatus, PaymentStatus, User


def test_billing_tick_persists_and_audits(test_db, make_member, make_payment, monthly_plan):
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2024, 1, 15)))
    test_db.save_payment(make_payment(due=date(2024, 1, 15)))

    result = tasks.run_billing_tick(date(2024, 3, 20))

    assert result.updated_count == 1 and result.generated_count == 2
    stored = test_db.get_payments()
    assert [p.date for p in stored] == [date(2024, 3, 15), date(2024, 2, 15), date(2024, 1, 15)]
    assert all(p.status == PaymentStatus.OVERDUE for p in stored)

    entries = audit.recent(action=LogActionType.BILLING_RUN)
    assert len(entries) == 1
    assert entries[0].user_name == "System"
    assert entries[0].details.startswith("2 charge(s) generated.")


def test_billing_tick_without_changes_writes_nothing(test_db, make_member, make_payment, monthly_plan):
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2024, 3, 15)))
    test_db.save_payment(make_payment(due=date(2024, 3, 15), status=PaymentStatus.PAID))

    result = tasks.run_billing_tick(date(2024, 3, 20))

    assert not result.changed
    assert audit.recent(action=LogActionType.BILLING_RUN) == []


def test_billing_tick_records_actor(test_db, monthly_plan, make_member):
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2024, 1, 15)))
    actor = User("user1", "Admin", "admin@elite.com", "x", "role_admin")

    tasks.run_billing_tick(date(2024, 2, 15), actor=actor)

    assert audit.recent()[0].user_name == "Admin"


def test_billing_tick_respects_backfill_cap(test_db, monthly_plan, make_member, monkeypatch):
    monkeypatch.setattr(tasks.get_settings(), "max_backfill_cycles", 3)
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2020, 1, 15)))

    result = tasks.run_billing_tick(date(2024, 1, 20))

    assert result.generated_count == 3


def test_startup_runs_billing_before_reminders(test_db, monthly_plan, make_member):
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2024, 1, 15)))

    result, notes = tasks.startup(date(2024, 2, 15))

    # the charge generated for today is picked up by the on-due rule
    assert result.generated_count == 1
    assert [n.title for n in notes] == ["Payment due today"]


def test_seed_sample_data(test_db):
    tasks.seed_sample_data(date(2024, 6, 10))

    assert len(test_db.get_members()) == 5
    assert test_db.get_member("mem3").status == MemberStatus.PENDING
    assert test_db.get_member("mem1").password_hash
    assert test_db.get_member("mem4").password_hash is None
    assert audit.recent(action=LogActionType.IMPORT_DATA)[0].details == "Loaded sample data."


def test_billing_tick_keeps_writes_that_land_after_it_loads(test_db, make_member, make_payment, monthly_plan, monkeypatch):
    test_db.save_plan(monthly_plan)
    test_db.save_member(make_member(join=date(2024, 1, 15)))
    test_db.save_payment(make_payment("first", due=date(2024, 1, 15)))
    load = db.load_billing_state

    def load_then_other_session_writes(conn):
        state = load(conn)
        # another session registers a payment and confirms "first" after the snapshot was taken
        conn.execute(db.PAYMENT_UPSERT, db._payment_params(
            make_payment("manual", due=date(2024, 3, 1), status=PaymentStatus.PAID)))
        conn.execute("UPDATE payments SET status = 'Paid' WHERE id = 'first'")
        return state

    monkeypatch.setattr(db, "load_billing_state", load_then_other_session_writes)

    tasks.run_billing_tick(date(2024, 3, 20))

    stored = {p.id: p for p in test_db.get_payments()}
    assert "manual" in stored
    assert stored["first"].status == PaymentStatus.PAID
    assert len(stored) == 4


def test_confirm_payment_from_portal_is_audited(test_db, make_member, make_payment):
    test_db.save_member(make_member(status=MemberStatus.PENDING))
    overdue = make_payment(status=PaymentStatus.OVERDUE)
    test_db.save_payment(overdue)

    paid = tasks.confirm_payment(overdue, method="pix", paid_on=date(2024, 2, 1))

    assert test_db.get_payments()[0] == paid
    assert paid.status == PaymentStatus.PAID and paid.method == "pix"
    assert test_db.get_member("m1").status == MemberStatus.ACTIVE
    entry = audit.recent(action=LogActionType.UPDATE_PAYMENT)[0]
    assert entry.user_name == "System"
    assert '"Member m1" via member portal' in entry.details


def test_confirm_payment_by_staff_names_the_actor(test_db, make_member, make_payment):
    test_db.save_member(make_member())
    actor = User("user1", "Admin", "admin@elite.com", "x", "role_admin")

    tasks.confirm_payment(make_payment(), actor=actor)

    entry = audit.recent(action=LogActionType.UPDATE_PAYMENT)[0]
    assert entry.user_name == "Admin"
    assert "via member portal" not in entry.details
