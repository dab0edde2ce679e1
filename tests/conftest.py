from datetime import date

import pytest

import auth
import db
from models import Member, MemberStatus, Payment, PaymentStatus, Plan


@pytest.fixture()
def test_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test_gym.db")
    db.init_db(auth.hash_password("admin123", rounds=4))
    yield db


@pytest.fixture()
def monthly_plan():
    return Plan("plan-m", "Monthly", 30.0, 1)


@pytest.fixture()
def make_member():
    def _make(member_id="m1", join=date(2024, 1, 15), plan_id="plan-m", status=MemberStatus.ACTIVE):
        return Member(member_id, f"Member {member_id}", f"{member_id}@example.com", join, plan_id, status)
    return _make


@pytest.fixture()
def make_payment():
    def _make(pid="p1", member_id="m1", due=date(2024, 1, 15), status=PaymentStatus.PENDING,
              amount=30.0, plan_id="plan-m"):
        return Payment(pid, member_id, plan_id, amount, due, status)
    return _make
