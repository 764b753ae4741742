"""Tests for demo user seeding."""

from sqlalchemy import func, select

from models import Role, User
from seed import DEMO_USERS, seed_demo_users


def test_seed_is_idempotent(db):
    first = seed_demo_users(db)
    second = seed_demo_users(db)

    assert [u.id for u in first] == [u.id for u in second]
    assert db.scalar(select(func.count()).select_from(User)) == len(DEMO_USERS)
    assert {u.role for u in first} == {Role.EMPLOYEE, Role.MANAGER}
