"""Tests for user seeding."""

from ptw.core.lifecycle.states import UserRole
from ptw.db.models import User
from ptw.db.seed import DEFAULT_USERS, seed_user, seed_users


class TestSeedUsers:
    """Idempotent account provisioning."""

    def test_default_accounts(self, session_factory, read_db):
        with session_factory() as db:
            users = seed_users(db)
            db.commit()

        assert len(users) == len(DEFAULT_USERS)
        roles = read_db(lambda db: sorted(u.role for u in db.query(User)))
        assert roles == sorted(role.value for _, _, role in DEFAULT_USERS)

    def test_seeding_twice_keeps_one_account(self, session_factory, read_db):
        with session_factory() as db:
            first = seed_user(db, "Lead@Example.com", "Lee Leader", UserRole.SITE_LEADER)
            second = seed_user(db, "lead@example.com", "Someone Else", UserRole.REQUESTER)

            assert first is second
            assert second.email == "lead@example.com"
            assert second.role == UserRole.SITE_LEADER.value
            db.commit()

        assert read_db(lambda db: db.query(User).count()) == 1
