"""Database seeding for the permit-to-work service.

Provisions user accounts: the first admin and, for demos and
acceptance environments, one approver per approver role.
"""

from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from ptw.core.lifecycle.states import UserRole
from ptw.db.models import User

# (email, full name, role) of the demo accounts
DEFAULT_USERS: Tuple[Tuple[str, str, UserRole], ...] = (
    ("admin@ptw.example.com", "PTW Administrator", UserRole.ADMIN),
    ("requester@ptw.example.com", "Default Requester", UserRole.REQUESTER),
    ("area.manager@ptw.example.com", "Default Area Manager", UserRole.AREA_MANAGER),
    ("safety.officer@ptw.example.com", "Default Safety Officer", UserRole.SAFETY_OFFICER),
    ("site.leader@ptw.example.com", "Default Site Leader", UserRole.SITE_LEADER),
)


def seed_user(
    db: Session,
    email: str,
    full_name: str,
    role: UserRole,
    *,
    is_active: bool = True,
) -> User:
    """
    Create a user unless one with the same email exists.

    Seeding is idempotent: an existing account is returned unchanged,
    even if its role differs.

    Args:
        db: Database session
        email: Login email, unique across users
        full_name: Display name
        role: Role the account is created with

    Returns:
        The new or existing user
    """
    email = email.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        return existing

    user = User(email=email, full_name=full_name, role=role.value, is_active=is_active)
    db.add(user)
    db.flush()
    return user


def seed_users(
    db: Session,
    users: Optional[Iterable[Tuple[str, str, UserRole]]] = None,
) -> Dict[str, User]:
    """Seed several users; returns them keyed by email."""
    seeded = {}
    for email, full_name, role in users if users is not None else DEFAULT_USERS:
        user = seed_user(db, email, full_name, role)
        seeded[user.email] = user
    return seeded


# CLI script for seeding
if __name__ == "__main__":
    import sys
    from ptw.db.session import SessionLocal, engine, init_db

    init_db(engine)
    db = SessionLocal()
    try:
        users = seed_users(db)
        db.commit()
        print(f"Seeded {len(users)} users:")
        for user in users.values():
            print(f"  - {user.email}: {user.role} (ID: {user.id})")
        print("\nSeeding complete!")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()
