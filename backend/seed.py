"""
Create demo users so the API can be exercised locally.

    python seed.py

Prints the user ids to pass as X-User-Id (or USER_ID for the Streamlit app).
"""

import logging

from sqlalchemy.orm import Session

import crud
from database import SessionLocal, init_db
from logging_config import setup_logging
from models import Role, User

logger = logging.getLogger(__name__)

DEMO_USERS = (
    ("Alice Employee", "alice@example.com", Role.EMPLOYEE),
    ("Bob Employee", "bob@example.com", Role.EMPLOYEE),
    ("Maya Manager", "maya@example.com", Role.MANAGER),
)


def seed_demo_users(db: Session) -> list[User]:
    """Create the demo users that don't exist yet. Safe to run repeatedly."""
    users = []
    for name, email, role in DEMO_USERS:
        user = crud.get_user_by_email(db, email)
        if user is None:
            user = crud.create_user(db, name=name, email=email, role=role)
            logger.info("Created %s user %s", role.value, email)
        users.append(user)
    return users


def main():
    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        for user in seed_demo_users(db):
            print(f"{user.role.value:<9} {user.email:<20} {user.id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
