"""
Identity resolution.

Authentication happens upstream: the gateway in front of this API verifies
the caller and forwards the user id in the X-User-Id header. Here that id is
resolved against the users table into a Principal.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from fastapi import Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from database import get_db
from errors import AuthenticationError, WorkflowFailure
from models import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER


def resolve_principal(db: Session, user_id: Optional[str]) -> Principal:
    """Map a forwarded user id to a Principal. Raises AuthenticationError if unknown."""
    if not user_id or not user_id.strip():
        raise AuthenticationError("Authentication required")

    try:
        user = crud.get_user(db, user_id.strip())
    except SQLAlchemyError as e:
        logger.exception("User lookup failed")
        raise WorkflowFailure() from e
    if user is None:
        logger.info("Rejected unknown user id %r", user_id)
        raise AuthenticationError("Unknown user")
    return Principal(id=user.id, role=Role(user.role))


def get_current_principal(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Principal:
    return resolve_principal(db, x_user_id)
