"""Opaque token sessions.

A successful login stores a fresh random token on the user row; every
authenticated request sends it back in the ``Authorization`` header
(``Bearer <token>`` or ``Token <token>``, only the last part is read).
Logging out clears the stored token.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lending import crud, models
from lending.exceptions import DatabaseError, ForbiddenError, UnauthorizedError
from lending.permissions import Operation, is_allowed
from lending.storage import get_db

logger = logging.getLogger(__name__)


def generate_token(db: Session) -> str:
    while True:
        token = secrets.token_hex(32)
        taken = (
            db.query(models.User.id).filter(models.User.auth_token == token).first()
        )
        if taken is None:
            return token


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    user = crud.find_user_by_email(db, email)
    if user is None or not crud.verify_password(password, user.hashed_password):
        return None
    return user


def regenerate_token(db: Session, user: models.User) -> str:
    try:
        user.auth_token = generate_token(db)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("login", str(e))
    logger.info(f"Issued session token for user {user.id}")
    return user.auth_token


def invalidate_token(db: Session, user: models.User) -> None:
    try:
        user.auth_token = None
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("logout", str(e))
    logger.info(f"Revoked session token for user {user.id}")


def token_from_header(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    return parts[-1] if parts else None


def get_current_user(
    authorization: Optional[str] = Header(None), db: Session = Depends(get_db)
) -> models.User:
    token = token_from_header(authorization)
    if not token:
        raise UnauthorizedError()
    user = db.query(models.User).filter(models.User.auth_token == token).first()
    if user is None:
        raise UnauthorizedError()
    return user


def require(operation: Operation):
    """Dependency factory that admits only callers allowed to run ``operation``."""

    def dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if not is_allowed(current_user.role_names, operation):
            logger.info(f"User {current_user.id} denied {operation.value}")
            raise ForbiddenError()
        return current_user

    return dependency
