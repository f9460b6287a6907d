"""Caller identity for the HTTP API.

Authentication happens upstream; requests reach this service with the
authenticated user's id in the ``X-User-Id`` header. The dependency below
loads that user so routes receive a ``User`` instead of a raw header.

Copyright (c) Bryn Gwalad 2025
"""

from typing import Optional

from fastapi import Header

from api.models import User
from utils.database import get_session
from utils.errors import UnauthorizedError


def get_current_user(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> User:
    """Return the user named by ``X-User-Id`` or raise UnauthorizedError."""
    if not x_user_id or not x_user_id.strip().isdigit():
        raise UnauthorizedError("Authentication required")
    with get_session() as session:
        user = session.get(User, int(x_user_id))
        if user is None:
            raise UnauthorizedError("Unknown user")
        session.expunge(user)
    return user


def is_admin(user: User) -> bool:
    return user.role == "admin"
