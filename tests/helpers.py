"""Shared helpers for the test modules."""

import uuid
from io import BytesIO

from PIL import Image

from api.models import User
from utils.database import get_session


def unique_name(prefix: str = "t") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def create_user(role: str = "user") -> User:
    with get_session() as session:
        user = User(email=f"user{uuid.uuid4().hex[:8]}@example.com", role=role)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user


def auth(user: User) -> dict:
    return {"X-User-Id": str(user.id)}


def png_bytes(size=(40, 30), color=(200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, "PNG")
    return buffer.getvalue()
