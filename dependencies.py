from collections.abc import Generator
from typing import Optional

from fastapi import Header
from sqlalchemy.orm import Session

import errors
from db import SessionLocal
from models import Actor, Role


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    # identity is asserted by the fronting auth proxy; we only read it
    if not x_user_id or not x_user_id.strip():
        raise errors.AuthenticationError("missing X-User-Id header")
    try:
        role = Role((x_user_role or "").strip().upper())
    except ValueError:
        raise errors.AuthenticationError("missing or unknown X-User-Role header") from None
    return Actor(user_id=x_user_id.strip(), role=role)
