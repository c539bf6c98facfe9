from collections.abc import Generator
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from db import SessionLocal
from errors import Unauthorized
from models import Actor, Role


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity travels with every request; nothing is kept server-side between calls."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise Unauthorized("X-User-Id header is required")
    role = (x_user_role or Role.VIEWER.value).strip().upper()
    if role not in Role.__members__:
        raise Unauthorized(f"unknown role {x_user_role!r}")
    return Actor(user_id=user_id, role=Role(role))


def require_processor(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_processor:
        raise Unauthorized("only ADMIN or STAFF may process borrow requests")
    return actor
