from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.models.user import Role, User


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == normalize_email(email)))


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str = "",
    role: Role = Role.operator,
    must_change_password: bool = True,
) -> User:
    user = User(
        email=normalize_email(email),
        full_name=full_name.strip(),
        role=role,
        is_active=True,
        must_change_password=must_change_password,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.flush()
    return user


def seed_initial_admin(db: Session, *, email: str, password: str) -> User | None:
    """Create the first administrator on an empty users table."""
    if db.scalar(select(func.count(User.id))):
        return None
    admin = create_user(
        db,
        email=email,
        password=password,
        full_name="Administrator",
        role=Role.admin,
    )
    db.commit()
    return admin


def apply_user_changes(
    user: User,
    *,
    full_name: str | None = None,
    role: Role | None = None,
    is_active: bool | None = None,
) -> dict[str, tuple[Any, Any]]:
    """Apply the given fields and return ``{field: (before, after)}`` for those that changed."""
    changes: dict[str, tuple[Any, Any]] = {}
    for field, value in (("full_name", full_name), ("role", role), ("is_active", is_active)):
        if value is None:
            continue
        before = getattr(user, field)
        if before != value:
            setattr(user, field, value)
            changes[field] = (before, value)
    if changes:
        user.updated_at = datetime.now(timezone.utc)
    return changes


def set_password(user: User, new_password: str, *, must_change_password: bool = False) -> None:
    user.hashed_password = hash_password(new_password)
    user.must_change_password = must_change_password
    user.updated_at = datetime.now(timezone.utc)


def record_login(user: User) -> None:
    user.last_login_at = datetime.now(timezone.utc)
