"""Per-user session settings.

Explicit load/save points for the state a browser client would otherwise keep
in local storage: the sidebar flag and the role being impersonated.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.preference import UserPreference
from app.models.user import Role, User


class ImpersonationError(ValueError):
    pass


def load_preferences(db: Session, user: User) -> UserPreference:
    prefs = db.get(UserPreference, user.id)
    if prefs is None:
        prefs = UserPreference(user_id=user.id, sidebar_collapsed=False)
    return prefs


def save_preferences(
    db: Session, user: User, *, sidebar_collapsed: bool | None = None
) -> UserPreference:
    prefs = load_preferences(db, user)
    if sidebar_collapsed is not None:
        prefs.sidebar_collapsed = sidebar_collapsed
    prefs.updated_at = datetime.now(timezone.utc)
    db.add(prefs)
    db.flush()
    return prefs


def start_impersonation(db: Session, user: User, role: Role) -> UserPreference:
    if role == user.role:
        raise ImpersonationError("Cannot impersonate your own role")
    prefs = load_preferences(db, user)
    if prefs.impersonating_role is not None:
        raise ImpersonationError(f"Already impersonating {prefs.impersonating_role.value}")
    prefs.impersonating_role = role
    prefs.impersonation_started_at = datetime.now(timezone.utc)
    db.add(prefs)
    db.flush()
    return prefs


def stop_impersonation(db: Session, user: User) -> Role | None:
    """Clear impersonation state. Returns the role that was impersonated."""
    prefs = db.get(UserPreference, user.id)
    if prefs is None or prefs.impersonating_role is None:
        return None
    previous = prefs.impersonating_role
    prefs.impersonating_role = None
    prefs.impersonation_started_at = None
    db.add(prefs)
    db.flush()
    return previous
