from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, get_current_user, require_permission
from app.models.permission import Permission
from app.models.user import User
from app.schemas.preference import ImpersonationStart, PreferencesOut, PreferencesUpdate
from app.schemas.user import ProfileOut
from app.services.audit import log_event
from app.services.permissions import effective_permissions, effective_role, get_impersonated_role
from app.services.preferences import (
    ImpersonationError,
    load_preferences,
    save_preferences,
    start_impersonation,
    stop_impersonation,
)

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=ProfileOut)
def get_profile(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    impersonating = get_impersonated_role(db, user.id)
    return ProfileOut(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        effective_role=effective_role(db, user),
        impersonating_role=impersonating,
        is_active=user.is_active,
        must_change_password=user.must_change_password,
        last_login_at=user.last_login_at,
        effective_permissions=sorted(effective_permissions(db, user), key=lambda p: p.value),
    )


@router.get("/preferences", response_model=PreferencesOut)
def get_preferences(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return load_preferences(db, user)


@router.put("/preferences", response_model=PreferencesOut)
def update_preferences(
    payload: PreferencesUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    prefs = save_preferences(db, user, sidebar_collapsed=payload.sidebar_collapsed)
    db.commit()
    db.refresh(prefs)
    return prefs


@router.post("/impersonation", response_model=PreferencesOut)
def begin_impersonation(
    payload: ImpersonationStart,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.impersonation_use)),
    request_id: str | None = Header(default=None),
):
    try:
        prefs = start_impersonation(db, user, payload.role)
    except ImpersonationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    log_event(
        db,
        actor=user,
        action="impersonate",
        entity_type="user",
        entity_id=str(user.id),
        before_data={"role": user.role.value},
        after_data={"role": payload.role.value, "status": "start"},
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(prefs)
    return prefs


@router.delete("/impersonation", response_model=PreferencesOut)
def end_impersonation(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    request_id: str | None = Header(default=None),
):
    previous = stop_impersonation(db, user)
    if previous is not None:
        log_event(
            db,
            actor=user,
            action="impersonate",
            entity_type="user",
            entity_id=str(user.id),
            before_data={"role": previous.value},
            after_data={"role": user.role.value, "status": "end"},
            request_id=request_id,
            ip_address=client_ip(request),
        )
    db.commit()
    return load_preferences(db, user)
