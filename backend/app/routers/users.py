from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, require_permission
from app.models.permission import Permission
from app.models.user import Role, User
from app.schemas.permission import PermissionChange
from app.schemas.user import UserCreate, UserOut, UserPermissionsOut, UserUpdate
from app.services.audit import log_event
from app.services.permissions import (
    ROLE_PERMISSIONS,
    effective_permissions,
    get_custom_permissions,
    grant_permission,
    revoke_permission,
)
from app.services.users import apply_user_changes, create_user, get_user_by_email, get_user_by_id

router = APIRouter(prefix="/users", tags=["users"])


def _sorted(permissions) -> list[Permission]:
    return sorted(permissions, key=lambda permission: permission.value)


def get_user_or_404(db: Session, user_id: int) -> User:
    user = get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _permissions_payload(db: Session, user: User) -> UserPermissionsOut:
    return UserPermissionsOut(
        user_id=user.id,
        role=user.role,
        role_permissions=_sorted(ROLE_PERMISSIONS[user.role]),
        custom_permissions=_sorted(get_custom_permissions(db, user.id)),
        effective_permissions=_sorted(effective_permissions(db, user)),
    )


@router.get("", response_model=list[UserOut])
def list_users(
    db: Session = Depends(get_db),
    _=Depends(require_permission(Permission.users_read)),
    q: str | None = Query(default=None),
):
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(User.email.ilike(like), User.full_name.ilike(like)))
    return list(db.scalars(stmt))


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def add_user(
    payload: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Permission.users_create)),
    request_id: str | None = Header(default=None),
):
    if get_user_by_email(db, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")
    user = create_user(
        db,
        email=payload.email,
        password=payload.temp_password,
        full_name=payload.full_name,
        role=payload.role,
    )
    log_event(
        db,
        actor=admin,
        action="user.created",
        entity_type="user",
        entity_id=str(user.id),
        after_data={"email": user.email, "role": user.role.value},
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(user)
    return user


@router.get("/roles", response_model=list[str])
def list_roles(_=Depends(require_permission(Permission.users_read))):
    return [role.value for role in Role]


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Permission.users_read)),
):
    return get_user_or_404(db, user_id)


@router.patch("/{user_id}", response_model=UserOut)
def patch_user(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Permission.users_update)),
    request_id: str | None = Header(default=None),
):
    user = get_user_or_404(db, user_id)
    if user.id == admin.id and payload.is_active is False:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deactivate yourself")
    changes = apply_user_changes(
        user,
        full_name=payload.full_name,
        role=payload.role,
        is_active=payload.is_active,
    )
    if "role" in changes:
        before, after = changes["role"]
        log_event(
            db,
            actor=admin,
            action="role_change",
            entity_type="user",
            entity_id=str(user.id),
            before_data={"role": before.value},
            after_data={"role": after.value},
            request_id=request_id,
            ip_address=client_ip(request),
        )
    if "is_active" in changes:
        before, after = changes["is_active"]
        log_event(
            db,
            actor=admin,
            action="user.status_changed",
            entity_type="user",
            entity_id=str(user.id),
            before_data={"is_active": before},
            after_data={"is_active": after},
            request_id=request_id,
            ip_address=client_ip(request),
        )
    db.commit()
    db.refresh(user)
    return user


@router.get("/{user_id}/permissions", response_model=UserPermissionsOut)
def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Permission.permissions_read)),
):
    user = get_user_or_404(db, user_id)
    return _permissions_payload(db, user)


@router.post("/{user_id}/permissions", response_model=UserPermissionsOut)
def grant_user_permission(
    user_id: int,
    payload: PermissionChange,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Permission.permissions_grant)),
    request_id: str | None = Header(default=None),
):
    user = get_user_or_404(db, user_id)
    if grant_permission(db, user=user, permission=payload.permission, granted_by=admin):
        log_event(
            db,
            actor=admin,
            action="grant",
            entity_type="user",
            entity_id=str(user.id),
            after_data={"permission": payload.permission.value},
            request_id=request_id,
            ip_address=client_ip(request),
        )
        db.commit()
    return _permissions_payload(db, user)


@router.delete("/{user_id}/permissions/{permission}", response_model=UserPermissionsOut)
def revoke_user_permission(
    user_id: int,
    permission: Permission,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Permission.permissions_revoke)),
    request_id: str | None = Header(default=None),
):
    user = get_user_or_404(db, user_id)
    if not revoke_permission(db, user=user, permission=permission):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Permission is not a custom grant for this user",
        )
    log_event(
        db,
        actor=admin,
        action="revoke",
        entity_type="user",
        entity_id=str(user.id),
        before_data={"permission": permission.value},
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    return _permissions_payload(db, user)
