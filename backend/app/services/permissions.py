from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models.permission import Permission, UserPermission
from app.models.preference import UserPreference
from app.models.user import Role, User

PERMISSION_DESCRIPTIONS: dict[Permission, str] = {
    Permission.patients_create: "Create patients",
    Permission.patients_read: "View patients",
    Permission.patients_update: "Edit patients and change their status",
    Permission.expenses_create: "Submit patient expenses",
    Permission.expenses_read: "View patient expenses and receipts",
    Permission.expenses_update: "Edit submitted expenses",
    Permission.expenses_delete: "Delete submitted expenses",
    Permission.trials_create: "Create trials and visit types",
    Permission.trials_read: "View trials and visit schedules",
    Permission.trials_update: "Edit trials and visit types",
    Permission.trials_delete: "Delete trials and visit types",
    Permission.trial_services_read: "View trial fee schedules",
    Permission.trial_services_manage: "Manage trial fee schedules",
    Permission.service_allocations_read: "View investigator allocations",
    Permission.service_allocations_manage: "Manage investigator allocations",
    Permission.reports_read: "View expense reports",
    Permission.reports_export: "Export expense reports",
    Permission.users_create: "Create users",
    Permission.users_read: "View users",
    Permission.users_update: "Edit users, roles and account status",
    Permission.permissions_read: "View user permissions",
    Permission.permissions_grant: "Grant permissions to users",
    Permission.permissions_revoke: "Revoke permissions from users",
    Permission.audit_read: "View the audit log",
    Permission.impersonation_use: "View the application as another role",
}

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.admin: frozenset(Permission),
    Role.operator: frozenset(
        {
            Permission.patients_read,
            Permission.patients_create,
            Permission.expenses_read,
            Permission.expenses_create,
            Permission.expenses_update,
            Permission.trials_read,
        }
    ),
    Role.viewer: frozenset(
        {
            Permission.patients_read,
            Permission.expenses_read,
            Permission.trials_read,
            Permission.reports_read,
        }
    ),
}


def list_permissions() -> list[tuple[Permission, str]]:
    return sorted(PERMISSION_DESCRIPTIONS.items(), key=lambda item: item[0].value)


def get_custom_permissions(db: Session, user_id: int) -> set[Permission]:
    stmt = select(UserPermission.permission).where(UserPermission.user_id == user_id)
    return set(db.scalars(stmt))


def get_impersonated_role(db: Session, user_id: int) -> Role | None:
    return db.scalar(
        select(UserPreference.impersonating_role).where(UserPreference.user_id == user_id)
    )


def effective_role(db: Session, user: User) -> Role:
    return get_impersonated_role(db, user.id) or user.role


def effective_permissions(db: Session, user: User) -> set[Permission]:
    impersonated = get_impersonated_role(db, user.id)
    if impersonated is not None:
        return set(ROLE_PERMISSIONS[impersonated])
    return set(ROLE_PERMISSIONS[user.role]) | get_custom_permissions(db, user.id)


def has_permission(db: Session, user: User, permission: Permission) -> bool:
    if not isinstance(permission, Permission):
        raise TypeError(f"Expected Permission, got {type(permission).__name__}")
    if not user.is_active:
        return False
    return permission in effective_permissions(db, user)


def grant_permission(
    db: Session, *, user: User, permission: Permission, granted_by: User | None = None
) -> bool:
    """Grant a custom permission. Returns False when it was already granted."""
    existing = db.get(UserPermission, (user.id, permission))
    if existing:
        return False
    db.add(
        UserPermission(
            user_id=user.id,
            permission=permission,
            granted_by_user_id=granted_by.id if granted_by else None,
        )
    )
    db.flush()
    return True


def revoke_permission(db: Session, *, user: User, permission: Permission) -> bool:
    result = db.execute(
        delete(UserPermission).where(
            UserPermission.user_id == user.id,
            UserPermission.permission == permission,
        )
    )
    return bool(result.rowcount)
