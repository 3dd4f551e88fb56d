from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class Permission(str, enum.Enum):
    patients_create = "patients:create"
    patients_read = "patients:read"
    patients_update = "patients:update"
    expenses_create = "expenses:create"
    expenses_read = "expenses:read"
    expenses_update = "expenses:update"
    expenses_delete = "expenses:delete"
    trials_create = "trials:create"
    trials_read = "trials:read"
    trials_update = "trials:update"
    trials_delete = "trials:delete"
    trial_services_read = "trial_services:read"
    trial_services_manage = "trial_services:manage"
    service_allocations_read = "service_allocations:read"
    service_allocations_manage = "service_allocations:manage"
    reports_read = "reports:read"
    reports_export = "reports:export"
    users_create = "users:create"
    users_read = "users:read"
    users_update = "users:update"
    permissions_read = "permissions:read"
    permissions_grant = "permissions:grant"
    permissions_revoke = "permissions:revoke"
    audit_read = "audit:read"
    impersonation_use = "impersonation:use"


class UserPermission(Base):
    __tablename__ = "user_permissions"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    permission: Mapped[Permission] = mapped_column(
        Enum(Permission, name="permission_enum", values_callable=lambda e: [m.value for m in e]),
        primary_key=True,
    )
    granted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
