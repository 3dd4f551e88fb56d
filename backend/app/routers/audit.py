from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import require_permission
from app.models.audit_log import AuditLog
from app.models.permission import Permission
from app.models.user import User
from app.schemas.audit_log import AuditLogOut
from app.services.audit import export_audit_csv

router = APIRouter(prefix="/audit", tags=["audit"])


def _filtered(
    entity_type: str | None,
    entity_id: str | None,
    action: str | None,
    days: int | None,
):
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if days:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        stmt = stmt.where(AuditLog.created_at >= since)
    return stmt


@router.get("", response_model=list[AuditLogOut])
def list_audit(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.audit_read)),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    days: int | None = Query(default=None, ge=1, le=3650),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    stmt = _filtered(entity_type, entity_id, action, days).limit(limit).offset(offset)
    return list(db.scalars(stmt))


@router.get("/export.csv")
def export_audit(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.audit_read)),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    days: int | None = Query(default=None, ge=1, le=3650),
):
    entries = list(db.scalars(_filtered(entity_type, entity_id, action, days)))
    filename = f"audit_{date.today().isoformat()}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=export_audit_csv(entries), media_type="text/csv", headers=headers)
