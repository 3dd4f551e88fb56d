from __future__ import annotations

import csv
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.models.user import User


def _json_safe(value: Any) -> Any:
    if hasattr(value, "value"):
        value = value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def snapshot_model(obj: Any | None) -> dict | None:
    if obj is None:
        return None
    data: dict[str, Any] = {}
    mapper = inspect(obj).mapper
    for column in mapper.columns:
        key = column.key
        data[key] = _json_safe(getattr(obj, key))
    return data


def log_event(
    db: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str,
    entity_id: str,
    before_obj: Any | None = None,
    after_obj: Any | None = None,
    before_data: dict | None = None,
    after_data: dict | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_user_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        request_id=request_id,
        ip_address=ip_address,
        before_json=before_data if before_data is not None else snapshot_model(before_obj),
        after_json=after_data if after_data is not None else snapshot_model(after_obj),
    )
    db.add(entry)
    return entry


def export_audit_csv(entries: list[AuditLog]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        ["created_at", "actor_email", "action", "entity_type", "entity_id", "request_id", "ip_address"]
    )
    for entry in entries:
        writer.writerow(
            [
                entry.created_at.isoformat() if entry.created_at else "",
                entry.actor_email or "",
                entry.action,
                entry.entity_type,
                entry.entity_id,
                entry.request_id or "",
                entry.ip_address or "",
            ]
        )
    return buffer.getvalue()
