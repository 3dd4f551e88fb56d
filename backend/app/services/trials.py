from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.trial import ServiceAllocation, TrialService, VisitType
from app.services.currency import format_money


class VisitTypeConflict(ValueError):
    pass


def next_visit_order(db: Session, trial_id: int) -> int:
    highest = db.scalar(
        select(func.max(VisitType.order_number)).where(VisitType.trial_id == trial_id)
    )
    return 1 if highest is None else int(highest) + 1


def ensure_visit_type_unique(
    db: Session,
    *,
    trial_id: int,
    name: str,
    order_number: int,
    exclude_id: int | None = None,
) -> None:
    stmt = select(VisitType).where(VisitType.trial_id == trial_id)
    if exclude_id is not None:
        stmt = stmt.where(VisitType.id != exclude_id)
    for existing in db.scalars(stmt):
        if existing.order_number == order_number:
            raise VisitTypeConflict(f"Order number {order_number} is already used in this trial")
        if existing.name == name:
            raise VisitTypeConflict(f"Visit '{name}' already exists in this trial")


def total_allocated(allocations: list[ServiceAllocation]) -> Decimal:
    return sum((allocation.amount for allocation in allocations), Decimal("0"))


def service_summary(service: TrialService) -> dict:
    allocated = total_allocated(service.allocations)
    return {
        "id": service.id,
        "trial_id": service.trial_id,
        "name": service.name,
        "amount": service.amount,
        "currency": service.currency,
        "created_at": service.created_at,
        "updated_at": service.updated_at,
        "allocations": list(service.allocations),
        "total_allocated": allocated,
        "amount_display": format_money(service.amount, service.currency),
        "total_allocated_display": format_money(allocated, service.currency),
    }
