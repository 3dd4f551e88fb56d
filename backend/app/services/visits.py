"""Visit eligibility for expense submissions.

A patient may submit one expense per (trial, visit type). The resolver lists
every visit type of a trial, in ``order_number`` order, flagged with whether
the patient already has a submission for it. Whether an uncompleted visit may
be registered depends on the sequencing mode:

* ``permissive``: any uncompleted visit is registrable.
* ``strict``: only the uncompleted visit with the lowest ``order_number``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.expense import PatientExpense
from app.models.trial import VisitType

logger = logging.getLogger("trial_expenses.visits")


class SequencingMode(str, enum.Enum):
    permissive = "permissive"
    strict = "strict"


class InvalidVisitQuery(ValueError):
    pass


class VisitLookupError(RuntimeError):
    pass


@dataclass(frozen=True)
class EligibleVisit:
    id: int
    name: str
    order_number: int
    is_completed: bool


def _require_id(value: object, label: str) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidVisitQuery(f"{label} is required")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise InvalidVisitQuery(f"{label} is required")
        if not (value.isascii() and value.isdigit()):
            raise InvalidVisitQuery(f"{label} must be a positive integer")
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise InvalidVisitQuery(f"{label} must be a positive integer")
    return value


def resolve_eligible_visits(db: Session, patient_id: int, trial_id: int) -> list[EligibleVisit]:
    patient_id = _require_id(patient_id, "patient_id")
    trial_id = _require_id(trial_id, "trial_id")
    try:
        visit_types = list(
            db.scalars(
                select(VisitType)
                .where(VisitType.trial_id == trial_id)
                .order_by(VisitType.order_number.asc())
            )
        )
        completed_names = set(
            db.scalars(
                select(PatientExpense.visit_type).where(
                    PatientExpense.patient_id == patient_id,
                    PatientExpense.trial_id == trial_id,
                )
            )
        )
    except SQLAlchemyError as exc:
        logger.exception(
            "Visit lookup failed for patient_id=%s trial_id=%s", patient_id, trial_id
        )
        raise VisitLookupError("Unable to load visits for this patient and trial") from exc

    return [
        EligibleVisit(
            id=visit_type.id,
            name=visit_type.name,
            order_number=visit_type.order_number,
            is_completed=visit_type.name in completed_names,
        )
        for visit_type in visit_types
    ]


def registrable_visit_names(
    visits: list[EligibleVisit], mode: SequencingMode = SequencingMode.permissive
) -> set[str]:
    pending = [visit for visit in visits if not visit.is_completed]
    if mode == SequencingMode.strict:
        if not pending:
            return set()
        first = min(pending, key=lambda visit: visit.order_number)
        return {first.name}
    return {visit.name for visit in pending}


def can_register_visit(
    db: Session,
    patient_id: int,
    trial_id: int,
    visit_name: str,
    *,
    mode: SequencingMode = SequencingMode.permissive,
) -> bool:
    if visit_name is None or not str(visit_name).strip():
        raise InvalidVisitQuery("visit name is required")
    visits = resolve_eligible_visits(db, patient_id, trial_id)
    return visit_name in registrable_visit_names(visits, mode)


def configured_sequencing_mode() -> SequencingMode:
    return SequencingMode(settings.visit_sequencing)
