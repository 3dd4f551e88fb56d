from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import require_permission
from app.models.permission import Permission
from app.models.user import User
from app.schemas.visit import CanRegisterVisitOut, EligibleVisitOut, EligibleVisitsOut
from app.services.visits import (
    InvalidVisitQuery,
    VisitLookupError,
    can_register_visit,
    configured_sequencing_mode,
    registrable_visit_names,
    resolve_eligible_visits,
)

router = APIRouter(prefix="/patients/{patient_id}/trials/{trial_id}/visits", tags=["visits"])


@router.get("", response_model=EligibleVisitsOut)
def list_eligible_visits(
    patient_id: int,
    trial_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.expenses_read)),
):
    mode = configured_sequencing_mode()
    try:
        visits = resolve_eligible_visits(db, patient_id, trial_id)
    except InvalidVisitQuery as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except VisitLookupError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    registrable = registrable_visit_names(visits, mode)
    return EligibleVisitsOut(
        patient_id=patient_id,
        trial_id=trial_id,
        sequencing=mode,
        visits=[
            EligibleVisitOut(
                id=visit.id,
                name=visit.name,
                order_number=visit.order_number,
                is_completed=visit.is_completed,
                is_registrable=visit.name in registrable,
            )
            for visit in visits
        ],
    )


@router.get("/can-register", response_model=CanRegisterVisitOut)
def check_visit_registration(
    patient_id: int,
    trial_id: int,
    visit: str = Query(...),
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.expenses_read)),
):
    try:
        allowed = can_register_visit(
            db, patient_id, trial_id, visit, mode=configured_sequencing_mode()
        )
    except InvalidVisitQuery as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except VisitLookupError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return CanRegisterVisitOut(visit=visit, can_register=allowed)
