from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, require_permission
from app.models.patient import Patient, PatientStatus
from app.models.permission import Permission
from app.models.user import User
from app.schemas.patient import PatientCreate, PatientOut, PatientStatusUpdate, PatientUpdate
from app.services.audit import log_event, snapshot_model
from app.services.patients import PatientCodeConflict, ensure_code_available, normalize_code

router = APIRouter(prefix="/patients", tags=["patients"])


def get_patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return patient


@router.get("", response_model=list[PatientOut])
def list_patients(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.patients_read)),
    q: str | None = Query(default=None),
    status_filter: PatientStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    stmt = select(Patient).order_by(Patient.first_surname, Patient.first_name, Patient.id)
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(
            or_(
                Patient.code.ilike(like),
                Patient.first_name.ilike(like),
                Patient.second_name.ilike(like),
                Patient.first_surname.ilike(like),
                Patient.second_surname.ilike(like),
            )
        )
    if status_filter:
        stmt = stmt.where(Patient.status == status_filter)
    stmt = stmt.limit(limit).offset(offset)
    return list(db.scalars(stmt))


@router.post("", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
def create_patient(
    payload: PatientCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.patients_create)),
    request_id: str | None = Header(default=None),
):
    try:
        ensure_code_available(db, payload.code)
    except PatientCodeConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    patient = Patient(
        code=normalize_code(payload.code),
        first_name=payload.first_name,
        second_name=payload.second_name or None,
        first_surname=payload.first_surname,
        second_surname=payload.second_surname or None,
        status=payload.status,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    db.add(patient)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(PatientCodeConflict(payload.code)),
        )
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="patient",
        entity_id=str(patient.id),
        after_obj=patient,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(patient)
    return patient


@router.get("/{patient_id}", response_model=PatientOut)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.patients_read)),
):
    return get_patient_or_404(db, patient_id)


@router.patch("/{patient_id}", response_model=PatientOut)
def update_patient(
    patient_id: int,
    payload: PatientUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.patients_update)),
    request_id: str | None = Header(default=None),
):
    patient = get_patient_or_404(db, patient_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("code") is not None:
        try:
            ensure_code_available(db, changes["code"], exclude_id=patient.id)
        except PatientCodeConflict as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
        changes["code"] = normalize_code(changes["code"])
    for field in ("code", "first_name", "first_surname", "status"):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{field} cannot be null")

    before_data = snapshot_model(patient)
    for field, value in changes.items():
        if field in ("second_name", "second_surname"):
            value = value or None
        setattr(patient, field, value)
    patient.updated_by_user_id = user.id
    patient.updated_at = datetime.now(timezone.utc)
    db.add(patient)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="patient",
        entity_id=str(patient.id),
        before_data=before_data,
        after_obj=patient,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(patient)
    return patient


@router.post("/{patient_id}/status", response_model=PatientOut)
def set_patient_status(
    patient_id: int,
    payload: PatientStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.patients_update)),
    request_id: str | None = Header(default=None),
):
    patient = get_patient_or_404(db, patient_id)
    if patient.status == payload.status:
        return patient
    before_status = patient.status
    patient.status = payload.status
    patient.updated_by_user_id = user.id
    patient.updated_at = datetime.now(timezone.utc)
    db.add(patient)
    log_event(
        db,
        actor=user,
        action="status_change",
        entity_type="patient",
        entity_id=str(patient.id),
        before_data={"status": before_status.value},
        after_data={"status": payload.status.value},
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(patient)
    return patient
