from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.db.session import get_db
from app.deps import client_ip, require_permission
from app.models.expense import PatientExpense
from app.models.permission import Permission
from app.models.trial import ServiceAllocation, Trial, TrialService, VisitType
from app.models.user import User
from app.schemas.trial import (
    ServiceAllocationIn,
    ServiceAllocationOut,
    TrialCreate,
    TrialDetailOut,
    TrialOut,
    TrialServiceIn,
    TrialServiceOut,
    TrialUpdate,
    VisitTypeCreate,
    VisitTypeOut,
    VisitTypeUpdate,
)
from app.services.audit import log_event, snapshot_model
from app.services.trials import (
    VisitTypeConflict,
    ensure_visit_type_unique,
    next_visit_order,
    service_summary,
)

router = APIRouter(prefix="/trials", tags=["trials"])


def get_trial_or_404(db: Session, trial_id: int) -> Trial:
    trial = db.get(Trial, trial_id)
    if not trial:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trial not found")
    return trial


def get_visit_type_or_404(db: Session, trial_id: int, visit_type_id: int) -> VisitType:
    visit_type = db.get(VisitType, visit_type_id)
    if not visit_type or visit_type.trial_id != trial_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit type not found")
    return visit_type


def get_service_or_404(db: Session, trial_id: int, service_id: int) -> TrialService:
    service = db.get(TrialService, service_id)
    if not service or service.trial_id != trial_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service not found")
    return service


def get_allocation_or_404(db: Session, service: TrialService, allocation_id: int) -> ServiceAllocation:
    allocation = db.get(ServiceAllocation, allocation_id)
    if not allocation or allocation.trial_service_id != service.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Allocation not found")
    return allocation


def _count_expenses(db: Session, trial_id: int, visit_name: str | None = None) -> int:
    stmt = select(func.count(PatientExpense.id)).where(PatientExpense.trial_id == trial_id)
    if visit_name is not None:
        stmt = stmt.where(PatientExpense.visit_type == visit_name)
    return int(db.scalar(stmt) or 0)


@router.get("", response_model=list[TrialOut])
def list_trials(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.trials_read)),
    active: bool | None = Query(default=None),
    q: str | None = Query(default=None),
):
    stmt = select(Trial).order_by(Trial.name, Trial.id)
    if active is not None:
        stmt = stmt.where(Trial.active.is_(active))
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(Trial.name.ilike(like) | Trial.sponsor.ilike(like))
    return list(db.scalars(stmt))


@router.post("", response_model=TrialOut, status_code=status.HTTP_201_CREATED)
def create_trial(
    payload: TrialCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_create)),
    request_id: str | None = Header(default=None),
):
    trial = Trial(
        **payload.model_dump(),
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    db.add(trial)
    db.flush()
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="trial",
        entity_id=str(trial.id),
        after_obj=trial,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(trial)
    return trial


@router.get("/{trial_id}", response_model=TrialDetailOut)
def get_trial(
    trial_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.trials_read)),
):
    trial = db.scalar(
        select(Trial).options(selectinload(Trial.visit_types)).where(Trial.id == trial_id)
    )
    if not trial:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trial not found")
    return trial


@router.patch("/{trial_id}", response_model=TrialOut)
def update_trial(
    trial_id: int,
    payload: TrialUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_update)),
    request_id: str | None = Header(default=None),
):
    trial = get_trial_or_404(db, trial_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in ("name", "sponsor", "active"):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{field} cannot be null")
    start_date = changes.get("start_date", trial.start_date)
    end_date = changes.get("end_date", trial.end_date)
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must be on or after start_date",
        )
    before_data = snapshot_model(trial)
    for field, value in changes.items():
        setattr(trial, field, value)
    trial.updated_by_user_id = user.id
    trial.updated_at = datetime.now(timezone.utc)
    db.add(trial)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="trial",
        entity_id=str(trial.id),
        before_data=before_data,
        after_obj=trial,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(trial)
    return trial


@router.delete("/{trial_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_trial(
    trial_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_delete)),
    request_id: str | None = Header(default=None),
):
    trial = get_trial_or_404(db, trial_id)
    if _count_expenses(db, trial.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Trial has submitted expenses and cannot be deleted",
        )
    before_data = snapshot_model(trial)
    db.delete(trial)
    log_event(
        db,
        actor=user,
        action="delete",
        entity_type="trial",
        entity_id=str(trial_id),
        before_data=before_data,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()


@router.get("/{trial_id}/visit-types", response_model=list[VisitTypeOut])
def list_visit_types(
    trial_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.trials_read)),
):
    get_trial_or_404(db, trial_id)
    stmt = (
        select(VisitType)
        .where(VisitType.trial_id == trial_id)
        .order_by(VisitType.order_number.asc())
    )
    return list(db.scalars(stmt))


@router.get("/{trial_id}/visit-types/next-order")
def get_next_visit_order(
    trial_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.trials_read)),
):
    get_trial_or_404(db, trial_id)
    return {"trial_id": trial_id, "next_order_number": next_visit_order(db, trial_id)}


@router.post(
    "/{trial_id}/visit-types",
    response_model=VisitTypeOut,
    status_code=status.HTTP_201_CREATED,
)
def create_visit_type(
    trial_id: int,
    payload: VisitTypeCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_create)),
    request_id: str | None = Header(default=None),
):
    get_trial_or_404(db, trial_id)
    name = payload.name.strip()
    order_number = payload.order_number or next_visit_order(db, trial_id)
    try:
        ensure_visit_type_unique(db, trial_id=trial_id, name=name, order_number=order_number)
    except VisitTypeConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    visit_type = VisitType(
        trial_id=trial_id,
        name=name,
        order_number=order_number,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    db.add(visit_type)
    db.flush()
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="visit_type",
        entity_id=str(visit_type.id),
        after_obj=visit_type,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(visit_type)
    return visit_type


@router.patch("/{trial_id}/visit-types/{visit_type_id}", response_model=VisitTypeOut)
def update_visit_type(
    trial_id: int,
    visit_type_id: int,
    payload: VisitTypeUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_update)),
    request_id: str | None = Header(default=None),
):
    visit_type = get_visit_type_or_404(db, trial_id, visit_type_id)
    name = payload.name.strip() if payload.name else visit_type.name
    order_number = payload.order_number or visit_type.order_number
    try:
        ensure_visit_type_unique(
            db,
            trial_id=trial_id,
            name=name,
            order_number=order_number,
            exclude_id=visit_type.id,
        )
    except VisitTypeConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if name != visit_type.name and _count_expenses(db, trial_id, visit_type.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Visit has submitted expenses and cannot be renamed",
        )
    before_data = snapshot_model(visit_type)
    visit_type.name = name
    visit_type.order_number = order_number
    visit_type.updated_by_user_id = user.id
    db.add(visit_type)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="visit_type",
        entity_id=str(visit_type.id),
        before_data=before_data,
        after_obj=visit_type,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(visit_type)
    return visit_type


@router.delete("/{trial_id}/visit-types/{visit_type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_visit_type(
    trial_id: int,
    visit_type_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trials_delete)),
    request_id: str | None = Header(default=None),
):
    visit_type = get_visit_type_or_404(db, trial_id, visit_type_id)
    if _count_expenses(db, trial_id, visit_type.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Visit has submitted expenses and cannot be deleted",
        )
    before_data = snapshot_model(visit_type)
    db.delete(visit_type)
    log_event(
        db,
        actor=user,
        action="delete",
        entity_type="visit_type",
        entity_id=str(visit_type_id),
        before_data=before_data,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()


@router.get("/{trial_id}/services", response_model=list[TrialServiceOut])
def list_services(
    trial_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.trial_services_read)),
):
    get_trial_or_404(db, trial_id)
    services = db.scalars(
        select(TrialService)
        .options(selectinload(TrialService.allocations))
        .where(TrialService.trial_id == trial_id)
        .order_by(TrialService.id)
    )
    return [service_summary(service) for service in services]


@router.post(
    "/{trial_id}/services",
    response_model=TrialServiceOut,
    status_code=status.HTTP_201_CREATED,
)
def create_service(
    trial_id: int,
    payload: TrialServiceIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trial_services_manage)),
    request_id: str | None = Header(default=None),
):
    get_trial_or_404(db, trial_id)
    service = TrialService(
        trial_id=trial_id,
        name=payload.name.strip(),
        amount=payload.amount,
        currency=payload.currency,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    db.add(service)
    db.flush()
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="trial_service",
        entity_id=str(service.id),
        after_obj=service,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(service)
    return service_summary(service)


@router.put("/{trial_id}/services/{service_id}", response_model=TrialServiceOut)
def update_service(
    trial_id: int,
    service_id: int,
    payload: TrialServiceIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trial_services_manage)),
    request_id: str | None = Header(default=None),
):
    service = get_service_or_404(db, trial_id, service_id)
    before_data = snapshot_model(service)
    service.name = payload.name.strip()
    service.amount = payload.amount
    service.currency = payload.currency
    service.updated_by_user_id = user.id
    db.add(service)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="trial_service",
        entity_id=str(service.id),
        before_data=before_data,
        after_obj=service,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(service)
    return service_summary(service)


@router.delete("/{trial_id}/services/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(
    trial_id: int,
    service_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.trial_services_manage)),
    request_id: str | None = Header(default=None),
):
    service = get_service_or_404(db, trial_id, service_id)
    before_data = snapshot_model(service)
    before_data["allocation_ids"] = [allocation.id for allocation in service.allocations]
    db.delete(service)
    log_event(
        db,
        actor=user,
        action="delete",
        entity_type="trial_service",
        entity_id=str(service_id),
        before_data=before_data,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()


@router.post(
    "/{trial_id}/services/{service_id}/allocations",
    response_model=ServiceAllocationOut,
    status_code=status.HTTP_201_CREATED,
)
def create_allocation(
    trial_id: int,
    service_id: int,
    payload: ServiceAllocationIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.service_allocations_manage)),
    request_id: str | None = Header(default=None),
):
    service = get_service_or_404(db, trial_id, service_id)
    allocation = ServiceAllocation(
        trial_service_id=service.id,
        name=payload.name.strip(),
        amount=payload.amount,
        currency=payload.currency,
        allocation_type=payload.allocation_type,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    db.add(allocation)
    db.flush()
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="service_allocation",
        entity_id=str(allocation.id),
        after_obj=allocation,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(allocation)
    return allocation


@router.put(
    "/{trial_id}/services/{service_id}/allocations/{allocation_id}",
    response_model=ServiceAllocationOut,
)
def update_allocation(
    trial_id: int,
    service_id: int,
    allocation_id: int,
    payload: ServiceAllocationIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.service_allocations_manage)),
    request_id: str | None = Header(default=None),
):
    service = get_service_or_404(db, trial_id, service_id)
    allocation = get_allocation_or_404(db, service, allocation_id)
    before_data = snapshot_model(allocation)
    allocation.name = payload.name.strip()
    allocation.amount = payload.amount
    allocation.currency = payload.currency
    allocation.allocation_type = payload.allocation_type
    allocation.updated_by_user_id = user.id
    db.add(allocation)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="service_allocation",
        entity_id=str(allocation.id),
        before_data=before_data,
        after_obj=allocation,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(allocation)
    return allocation


@router.delete(
    "/{trial_id}/services/{service_id}/allocations/{allocation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_allocation(
    trial_id: int,
    service_id: int,
    allocation_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.service_allocations_manage)),
    request_id: str | None = Header(default=None),
):
    service = get_service_or_404(db, trial_id, service_id)
    allocation = get_allocation_or_404(db, service, allocation_id)
    before_data = snapshot_model(allocation)
    db.delete(allocation)
    log_event(
        db,
        actor=user,
        action="delete",
        entity_type="service_allocation",
        entity_id=str(allocation_id),
        before_data=before_data,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
