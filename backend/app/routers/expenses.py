import mimetypes
from decimal import Decimal

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.db.session import get_db
from app.deps import client_ip, require_permission
from app.models.expense import ExpenseCategory, ExpenseItem, PatientExpense
from app.models.patient import Patient
from app.models.permission import Permission
from app.models.trial import Trial, VisitType
from app.models.user import User
from app.schemas.expense import (
    ExpenseCreate,
    ExpenseOut,
    ExpenseUpdate,
    PatientExpenseListOut,
    ReceiptUploadOut,
)
from app.services import storage
from app.services.audit import log_event, snapshot_model
from app.services.expenses import (
    InvalidReceiptKey,
    VisitNotRegistrable,
    create_expense,
    delete_expense,
    expense_payload,
    get_expense,
    list_patient_expenses,
    replace_expense,
)
from app.services.visits import InvalidVisitQuery, VisitLookupError, configured_sequencing_mode

router = APIRouter(prefix="/expenses", tags=["expenses"])
patient_router = APIRouter(prefix="/patients/{patient_id}/expenses", tags=["expenses"])


def get_expense_or_404(db: Session, expense_id: int) -> PatientExpense:
    expense = get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    return expense


def _require_patient(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return patient


def _require_trial(db: Session, trial_id: int) -> Trial:
    trial = db.get(Trial, trial_id)
    if not trial:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trial not found")
    return trial


def _expense_snapshot(expense: PatientExpense) -> dict:
    data = snapshot_model(expense)
    data["items"] = [snapshot_model(item) for item in expense.items]
    return data


def _remove_receipts(keys: list[str]) -> None:
    for key in keys:
        try:
            storage.delete_file(key)
        except ValueError:
            continue


def _submission_error(exc: Exception) -> HTTPException:
    if isinstance(exc, VisitNotRegistrable):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (InvalidVisitQuery, InvalidReceiptKey)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.post("", response_model=ExpenseOut, status_code=status.HTTP_201_CREATED)
def submit_expense(
    payload: ExpenseCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.expenses_create)),
    request_id: str | None = Header(default=None),
):
    _require_patient(db, payload.patient_id)
    _require_trial(db, payload.trial_id)
    try:
        expense = create_expense(
            db,
            patient_id=payload.patient_id,
            trial_id=payload.trial_id,
            visit_type=payload.visit_type.strip(),
            visit_date=payload.visit_date,
            items=payload.items,
            actor=user,
            mode=configured_sequencing_mode(),
        )
    except (VisitNotRegistrable, InvalidReceiptKey, InvalidVisitQuery, VisitLookupError) as exc:
        raise _submission_error(exc)
    log_event(
        db,
        actor=user,
        action="create",
        entity_type="patient_expense",
        entity_id=str(expense.id),
        after_data=_expense_snapshot(expense),
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(expense)
    return expense_payload(expense)


@router.post("/receipts", response_model=ReceiptUploadOut, status_code=status.HTTP_201_CREATED)
def upload_receipt(
    request: Request,
    patient_id: int = Form(...),
    trial_id: int = Form(...),
    visit_type: str = Form(...),
    category: ExpenseCategory = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.expenses_create)),
    request_id: str | None = Header(default=None),
):
    patient = _require_patient(db, patient_id)
    trial = _require_trial(db, trial_id)
    visit_name = visit_type.strip()
    known = db.scalar(
        select(VisitType.id).where(VisitType.trial_id == trial.id, VisitType.name == visit_name)
    )
    if not known:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit type not found")
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filename required")

    prefix = storage.receipt_prefix(trial.name, patient.code, visit_name, category.value)
    try:
        receipt_key, byte_size = storage.save_receipt(
            file, prefix=prefix, max_bytes=settings.max_receipt_bytes
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(exc))
    except OSError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store receipt",
        )
    log_event(
        db,
        actor=user,
        action="receipt.uploaded",
        entity_type="patient",
        entity_id=str(patient.id),
        after_data={
            "receipt_key": receipt_key,
            "trial_id": trial.id,
            "visit_type": visit_name,
            "category": category.value,
            "content_type": file.content_type,
            "byte_size": byte_size,
        },
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    return ReceiptUploadOut(receipt_key=receipt_key, byte_size=byte_size)


@router.get("/{expense_id}", response_model=ExpenseOut)
def read_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.expenses_read)),
):
    return expense_payload(get_expense_or_404(db, expense_id))


@router.put("/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.expenses_update)),
    request_id: str | None = Header(default=None),
):
    expense = get_expense_or_404(db, expense_id)
    before_data = _expense_snapshot(expense)
    try:
        orphaned = replace_expense(
            db,
            expense,
            visit_type=payload.visit_type.strip(),
            visit_date=payload.visit_date,
            items=payload.items,
            actor=user,
            mode=configured_sequencing_mode(),
        )
    except (VisitNotRegistrable, InvalidReceiptKey, InvalidVisitQuery, VisitLookupError) as exc:
        raise _submission_error(exc)
    log_event(
        db,
        actor=user,
        action="update",
        entity_type="patient_expense",
        entity_id=str(expense.id),
        before_data=before_data,
        after_data=_expense_snapshot(expense),
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    _remove_receipts(orphaned)
    db.refresh(expense)
    return expense_payload(expense)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_expense(
    expense_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.expenses_delete)),
    request_id: str | None = Header(default=None),
):
    expense = get_expense_or_404(db, expense_id)
    before_data = _expense_snapshot(expense)
    receipt_keys = delete_expense(db, expense)
    log_event(
        db,
        actor=user,
        action="delete",
        entity_type="patient_expense",
        entity_id=str(expense_id),
        before_data=before_data,
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    _remove_receipts(receipt_keys)


@router.get("/{expense_id}/items/{item_id}/receipt")
def download_receipt(
    expense_id: int,
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.expenses_read)),
    request_id: str | None = Header(default=None),
):
    item = db.get(ExpenseItem, item_id)
    if not item or item.patient_expense_id != expense_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense item not found")
    if not item.receipt_key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No receipt for this item")
    try:
        handle = storage.open_file(item.receipt_key)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt file missing")
    filename = item.receipt_key.rsplit("/", 1)[-1]
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    log_event(
        db,
        actor=user,
        action="receipt.downloaded",
        entity_type="expense_item",
        entity_id=str(item.id),
        after_data={"patient_expense_id": expense_id, "receipt_key": item.receipt_key},
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    return StreamingResponse(
        handle,
        media_type=media_type,
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@patient_router.get("", response_model=PatientExpenseListOut)
def list_expenses_for_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.expenses_read)),
):
    _require_patient(db, patient_id)
    items = []
    for expense, visit_order in list_patient_expenses(db, patient_id):
        payload = expense_payload(expense)
        payload["trial_name"] = expense.trial.name
        payload["visit_order"] = visit_order
        items.append(payload)
    total = sum((item["total"] for item in items), Decimal("0"))
    return {"patient_id": patient_id, "items": items, "total": total}
