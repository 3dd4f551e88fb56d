from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import client_ip, require_permission
from app.models.permission import Permission
from app.models.user import User
from app.schemas.report import ExpenseSummaryOut
from app.services.audit import log_event
from app.services.reports import expense_summary, export_expenses_csv

router = APIRouter(prefix="/reports", tags=["reports"])


def _check_range(start: date | None, end: date | None) -> None:
    if start and end and end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must be on or after start",
        )


@router.get("/expenses/summary", response_model=ExpenseSummaryOut)
def expenses_summary(
    db: Session = Depends(get_db),
    _user: User = Depends(require_permission(Permission.reports_read)),
    trial_id: int | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
):
    _check_range(start, end)
    return expense_summary(db, trial_id=trial_id, start=start, end=end)


@router.get("/expenses.csv")
def expenses_csv(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Permission.reports_export)),
    trial_id: int | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    request_id: str | None = Header(default=None),
):
    _check_range(start, end)
    content, rows = export_expenses_csv(db, trial_id=trial_id, start=start, end=end)
    log_event(
        db,
        actor=user,
        action="reports.expenses.export_csv",
        entity_type="report",
        entity_id="expenses",
        after_data={
            "trial_id": trial_id,
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "rows": rows,
        },
        request_id=request_id,
        ip_address=client_ip(request),
    )
    db.commit()
    filename = f"expenses_{date.today().isoformat()}.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=content, media_type="text/csv", headers=headers)
