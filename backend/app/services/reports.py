from __future__ import annotations

import csv
from datetime import date
from decimal import Decimal
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models.expense import ExpenseCategory, PatientExpense
from app.models.patient import Patient
from app.services.patients import format_patient_name


def _expense_stmt(*, trial_id: int | None, start: date | None, end: date | None):
    stmt = (
        select(PatientExpense)
        .options(
            selectinload(PatientExpense.items),
            selectinload(PatientExpense.trial),
            selectinload(PatientExpense.patient),
        )
        .order_by(PatientExpense.visit_date, PatientExpense.id)
    )
    if trial_id is not None:
        stmt = stmt.where(PatientExpense.trial_id == trial_id)
    if start is not None:
        stmt = stmt.where(PatientExpense.visit_date >= start)
    if end is not None:
        stmt = stmt.where(PatientExpense.visit_date <= end)
    return stmt


def expense_summary(
    db: Session,
    *,
    trial_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
) -> dict:
    expenses = list(db.scalars(_expense_stmt(trial_id=trial_id, start=start, end=end)))
    by_category: dict[str, Decimal] = {category.value: Decimal("0") for category in ExpenseCategory}
    by_trial: dict[int, dict] = {}
    grand_total = Decimal("0")
    for expense in expenses:
        trial_row = by_trial.setdefault(
            expense.trial_id,
            {
                "trial_id": expense.trial_id,
                "trial_name": expense.trial.name,
                "expense_count": 0,
                "patient_ids": set(),
                "total": Decimal("0"),
            },
        )
        trial_row["expense_count"] += 1
        trial_row["patient_ids"].add(expense.patient_id)
        for item in expense.items:
            by_category[item.category.value] += item.cost
            trial_row["total"] += item.cost
            grand_total += item.cost
    trials = []
    for row in sorted(by_trial.values(), key=lambda value: value["trial_name"]):
        patient_ids = row.pop("patient_ids")
        row["patient_count"] = len(patient_ids)
        trials.append(row)
    return {
        "expense_count": len(expenses),
        "total": grand_total,
        "by_category": by_category,
        "by_trial": trials,
    }


def export_expenses_csv(
    db: Session,
    *,
    trial_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
) -> tuple[str, int]:
    expenses = list(db.scalars(_expense_stmt(trial_id=trial_id, start=start, end=end)))
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            "expense_id",
            "patient_code",
            "patient_name",
            "trial",
            "visit",
            "visit_date",
            "category",
            "cost",
            "has_receipt",
        ]
    )
    rows = 0
    for expense in expenses:
        patient: Patient = expense.patient
        for item in expense.items:
            writer.writerow(
                [
                    expense.id,
                    patient.code,
                    format_patient_name(patient),
                    expense.trial.name,
                    expense.visit_type,
                    expense.visit_date.isoformat(),
                    item.category.value,
                    f"{item.cost:.2f}",
                    "yes" if item.receipt_key else "no",
                ]
            )
            rows += 1
    return buffer.getvalue(), rows
