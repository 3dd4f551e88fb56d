from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Collection, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models.expense import ExpenseCategory, ExpenseItem, PatientExpense
from app.models.patient import Patient
from app.models.trial import Trial, VisitType
from app.models.user import User
from app.services import storage
from app.services.visits import SequencingMode, can_register_visit

logger = logging.getLogger("trial_expenses.expenses")

UNMATCHED_VISIT_ORDER = 999


class ExpenseItemInput(Protocol):
    category: ExpenseCategory
    cost: Decimal
    receipt_key: str | None


class VisitNotRegistrable(ValueError):
    def __init__(self, visit_name: str) -> None:
        super().__init__(
            f'Visit "{visit_name}" is already registered for this patient and trial, '
            "or is not eligible for registration."
        )
        self.visit_name = visit_name


class InvalidReceiptKey(ValueError):
    def __init__(self, receipt_key: str) -> None:
        super().__init__(f'Receipt "{receipt_key}" does not belong to this expense.')
        self.receipt_key = receipt_key


def collect_items(items: Iterable[ExpenseItemInput]) -> list[ExpenseItem]:
    """Keep lines that carry a receipt or a positive cost."""
    collected: list[ExpenseItem] = []
    for item in items:
        cost = item.cost if item.cost is not None else Decimal("0")
        receipt_key = (item.receipt_key or "").strip() or None
        if not receipt_key and cost <= 0:
            continue
        collected.append(
            ExpenseItem(category=item.category, receipt_key=receipt_key, cost=max(cost, Decimal("0")))
        )
    return collected


def check_receipt_keys(
    items: Iterable[ExpenseItem],
    *,
    trial: Trial,
    patient: Patient,
    visit_type: str,
    attached: Collection[str] = (),
) -> None:
    """Each receipt must live in the slot of its own trial, patient, visit and category.

    Keys in ``attached`` already belong to the expense and are accepted as is.
    """
    for item in items:
        if not item.receipt_key or item.receipt_key in attached:
            continue
        prefix = storage.receipt_prefix(trial.name, patient.code, visit_type, item.category.value)
        if not storage.key_in_slot(item.receipt_key, prefix):
            raise InvalidReceiptKey(item.receipt_key)


def unreferenced_receipt_keys(db: Session, keys: Iterable[str]) -> list[str]:
    """Filter out keys that some expense item still points at."""
    candidates = set(keys)
    if not candidates:
        return []
    still_used = set(
        db.scalars(select(ExpenseItem.receipt_key).where(ExpenseItem.receipt_key.in_(candidates)))
    )
    return sorted(candidates - still_used)


def expense_total(expense: PatientExpense) -> Decimal:
    return sum((item.cost or Decimal("0") for item in expense.items), Decimal("0"))


def create_expense(
    db: Session,
    *,
    patient_id: int,
    trial_id: int,
    visit_type: str,
    visit_date: date,
    items: Iterable[ExpenseItemInput],
    actor: User,
    mode: SequencingMode = SequencingMode.permissive,
) -> PatientExpense:
    if not can_register_visit(db, patient_id, trial_id, visit_type, mode=mode):
        raise VisitNotRegistrable(visit_type)
    collected = collect_items(items)
    check_receipt_keys(
        collected,
        trial=db.get(Trial, trial_id),
        patient=db.get(Patient, patient_id),
        visit_type=visit_type,
    )
    expense = PatientExpense(
        patient_id=patient_id,
        trial_id=trial_id,
        visit_type=visit_type,
        visit_date=visit_date,
        created_by_user_id=actor.id,
        updated_by_user_id=actor.id,
    )
    expense.items = collected
    db.add(expense)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(
            "Duplicate expense rejected patient_id=%s trial_id=%s visit=%s",
            patient_id,
            trial_id,
            visit_type,
        )
        raise VisitNotRegistrable(visit_type) from exc
    return expense


def replace_expense(
    db: Session,
    expense: PatientExpense,
    *,
    visit_type: str,
    visit_date: date,
    items: Iterable[ExpenseItemInput],
    actor: User,
    mode: SequencingMode = SequencingMode.permissive,
) -> list[str]:
    """Rewrite an expense and all of its items.

    Returns receipt keys that no expense item references any more.
    """
    if visit_type != expense.visit_type and not can_register_visit(
        db, expense.patient_id, expense.trial_id, visit_type, mode=mode
    ):
        raise VisitNotRegistrable(visit_type)
    old_keys = {item.receipt_key for item in expense.items if item.receipt_key}
    collected = collect_items(items)
    check_receipt_keys(
        collected,
        trial=db.get(Trial, expense.trial_id),
        patient=db.get(Patient, expense.patient_id),
        visit_type=visit_type,
        attached=old_keys,
    )
    expense.visit_type = visit_type
    expense.visit_date = visit_date
    expense.updated_by_user_id = actor.id
    expense.items.clear()
    db.flush()
    expense.items.extend(collected)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise VisitNotRegistrable(visit_type) from exc
    return unreferenced_receipt_keys(db, old_keys)


def delete_expense(db: Session, expense: PatientExpense) -> list[str]:
    keys = {item.receipt_key for item in expense.items if item.receipt_key}
    db.delete(expense)
    db.flush()
    return unreferenced_receipt_keys(db, keys)


def get_expense(db: Session, expense_id: int) -> PatientExpense | None:
    return db.scalar(
        select(PatientExpense)
        .options(selectinload(PatientExpense.items))
        .where(PatientExpense.id == expense_id)
    )


def list_patient_expenses(db: Session, patient_id: int) -> list[tuple[PatientExpense, int | None]]:
    """Expenses of a patient paired with the matching visit type's order number.

    Sorted by visit order; expenses whose visit name no longer matches a visit
    type of their trial sort last.
    """
    expenses = list(
        db.scalars(
            select(PatientExpense)
            .options(selectinload(PatientExpense.items), selectinload(PatientExpense.trial))
            .where(PatientExpense.patient_id == patient_id)
            .order_by(PatientExpense.visit_date, PatientExpense.id)
        )
    )
    trial_ids = {expense.trial_id for expense in expenses}
    orders: dict[tuple[int, str], int] = {}
    if trial_ids:
        for visit_type in db.scalars(select(VisitType).where(VisitType.trial_id.in_(trial_ids))):
            orders[(visit_type.trial_id, visit_type.name)] = visit_type.order_number
    paired = [(expense, orders.get((expense.trial_id, expense.visit_type))) for expense in expenses]
    paired.sort(key=lambda pair: pair[1] if pair[1] is not None else UNMATCHED_VISIT_ORDER)
    return paired


def expense_payload(expense: PatientExpense) -> dict:
    return {
        "id": expense.id,
        "patient_id": expense.patient_id,
        "trial_id": expense.trial_id,
        "visit_type": expense.visit_type,
        "visit_date": expense.visit_date,
        "created_at": expense.created_at,
        "updated_at": expense.updated_at,
        "created_by": expense.created_by,
        "items": list(expense.items),
        "total": expense_total(expense),
    }
