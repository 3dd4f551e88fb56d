from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Enum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base


class ExpenseCategory(str, enum.Enum):
    transport = "transport"
    trip1 = "trip1"
    trip2 = "trip2"
    trip3 = "trip3"
    trip4 = "trip4"
    food = "food"
    accommodation = "accommodation"


class PatientExpense(Base, AuditMixin):
    __tablename__ = "patient_expenses"
    __table_args__ = (
        UniqueConstraint(
            "patient_id", "trial_id", "visit_type", name="uq_patient_expenses_patient_trial_visit"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    trial_id: Mapped[int] = mapped_column(ForeignKey("trials.id"), nullable=False, index=True)
    # Visit types are matched by name, not by foreign key.
    visit_type: Mapped[str] = mapped_column(String(120), nullable=False)
    visit_date: Mapped[date] = mapped_column(Date, nullable=False)

    patient = relationship("Patient", back_populates="expenses")
    trial = relationship("Trial")
    items = relationship(
        "ExpenseItem",
        back_populates="expense",
        order_by="ExpenseItem.id",
        cascade="all, delete-orphan",
    )


class ExpenseItem(Base):
    __tablename__ = "expense_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_expense_id: Mapped[int] = mapped_column(
        ForeignKey("patient_expenses.id"), nullable=False, index=True
    )
    category: Mapped[ExpenseCategory] = mapped_column(
        Enum(ExpenseCategory, name="expense_category"), nullable=False
    )
    receipt_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    expense = relationship("PatientExpense", back_populates="items")
