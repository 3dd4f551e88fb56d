from __future__ import annotations

import enum

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, Base


class PatientStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class Patient(Base, AuditMixin):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    second_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    first_surname: Mapped[str] = mapped_column(String(120), nullable=False)
    second_surname: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[PatientStatus] = mapped_column(
        Enum(PatientStatus, name="patient_status"),
        default=PatientStatus.active,
        nullable=False,
    )

    expenses = relationship("PatientExpense", back_populates="patient")
