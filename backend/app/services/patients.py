from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.patient import Patient


class PatientCodeConflict(ValueError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Patient code '{code}' already exists. Use a different code.")
        self.code = code


def format_patient_name(patient: Patient) -> str:
    first_name = patient.first_name or "Unknown"
    first_surname = patient.first_surname or "Unknown"
    surname = f"{first_surname} {patient.second_surname}" if patient.second_surname else first_surname
    name = f"{first_name} {patient.second_name}" if patient.second_name else first_name
    return f"{surname}, {name}"


def normalize_code(code: str) -> str:
    return code.strip()


def ensure_code_available(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    stmt = select(Patient.id).where(Patient.code == normalize_code(code))
    if exclude_id is not None:
        stmt = stmt.where(Patient.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise PatientCodeConflict(code)
