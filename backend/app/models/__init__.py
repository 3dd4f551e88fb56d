from app.models.base import Base
from app.models.user import Role, User
from app.models.audit_log import AuditLog
from app.models.permission import Permission, UserPermission
from app.models.preference import UserPreference
from app.models.patient import Patient, PatientStatus
from app.models.trial import (
    AllocationType,
    Currency,
    ServiceAllocation,
    Trial,
    TrialService,
    VisitType,
)
from app.models.expense import ExpenseCategory, ExpenseItem, PatientExpense

__all__ = [
    "Base",
    "Role",
    "User",
    "AuditLog",
    "Permission",
    "UserPermission",
    "UserPreference",
    "Patient",
    "PatientStatus",
    "Trial",
    "VisitType",
    "TrialService",
    "ServiceAllocation",
    "Currency",
    "AllocationType",
    "PatientExpense",
    "ExpenseItem",
    "ExpenseCategory",
]
