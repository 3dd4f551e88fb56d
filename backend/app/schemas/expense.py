from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.expense import ExpenseCategory
from app.schemas.actor import ActorOut


class ExpenseItemIn(BaseModel):
    category: ExpenseCategory
    cost: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    receipt_key: Optional[str] = Field(default=None, max_length=512)


class ExpenseItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: ExpenseCategory
    cost: Decimal
    receipt_key: Optional[str] = None


def ensure_unique_categories(items: list[ExpenseItemIn]) -> list[ExpenseItemIn]:
    seen: set[ExpenseCategory] = set()
    for item in items:
        if item.category in seen:
            raise ValueError(f"Duplicate expense category: {item.category.value}")
        seen.add(item.category)
    return items


class ExpenseCreate(BaseModel):
    patient_id: int = Field(gt=0)
    trial_id: int = Field(gt=0)
    visit_type: str = Field(min_length=1, max_length=120)
    visit_date: date
    items: list[ExpenseItemIn] = []

    @field_validator("items")
    @classmethod
    def check_unique_categories(cls, items: list[ExpenseItemIn]) -> list[ExpenseItemIn]:
        return ensure_unique_categories(items)


class ExpenseUpdate(BaseModel):
    visit_type: str = Field(min_length=1, max_length=120)
    visit_date: date
    items: list[ExpenseItemIn] = []

    @field_validator("items")
    @classmethod
    def check_unique_categories(cls, items: list[ExpenseItemIn]) -> list[ExpenseItemIn]:
        return ensure_unique_categories(items)


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    trial_id: int
    visit_type: str
    visit_date: date
    created_at: datetime
    updated_at: datetime
    created_by: ActorOut
    items: list[ExpenseItemOut]
    total: Decimal


class PatientExpenseOut(ExpenseOut):
    trial_name: str
    visit_order: Optional[int] = None


class PatientExpenseListOut(BaseModel):
    patient_id: int
    items: list[PatientExpenseOut]
    total: Decimal


class ReceiptUploadOut(BaseModel):
    receipt_key: str
    byte_size: int
