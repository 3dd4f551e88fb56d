from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.trial import AllocationType, Currency


class TrialBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    sponsor: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    medical_specialty: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    active: bool = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class TrialCreate(TrialBase):
    pass


class TrialUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    sponsor: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    medical_specialty: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    active: Optional[bool] = None


class TrialOut(TrialBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime


class VisitTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    order_number: Optional[int] = Field(default=None, ge=1)


class VisitTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    order_number: Optional[int] = Field(default=None, ge=1)


class VisitTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trial_id: int
    name: str
    order_number: int
    created_at: datetime


class ServiceAllocationIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    currency: Currency = Currency.usd
    allocation_type: AllocationType


class ServiceAllocationOut(ServiceAllocationIn):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trial_service_id: int
    created_at: datetime
    updated_at: datetime


class TrialServiceIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    currency: Currency = Currency.usd


class TrialServiceOut(TrialServiceIn):
    id: int
    trial_id: int
    created_at: datetime
    updated_at: datetime
    allocations: list[ServiceAllocationOut] = []
    total_allocated: Decimal
    amount_display: str
    total_allocated_display: str


class TrialDetailOut(TrialOut):
    visit_types: list[VisitTypeOut] = []
