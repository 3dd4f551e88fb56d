from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.models.patient import PatientStatus
from app.schemas.actor import ActorOut
from app.services.patients import format_patient_name


class PatientBase(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    first_name: str = Field(min_length=1, max_length=120)
    second_name: Optional[str] = None
    first_surname: str = Field(min_length=1, max_length=120)
    second_surname: Optional[str] = None
    status: PatientStatus = PatientStatus.active


class PatientCreate(PatientBase):
    pass


class PatientUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    second_name: Optional[str] = None
    first_surname: Optional[str] = Field(default=None, min_length=1, max_length=120)
    second_surname: Optional[str] = None
    status: Optional[PatientStatus] = None


class PatientStatusUpdate(BaseModel):
    status: PatientStatus


class PatientOut(PatientBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime
    created_by: ActorOut
    updated_by: Optional[ActorOut] = None

    @computed_field
    @property
    def display_name(self) -> str:
        return format_patient_name(self)
