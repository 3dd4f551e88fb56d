from pydantic import BaseModel

from app.services.visits import SequencingMode


class EligibleVisitOut(BaseModel):
    id: int
    name: str
    order_number: int
    is_completed: bool
    is_registrable: bool


class EligibleVisitsOut(BaseModel):
    patient_id: int
    trial_id: int
    sequencing: SequencingMode
    visits: list[EligibleVisitOut]


class CanRegisterVisitOut(BaseModel):
    visit: str
    can_register: bool
