from decimal import Decimal

from pydantic import BaseModel


class TrialExpenseSummary(BaseModel):
    trial_id: int
    trial_name: str
    expense_count: int
    patient_count: int
    total: Decimal


class ExpenseSummaryOut(BaseModel):
    expense_count: int
    total: Decimal
    by_category: dict[str, Decimal]
    by_trial: list[TrialExpenseSummary]
