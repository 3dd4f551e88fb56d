from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.models.user import Role


class PreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sidebar_collapsed: bool = False
    impersonating_role: Optional[Role] = None
    impersonation_started_at: Optional[datetime] = None


class PreferencesUpdate(BaseModel):
    sidebar_collapsed: Optional[bool] = None


class ImpersonationStart(BaseModel):
    role: Role
