from datetime import datetime
from typing import Optional
from lendlab.models.deficiencies import DeficiencyType, DeficiencyStatus
from . import CamelModel


class DeficiencyCreate(CamelModel):
    borrow_id: str
    type: str
    description: Optional[str] = None
    user_id: Optional[str] = None
    fic_to_notify_id: Optional[str] = None

class DeficiencyUpdate(CamelModel):
    status: Optional[str] = None
    description: Optional[str] = None
    resolution: Optional[str] = None

class DeficiencyOut(CamelModel):
    id: str
    type: DeficiencyType
    status: DeficiencyStatus
    description: Optional[str] = None
    resolution: Optional[str] = None
    borrow_id: str
    user_id: str
    tagged_by_id: str
    fic_to_notify_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
