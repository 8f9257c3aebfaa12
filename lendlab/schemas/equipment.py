from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import Field
from lendlab.models.equipment import EquipmentStatus
from . import CamelModel


class EquipmentCreate(CamelModel):
    name: str
    equipment_code: Optional[str] = None
    stock_count: int = 1
    status: EquipmentStatus = EquipmentStatus.AVAILABLE

class MaintenanceEntry(CamelModel):
    start_date: str
    end_date: Optional[str] = None
    notes: Optional[str] = None

class NoteCreate(CamelModel):
    text: str

class EquipmentOut(CamelModel):
    id: str
    name: str
    equipment_code: Optional[str] = None
    status: EquipmentStatus
    stock_count: int
    maintenance_log: List[Dict[str, Any]] = Field(default_factory=list)
    custom_notes_log: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
