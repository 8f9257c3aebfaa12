from datetime import datetime
from typing import Optional
from . import CamelModel


class MtbfRow(CamelModel):
    user_id: str
    user_name: Optional[str] = None
    incident_count: int
    mtbf_hours: Optional[float] = None

class MttrRow(CamelModel):
    equipment_id: str
    equipment_name: str
    equipment_code: Optional[str] = None
    repair_count: int
    mttr_hours: Optional[float] = None
    total_maintenance_hours: float

class MaintenanceActivityRow(CamelModel):
    equipment_id: str
    equipment_name: str
    equipment_code: Optional[str] = None
    maintenance_start_date: datetime
    maintenance_end_date: Optional[datetime] = None
    maintenance_notes: Optional[str] = None
    duration_hours: Optional[float] = None
    status: str

class UtilizationRow(CamelModel):
    equipment_id: str
    name: str
    equipment_code: Optional[str] = None
    borrow_count: int
    total_contact_hours: float

class WeeklyUsageRow(CamelModel):
    day: str
    date: str
    hours: float

class StatusCount(CamelModel):
    name: str
    value: int

class MostBorrowed(CamelModel):
    equipment_id: str
    name: Optional[str] = None
    borrow_count: int

class DashboardStats(CamelModel):
    total_equipment: int
    operational_equipment: int
    borrowed_equipment: int
    available_equipment: int
    usage_rate: float
    availability_rate: float
    contact_hours: float
    most_borrowed: Optional[MostBorrowed] = None
