import enum
from sqlalchemy import Column, String, Integer, DateTime, JSON, Enum as SQLAlchemyEnum
from lendlab.core.db import Base
from lendlab.core.utils import new_id, utcnow

class EquipmentStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    BORROWED = "BORROWED"
    UNDER_MAINTENANCE = "UNDER_MAINTENANCE"
    DEFECTIVE = "DEFECTIVE"
    OUT_OF_COMMISSION = "OUT_OF_COMMISSION"
    ARCHIVED = "ARCHIVED"

# Equipment in these states is not offered for reservation or ranked for usage
RETIRED_STATUSES = (EquipmentStatus.ARCHIVED, EquipmentStatus.OUT_OF_COMMISSION)

class Equipment(Base):
    __tablename__ = 'equipment'

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    equipment_code = Column(String(64), unique=True)
    status = Column(SQLAlchemyEnum(EquipmentStatus), default=EquipmentStatus.AVAILABLE, nullable=False)
    stock_count = Column(Integer, default=1, nullable=False)
    # [{"startDate": ..., "endDate": ..., "notes": ...}]
    maintenance_log = Column(JSON, default=list, nullable=False)
    custom_notes_log = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_retired(self):
        return self.status in RETIRED_STATUSES
