import enum
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Enum as SQLAlchemyEnum
from sqlalchemy.orm import relationship
from lendlab.core.db import Base
from lendlab.core.utils import new_id, utcnow

class DeficiencyType(str, enum.Enum):
    DAMAGE = "DAMAGE"
    MISHANDLING = "MISHANDLING"
    LOSS = "LOSS"
    OTHER = "OTHER"

class DeficiencyStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"

class Deficiency(Base):
    __tablename__ = 'deficiencies'

    id = Column(String(32), primary_key=True, default=new_id)
    type = Column(SQLAlchemyEnum(DeficiencyType), nullable=False)
    status = Column(SQLAlchemyEnum(DeficiencyStatus), default=DeficiencyStatus.OPEN, nullable=False)
    description = Column(Text)
    resolution = Column(Text)
    borrow_id = Column(String(32), ForeignKey('borrows.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey('users.id'), nullable=False, index=True)
    tagged_by_id = Column(String(32), ForeignKey('users.id'), nullable=False)
    fic_to_notify_id = Column(String(32), ForeignKey('users.id'))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    borrow = relationship("Borrow", back_populates="deficiencies")
    user = relationship("User", foreign_keys=[user_id])
    tagged_by = relationship("User", foreign_keys=[tagged_by_id])
