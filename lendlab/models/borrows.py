import enum
from sqlalchemy import (
    Column, String, Boolean, Text, DateTime, JSON, ForeignKey,
    UniqueConstraint, Enum as SQLAlchemyEnum
)
from sqlalchemy.orm import relationship
from lendlab.core.db import Base
from lendlab.core.utils import new_id, utcnow

class BorrowStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED_FIC = "REJECTED_FIC"
    REJECTED_STAFF = "REJECTED_STAFF"
    CANCELLED = "CANCELLED"
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    PENDING_RETURN = "PENDING_RETURN"
    RETURNED = "RETURNED"
    COMPLETED = "COMPLETED"

class ReservationType(str, enum.Enum):
    IN_CLASS = "IN_CLASS"
    OUT_CLASS = "OUT_CLASS"

# Statuses in which a borrow holds its equipment
HOLDING_STATUSES = (
    BorrowStatus.APPROVED,
    BorrowStatus.ACTIVE,
    BorrowStatus.OVERDUE,
    BorrowStatus.PENDING_RETURN,
)
CHECKED_OUT_STATUSES = (
    BorrowStatus.ACTIVE,
    BorrowStatus.OVERDUE,
    BorrowStatus.PENDING_RETURN,
)

class Borrow(Base):
    __tablename__ = 'borrows'

    id = Column(String(32), primary_key=True, default=new_id)
    borrower_id = Column(String(32), ForeignKey('users.id'), nullable=False, index=True)
    equipment_id = Column(String(32), ForeignKey('equipment.id'), nullable=False, index=True)
    class_id = Column(String(32))
    borrow_group_id = Column(String(32), index=True)
    reservation_type = Column(SQLAlchemyEnum(ReservationType))

    requested_start_time = Column(DateTime, nullable=False)
    requested_end_time = Column(DateTime, nullable=False)
    approved_start_time = Column(DateTime)
    approved_end_time = Column(DateTime)
    checkout_time = Column(DateTime)
    actual_return_time = Column(DateTime)
    request_submission_time = Column(DateTime, default=utcnow, nullable=False)

    borrow_status = Column(SQLAlchemyEnum(BorrowStatus), default=BorrowStatus.PENDING, nullable=False, index=True)
    approved_by_id = Column(String(32), ForeignKey('users.id'))
    accepted_at = Column(DateTime)
    return_condition = Column(String(255))
    return_remarks = Column(Text)

    data_requested = Column(Boolean, default=False, nullable=False)
    data_request_status = Column(String(32))
    data_request_remarks = Column(Text)
    requested_equipment_ids = Column(JSON, default=list, nullable=False)
    # [{"id", "name", "url", "size", "type"}]
    data_files = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    borrower = relationship("User", foreign_keys=[borrower_id])
    approved_by = relationship("User", foreign_keys=[approved_by_id])
    equipment = relationship("Equipment")
    deficiencies = relationship("Deficiency", back_populates="borrow", cascade="all, delete-orphan")

    @property
    def effective_status(self):
        """ACTIVE borrows past their approved end read as OVERDUE."""
        if (self.borrow_status == BorrowStatus.ACTIVE
                and self.approved_end_time is not None
                and self.approved_end_time < utcnow()):
            return BorrowStatus.OVERDUE
        return self.borrow_status

class BorrowGroupMate(Base):
    __tablename__ = 'borrow_group_mates'
    __table_args__ = (
        UniqueConstraint('borrow_group_id', 'user_id', name='uq_group_mate'),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    borrow_group_id = Column(String(32), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User")
