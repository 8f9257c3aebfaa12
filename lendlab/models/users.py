import enum
from sqlalchemy import Column, String, DateTime, Enum as SQLAlchemyEnum
from lendlab.core.db import Base
from lendlab.core.utils import new_id, utcnow

class Role(str, enum.Enum):
    REGULAR = "REGULAR"
    STAFF = "STAFF"
    FACULTY = "FACULTY"

    @property
    def is_privileged(self):
        return self in (Role.STAFF, Role.FACULTY)

class User(Base):
    __tablename__ = 'users'

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255))
    email = Column(String(255), unique=True, nullable=False)
    role = Column(SQLAlchemyEnum(Role), default=Role.REGULAR, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
