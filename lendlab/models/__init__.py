#!/usr/bin/env python
"""
    Models for LendLab,
    the ORM tables for users, equipment, borrows and deficiencies.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""
from lendlab.core.db import Base

# Import all models here to ensure they are registered with Base
from . import users, equipment, borrows, deficiencies
from .users import Role, User
from .equipment import EquipmentStatus, Equipment
from .borrows import BorrowStatus, ReservationType, Borrow, BorrowGroupMate
from .deficiencies import DeficiencyType, DeficiencyStatus, Deficiency

__all__ = [
    "Base", "Role", "User", "EquipmentStatus", "Equipment",
    "BorrowStatus", "ReservationType", "Borrow", "BorrowGroupMate",
    "DeficiencyType", "DeficiencyStatus", "Deficiency",
]
