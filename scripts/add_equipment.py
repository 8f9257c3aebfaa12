#!/usr/bin/env python3
"""
Script to register equipment in LendLab.
"""
import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from lendlab.core.auth import Actor
from lendlab.core.db import Database
from lendlab.core.equipment import EquipmentRegistry
from lendlab.core.exceptions import LendLabError
from lendlab.models.users import Role, User


def main():
    parser = argparse.ArgumentParser(
        description="Register a piece of equipment in LendLab"
    )
    parser.add_argument("--name", required=True, help="Display name of the equipment")
    parser.add_argument("--code", help="Unique equipment code (asset tag)")
    parser.add_argument("--stock", type=int, default=1, help="Number of identical units")
    parser.add_argument(
        "--staff-email",
        required=True,
        help="Email of the staff or faculty member registering it"
    )
    args = parser.parse_args()

    db = Database().init()
    session = db.Session()
    try:
        staff = session.query(User).filter(User.email == args.staff_email).first()
        if not staff or staff.role == Role.REGULAR:
            print(f"Error: {args.staff_email} is not a staff or faculty user")
            sys.exit(1)
        equipment = EquipmentRegistry(session).register(
            Actor(user_id=staff.id, role=staff.role),
            args.name,
            equipment_code=args.code,
            stock_count=args.stock,
        )
        print(f"Registered {equipment.name} as {equipment.id}")
    except LendLabError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    finally:
        session.close()
        db.dispose()


if __name__ == "__main__":
    main()
