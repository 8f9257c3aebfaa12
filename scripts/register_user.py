import argparse
import sys
from dotenv import load_dotenv

load_dotenv()

from sqlalchemy.exc import SQLAlchemyError
from lendlab.core.auth import create_session_cookie
from lendlab.core.db import Database
from lendlab.models.users import Role, User

def main():
    parser = argparse.ArgumentParser(description="Create or update a LendLab user and print a session token")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name")
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.REGULAR.value)
    args = parser.parse_args()

    db = Database().init()
    session = db.Session()
    try:
        user = session.query(User).filter(User.email == args.email).first()
        if user:
            user.role = Role(args.role)
            if args.name:
                user.name = args.name
            action = "updated"
        else:
            user = User(email=args.email, name=args.name, role=Role(args.role))
            session.add(user)
            action = "created"
        session.commit()
        print(f"Success! User '{args.email}' {action} with role {user.role.value}.")
        print(f"Session token: {create_session_cookie(user.id, user.role)}")
    except SQLAlchemyError as e:
        session.rollback()
        print(f"Database error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        session.close()
        db.dispose()

if __name__ == "__main__":
    main()
