"""Create (or promote) a user row so its id can be sent as ``X-User-Id``.

Usage:
  python scripts/create_user.py alice@example.com
  python scripts/create_user.py admin@example.com --role admin

Accounts normally come from the authentication service; this script is for
local setups and demos.
"""
import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlmodel import select  # noqa: E402

from api.models import User  # noqa: E402
from utils.database import get_session, init_db  # noqa: E402
from utils.identifiers import extract_username  # noqa: E402


def main():
    p = argparse.ArgumentParser()
    p.add_argument("email", help="Email of the user; its local part names the user's tables")
    p.add_argument("--role", default="user", choices=["user", "admin"], help="Role of the user")
    args = p.parse_args()

    # reject emails that cannot name physical tables
    username = extract_username(args.email)

    init_db()
    with get_session() as session:
        user = session.exec(select(User).where(User.email == args.email)).first()
        if user is None:
            user = User(email=args.email, role=args.role, email_verified=True)
        else:
            user.role = args.role
        session.add(user)
        session.commit()
        session.refresh(user)
        print(f"User {user.email} (tables prefixed '{username}_data_') has id {user.id}, role {user.role}")


if __name__ == "__main__":
    main()
