"""
Create the administrator account, or reset its password if it already exists.

Usage:
    python scripts/seed_admin.py --email admin@example.com --password secret123 [--name Admin] [--username admin]
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv

load_dotenv()

from embrohub.auth.security import get_password_hash  # noqa: E402
from embrohub.db import Base, engine, session_scope  # noqa: E402
from embrohub.models.enums import UserRole  # noqa: E402
from embrohub.models.models import User  # noqa: E402


def seed_admin(email: str, password: str, name: str, username: str) -> None:
    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()
        if user:
            user.password_hash = get_password_hash(password)
            user.role = UserRole.ADMIN.value
            user.employee_role = None
            user.is_active = True
            db.commit()
            print(f"[RESET] Admin {email} password reset")
            return
        if db.query(User).filter(User.username == username).first():
            print(f"[ERROR] Username {username} is taken; pass --username")
            sys.exit(1)
        db.add(
            User(
                name=name,
                username=username,
                email=email,
                password_hash=get_password_hash(password),
                role=UserRole.ADMIN.value,
                is_active=True,
            )
        )
        db.commit()
        print(f"[CREATED] Admin {email} (username {username})")
        print("Please change the password after first login.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or reset the administrator account")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL"), help="defaults to ADMIN_EMAIL")
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"), help="defaults to ADMIN_PASSWORD")
    parser.add_argument("--name", default="Admin")
    parser.add_argument("--username", default="admin")
    args = parser.parse_args()
    if not args.email or not args.password:
        parser.error("--email and --password are required (or set ADMIN_EMAIL / ADMIN_PASSWORD)")
    if len(args.password) < 6:
        parser.error("password must be at least 6 characters")
    seed_admin(args.email, args.password, args.name, args.username.strip().lower())


if __name__ == "__main__":
    main()
