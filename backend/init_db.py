"""
DB bootstrap script for the treasury backend.

- Reads TREASURY_DB_URL (or falls back to a local default).
- Creates all tables defined in treasury.models.Base metadata.
- With TREASURY_ADMIN_EMAIL set, makes sure a verified admin user exists
  so the API can be used before any other user is provisioned.

Usage (from backend/):
  python init_db.py
"""

import os

from sqlalchemy import select

from treasury.db import Base, engine, get_session
from treasury import models  # noqa: F401  - ensure models are imported so metadata is populated


def ensure_admin(email: str, name: str) -> int:
    with get_session() as session:
        user = session.execute(select(models.User).where(models.User.email == email)).scalar_one_or_none()
        if user is None:
            user = models.User(name=name, email=email)
            session.add(user)
        user.is_admin = True
        user.email_verified = True
        user.active = True
        session.flush()
        return user.id


def main() -> None:
    Base.metadata.create_all(bind=engine)
    print("Treasury tables created (or already exist).")

    admin_email = os.getenv("TREASURY_ADMIN_EMAIL")
    if admin_email:
        user_id = ensure_admin(admin_email, os.getenv("TREASURY_ADMIN_NAME", "Administrator"))
        print(f"Admin user {admin_email} ready (X-User-Id: {user_id}).")


if __name__ == "__main__":
    main()
