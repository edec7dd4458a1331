"""
Seed the database with the default Admin, Manager and Electrician accounts.

Usage:
  python scripts/seed_users.py

This script is idempotent: running it multiple times upserts the same
accounts by email and never resets an existing password.
"""

from datetime import date

from kehub.config import settings
from kehub.db import Database
from kehub.models.models import (
    ElectricianDetail,
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    USER_ACTIVE,
)
from kehub.auth.security import get_password_hash


DEFAULT_PASSWORD = "admin123"

DEFAULT_USERS = [
    {
        "username": "admin",
        "email": "admin@kandyelectricians.com",
        "full_name": "System Administrator",
        "phone": "0771234567",
        "role": ROLE_ADMIN,
    },
    {
        "username": "manager",
        "email": "manager@kandyelectricians.com",
        "full_name": "Operations Manager",
        "phone": "0772345678",
        "role": ROLE_MANAGER,
    },
    {
        "username": "john",
        "email": "john@kandyelectricians.com",
        "full_name": "John Perera",
        "phone": "0773456789",
        "role": ROLE_ELECTRICIAN,
        "employee_code": "EL001",
        "skills": "Residential wiring, Panel upgrades",
    },
]


def ensure_user(session, entry: dict, password: str = DEFAULT_PASSWORD) -> User:
    user = session.query(User).filter(User.email == entry["email"]).first()
    if user is None:
        user = User(
            username=entry["username"],
            email=entry["email"],
            password_hash=get_password_hash(password),
            full_name=entry["full_name"],
            phone=entry["phone"],
            role=entry["role"],
            employee_code=entry.get("employee_code"),
            status=USER_ACTIVE,
        )
        session.add(user)
        session.flush()
    else:
        user.full_name = entry["full_name"]
        user.role = entry["role"]
        user.status = USER_ACTIVE

    if user.role == ROLE_ELECTRICIAN:
        detail = session.query(ElectricianDetail).filter(ElectricianDetail.electrician_id == user.id).first()
        if detail is None:
            session.add(ElectricianDetail(
                electrician_id=user.id,
                skills=entry.get("skills"),
                rating=0.0,
                total_tasks_completed=0,
                join_date=date.today(),
            ))
    return user


def seed(database: Database) -> None:
    database.create_all()
    session = database.session()
    try:
        for entry in DEFAULT_USERS:
            user = ensure_user(session, entry)
            print(f"  {user.role:<12} {user.email}")
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def main() -> None:
    print("Seeding default users...")
    seed(Database.from_settings(settings))
    print(f"Done. Default password: {DEFAULT_PASSWORD}")


if __name__ == "__main__":
    main()
