# backend/create_initial_admin.py

import os

from trainportal.apps.accounts import models as account_models
from trainportal.apps.notifications.preferences import seed_preferences
from trainportal.database import SessionLocal
from trainportal.security import get_password_hash


def main() -> None:
    db = SessionLocal()
    try:
        email = os.getenv("INITIAL_ADMIN_EMAIL", "admin@trainportal.local")
        password = os.getenv("INITIAL_ADMIN_PASSWORD", "ChangeMe123!")

        created_prefs = seed_preferences(db)
        if created_prefs:
            print(f"[OK] Seeded {created_prefs} notification preferences")

        existing = db.query(account_models.User).filter(account_models.User.email == email).first()
        if existing:
            db.commit()
            print(f"[INFO] User already exists: id={existing.id}, email={existing.email}")
            return

        user = account_models.User(
            email=email,
            full_name="Portal Admin",
            role=account_models.AccountRole.ADMIN,
            is_active=True,
            hashed_password=get_password_hash(password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        print("[OK] Created admin user:")
        print(f"  id:      {user.id}")
        print(f"  email:   {user.email}")
        print(f"  role:    {user.role.value}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
