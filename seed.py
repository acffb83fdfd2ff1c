#!/usr/bin/env python3
# seed.py

import os

from app import create_app
from db import db
from models.user import Role, User

ADMIN_EMAIL = os.environ.get("SEED_ADMIN_EMAIL", "admin@campus.local")
ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD", "admin123")


def seed_admin():
    """
    Creates or updates the first admin account.

    Safe to run repeatedly: an existing account keeps its profile but gets
    the admin role, is re-activated and has its password reset.
    """
    app = create_app()
    with app.app_context():
        db.create_all()
        user = User.query.filter_by(email=ADMIN_EMAIL.lower()).first()

        if not user:
            user = User(name="Administrator", email=ADMIN_EMAIL.lower(), role=Role.ADMIN.value, is_active=True)
            db.session.add(user)
            print(f"Created admin account `{ADMIN_EMAIL}`.")
        else:
            user.role = Role.ADMIN.value
            user.is_active = True
            print(f"Updated admin account `{ADMIN_EMAIL}` with a fresh password.")

        user.set_password(ADMIN_PASSWORD)
        db.session.commit()
        print("Seeded the admin account successfully.")


if __name__ == "__main__":
    seed_admin()
