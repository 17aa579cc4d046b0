#!/usr/bin/env python3
"""Create an admin account for the Kitroom application."""
import os

from app import create_app
from utilities.database import db, User


def create_admin_account(pin: str = None):
    """Create the admin account if no admin exists yet."""
    app = create_app()
    pin = pin or os.getenv("ADMIN_PIN", "1234")

    with app.app_context():
        existing = db.session.query(User).filter_by(role="admin", is_active=True).first()

        if existing:
            print(f"[OK] Admin account already exists: {existing.name} ({existing.email})")
            print(f"  User ID: {existing.id}")
            return existing

        admin = User(
            username=os.getenv("ADMIN_USERNAME", "admin"),
            name=os.getenv("ADMIN_NAME", "Administrator"),
            email=os.getenv("ADMIN_EMAIL", "admin@example.com"),
            role="admin",
        )
        admin.set_pin(pin)

        db.session.add(admin)
        db.session.commit()

        print("[OK] Admin account created successfully!")
        print(f"  Username: {admin.username}")
        print(f"  Email: {admin.email}")
        print(f"  User ID: {admin.id}")

        return admin


if __name__ == "__main__":
    create_admin_account()
