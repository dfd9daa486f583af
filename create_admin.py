#!/usr/bin/env python3
"""Create (or promote) the roster admin account.

Usage: python create_admin.py "Admin Name" admin@example.org [password]
Falls back to ADMIN_NAME / ADMIN_EMAIL / ADMIN_PASSWORD from the environment.
"""
import sys

from app import app, db, User


def create_admin(name, email, password):
    existing = User.query.filter_by(name=name).first()
    if existing:
        existing.is_admin = True
        existing.set_password(password)
        db.session.commit()
        return existing, False

    user = User(name=name, email=email, is_admin=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user, True


if __name__ == "__main__":
    args = sys.argv[1:]
    name = args[0] if len(args) > 0 else app.config["ADMIN_NAME"]
    email = args[1] if len(args) > 1 else app.config["ADMIN_EMAIL"]
    password = args[2] if len(args) > 2 else app.config["ADMIN_PASSWORD"]

    with app.app_context():
        db.create_all()
        user, created = create_admin(name, email, password)
        print(f"\n{'Created new' if created else 'Updated existing user to'} admin: {user.name}")

    print("\n" + "=" * 60)
    print("ADMIN LOGIN")
    print("=" * 60)
    print(f"Name: {name}")
    print("Password: (as configured)")
    print("=" * 60)
