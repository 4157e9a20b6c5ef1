#!/usr/bin/env python3
"""
Script to create an admin account, and optionally an institution with a
staff account that can issue certificates for it.
"""
import argparse

from app import create_app
from models import db, Institution, InstitutionUser, User, UserRole


def create_admin(name, email, password):
    """Create a new admin account. Returns the User or None if the email is taken."""
    if User.query.filter_by(email=email).first():
        print(f"❌ An account with email '{email}' already exists!")
        return None

    admin = User(name=name, email=email, role=UserRole.ADMIN)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()

    print(f"✅ Admin account created successfully!")
    print(f"   Email: {email}")
    print(f"   User ID: {admin.user_id}")
    return admin


def create_institution(name, email, staff_email=None, staff_password=None):
    """Create an institution and, when credentials are given, a staff member for it."""
    institution = Institution(name=name, email=email)
    db.session.add(institution)
    db.session.flush()
    if staff_email:
        staff = User(name=f'{name} staff', email=staff_email, role=UserRole.INSTITUTION)
        staff.set_password(staff_password)
        db.session.add(staff)
        db.session.flush()
        db.session.add(InstitutionUser(user_id=staff.user_id, institution_id=institution.institution_id))
    db.session.commit()
    print(f"✅ Institution '{name}' created (ID: {institution.institution_id})")
    return institution


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Create the first admin (and institution) account')
    parser.add_argument('--name', default='Administrator')
    parser.add_argument('--email', default=None)
    parser.add_argument('--password', default=None)
    parser.add_argument('--institution', default=None, help='Also create an institution with this name')
    parser.add_argument('--staff-email', default=None)
    parser.add_argument('--staff-password', default=None)
    args = parser.parse_args()

    print("=" * 60)
    print("CREATE ADMIN ACCOUNT")
    print("=" * 60)

    email = args.email or input("Enter email (default: admin@example.com): ").strip() or "admin@example.com"
    password = args.password or input("Enter password (default: admin123): ").strip() or "admin123"

    app = create_app()
    with app.app_context():
        create_admin(args.name, email.lower(), password)
        if args.institution:
            create_institution(args.institution, email.lower(), args.staff_email, args.staff_password or password)
