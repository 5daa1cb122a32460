#!/usr/bin/env python3
"""
Script to create a new user interactively.

Usage:
    python scripts/create_user.py +15550001234 --name "Ana" --email ana@example.com

    # Admin account:
    python scripts/create_user.py +15550001234 --name "Ana" --role Admin

    # OTP-only account (no password):
    python scripts/create_user.py +15550001234 --name "Ana" --otp-only
"""

import argparse
import getpass
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from accounts.config import load_config
from accounts.auth import PasswordHandler, Role, UserStore, DuplicateKeyError, IdentityValidationError
from accounts.auth.password import normalize_phone, password_problem


def main():
    parser = argparse.ArgumentParser(description="Create a new user")
    parser.add_argument("phone", nargs="?", help="Phone number (e.g., +15550001234)")
    parser.add_argument("--name", "-n", help="User's name")
    parser.add_argument("--email", "-e", help="User's email")
    parser.add_argument("--role", "-r", choices=[r.value for r in Role], default=Role.USER.value)
    parser.add_argument("--otp-only", action="store_true", help="Create user without password (OTP login)")
    args = parser.parse_args()

    config = load_config()
    store = UserStore(
        file_path=config.storage.users_file,
        password_handler=PasswordHandler(rounds=config.auth.bcrypt_rounds),
        default_country_code=config.auth.default_country_code
    )

    # Get phone number
    phone = args.phone
    if not phone:
        phone = input("Phone number (e.g., +15550001234): ").strip()

    if not phone:
        print("❌ Phone number is required!")
        sys.exit(1)

    normalized = normalize_phone(phone, config.auth.default_country_code)
    if not normalized:
        print(f"❌ Invalid phone number: {phone}")
        sys.exit(1)

    name = args.name
    if not name:
        name = input("Name: ").strip()

    email = args.email
    if not email:
        email = input("Email (optional, press Enter to skip): ").strip() or None

    # Get password
    password = None
    if not args.otp_only:
        password = getpass.getpass("Enter password: ")
        confirm = getpass.getpass("Confirm password: ")

        if password != confirm:
            print("❌ Passwords do not match!")
            sys.exit(1)

        problem = password_problem(password)
        if problem:
            print(f"❌ {problem}!")
            sys.exit(1)

    try:
        user = store.create_user(
            name=name,
            phone=normalized,
            password=password,
            email=email,
            role=args.role,
            is_otp_login=args.otp_only
        )
    except (DuplicateKeyError, IdentityValidationError) as e:
        print(f"❌ Failed to create user: {e}")
        sys.exit(1)

    print()
    print("✅ User created successfully!")
    print(f"   User ID: {user.user_id}")
    print(f"   Name: {user.name}")
    print(f"   Phone: {user.phone}")
    if user.email:
        print(f"   Email: {user.email}")
    print(f"   Role: {user.role}")
    print(f"   OTP login: {'Yes' if user.is_otp_login else 'No'}")


if __name__ == "__main__":
    main()
