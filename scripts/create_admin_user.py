#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys

from shared.auth_context import ADMIN_ROLES, generate_api_token, hash_token
from shared.db import AdminUser, SessionLocal, init_db


def create_or_rotate(email: str, full_name: str | None, role: str) -> str:
    """Create the admin user (or rotate its token) and return the new plain token."""
    token = generate_api_token()
    db = SessionLocal()
    try:
        user = db.query(AdminUser).filter_by(email=email.strip().lower()).one_or_none()
        if user is None:
            user = AdminUser(email=email.strip().lower(), full_name=full_name, role=role, is_active=True)
            db.add(user)
        else:
            user.role = role
            user.is_active = True
            if full_name:
                user.full_name = full_name
        user.api_token_hash = hash_token(token)
        db.commit()
        return token
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an admin user and print its API token")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default=None, help="Full name, used to match AI task assignments")
    parser.add_argument("--role", default="admin", choices=sorted(ADMIN_ROLES | {"viewer", "socio", "analista"}))
    args = parser.parse_args()

    init_db()
    token = create_or_rotate(args.email, args.name, args.role)
    if args.role not in ADMIN_ROLES:
        print("Warning: this role cannot call the admin endpoints.", file=sys.stderr)
    print(f"API token for {args.email} (store it now, it is not shown again):")
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
