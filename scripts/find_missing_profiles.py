#!/usr/bin/env python3
"""
List Firebase Auth accounts that have no profile document in the users
collection. With --fix, create the missing profiles with the same defaults
a first login would use.
"""

import argparse
import asyncio
import os
import sys

from firebase_admin import auth as firebase_auth

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from core.config import load_config  # noqa: E402
from core.errors import NotFound  # noqa: E402
from core.firebase_platform import create_firebase_platform  # noqa: E402
from core.platform import AccountInfo  # noqa: E402
from services.auth_service import AuthService  # noqa: E402


# 1. Every account known to Firebase Auth
def list_accounts(app):
    for record in firebase_auth.list_users(app=app).iterate_all():
        yield AccountInfo(id=record.uid, email=record.email or "", name=record.display_name or "")


async def main(fix: bool) -> None:
    platform = create_firebase_platform(load_config())
    auth = AuthService(platform)

    print("Finding accounts without a profile...")
    missing = []
    for account in list_accounts(platform.accounts.app):
        # 2. Check if the profile doc exists
        try:
            await auth.get_profile(account.id)
        except NotFound:
            missing.append(account)

    print(f"\nAccounts without a profile: {len(missing)}")
    for account in missing:
        print(f"  {account.id}  {account.email}  {account.name}")

    # 3. Optionally create them
    if fix:
        for account in missing:
            profile = await auth.ensure_profile(account)
            print(f"Created profile {profile.id} ({profile.employee_code})")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--fix", action="store_true", help="create the missing profiles")
    args = parser.parse_args()
    asyncio.run(main(args.fix))
