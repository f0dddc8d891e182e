"""
Issue a bearer token for local development.

Usage (local):
    python scripts/issue_token.py

Prompts for a user id and role and prints a JWT signed with SECRET_KEY.
Identities live in the token; there is no user table to seed.
"""

import os
import sys

# Ensure the project root is on the path when run directly
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.routers.auth import create_access_token
from app.services.claims.identity import UserRole
from app.settings import settings


def prompt(label: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    value = input(f"{label}{suffix}: ").strip()
    return value or default


def main() -> None:
    print("\n=== Claim Scrubbing: development token ===\n")

    if settings.is_production:
        print("ERROR: refusing to mint tokens with the production secret.")
        sys.exit(1)

    user_id = prompt("User id", "billing-1")
    role = prompt(f"Role ({' | '.join(UserRole.ALL)})", UserRole.BILLING).lower()
    if role not in UserRole.ALL:
        print(f"ERROR: unknown role {role!r}.")
        sys.exit(1)

    token = create_access_token({"user_id": user_id, "role": role})
    print(f"\n✓ Token for {user_id} ({role}), valid {settings.access_token_expire_minutes} min:\n")
    print(token)
    print(f'\ncurl -H "Authorization: Bearer {token}" http://localhost:8000/claims\n')


if __name__ == "__main__":
    main()
