"""
Issue a bearer token for an existing user (development and testing).

Usage:
  python -m app.scripts.issue_token <user_id>
  python -m app.scripts.issue_token <user_id> --minutes 480
"""

import argparse
import asyncio
import sys
from uuid import UUID

from app.auth.models import User
from app.auth.security import access_token_for
from app.db.session import AsyncSessionLocal


async def issue(user_id: UUID, minutes: int) -> int:
    async with AsyncSessionLocal() as session:
        user = await session.get(User, user_id)
        if not user:
            print(f"No user with id {user_id}.", file=sys.stderr)
            return 1
        print(f"# {user.full_name} <{user.email}> ({user.user_type})", file=sys.stderr)
        print(access_token_for(user.id, user.user_type, expires_minutes=minutes))
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue an access token for a user.")
    parser.add_argument("user_id", type=UUID)
    parser.add_argument("--minutes", type=int, default=60, help="Token lifetime in minutes")
    args = parser.parse_args()
    sys.exit(asyncio.run(issue(args.user_id, args.minutes)))


if __name__ == "__main__":
    main()
