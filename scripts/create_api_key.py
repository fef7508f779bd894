"""Issue an API key for an existing user.

    python -m scripts.create_api_key user@example.com --scope admin
"""
from __future__ import annotations

import argparse

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import select  # noqa: E402

from app.db import get_sessionmaker, init_engine  # noqa: E402
from app.models.api_key import ApiKey, ApiScope  # noqa: E402
from app.models.user import User  # noqa: E402
from app.utils.apikey import gen_key  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("email")
    parser.add_argument("--scope", choices=[scope.value for scope in ApiScope], default=ApiScope.user.value)
    parser.add_argument("--name")
    args = parser.parse_args()

    init_engine()
    db = get_sessionmaker()()
    try:
        user = db.scalars(select(User).where(User.email == args.email)).first()
        if user is None:
            raise SystemExit(f"No user with email {args.email}")

        raw, prefix, key_hash = gen_key()
        api_key = ApiKey(
            name=args.name or f"{args.scope}-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope(args.scope),
            user_id=user.id,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print(f"API key created for {user.email} (scope: {api_key.scope.value}, id: {api_key.id})")
        print("Use it in your Authorization header:")
        print(f"    Authorization: Bearer {raw}")
        print("==========================================")
    finally:
        db.close()


if __name__ == "__main__":
    main()
