from __future__ import annotations

import argparse
import asyncio
import sys

from subgate.core.config import get_settings
from subgate.persistence.db import SessionLocal
from subgate.persistence.repos.users import admin_exists
from subgate.services.audit import record_event
from subgate.services.users import ensure_admin


_DEFAULT_ADMIN_EMAIL = "admin@admin.com"


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Create the initial admin identity")
    parser.add_argument(
        "--email",
        default=settings.bootstrap_admin_email or _DEFAULT_ADMIN_EMAIL,
        help="Admin login email",
    )
    parser.add_argument(
        "--password",
        default=settings.bootstrap_admin_password,
        help="Admin password (defaults to BOOTSTRAP_ADMIN_PASSWORD)",
    )
    parser.add_argument("--name", default=settings.bootstrap_admin_name, help="Display name")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Create the identity even if another admin already exists",
    )
    return parser


async def _seed(args: argparse.Namespace) -> int:
    if not args.password:
        print("seed_admin failed: a password is required (--password)", file=sys.stderr)
        return 2

    async with SessionLocal() as session:
        if not args.force and await admin_exists(session):
            print("Admin user already exists; nothing to do.")
            return 0
        user, created = await ensure_admin(
            session, email=args.email, password=args.password, name=args.name
        )
        if not created:
            print(f"Identity already exists for {user.email} (role={user.role}); left unchanged.")
            return 0
        await record_event(
            session=session,
            actor_id="seed_admin",
            actor_role="system",
            event_type="user.created",
            outcome="success",
            resource_type="user",
            resource_id=user.id,
            metadata={"role": user.role, "source": "seed_admin"},
            commit=True,
        )

    print("Admin user created:")
    print(f"  id: {user.id}")
    print(f"  email: {user.email}")
    print("Change the password after first login.")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_seed(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"seed_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
