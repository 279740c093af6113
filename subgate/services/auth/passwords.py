from __future__ import annotations

import asyncio

import bcrypt

from subgate.core.config import get_settings


def hash_password_sync(password: str, *, rounds: int | None = None) -> str:
    # bcrypt truncates at 72 bytes; hash the utf-8 form so non-ascii secrets are stable.
    resolved_rounds = rounds if rounds is not None else get_settings().password_hash_rounds
    salt = bcrypt.gensalt(rounds=resolved_rounds)
    return bcrypt.hashpw(password.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password_sync(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hashes never authenticate.
        return False


async def hash_password(password: str) -> str:
    # Hashing is CPU-bound; run it off the event loop so other requests keep flowing.
    return await asyncio.to_thread(hash_password_sync, password)


async def verify_password(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password_sync, password, password_hash)
