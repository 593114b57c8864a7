"""Password hashing.

Passwords are hashed with bcrypt using the cost factor from settings
(``BCRYPT_ROUNDS``, never below 10). bcrypt is CPU-bound, so both calls run
in a worker thread to keep the event loop responsive.
"""

import asyncio
from typing import Optional

import bcrypt

from libs.common.config import get_settings

# bcrypt only looks at the first 72 bytes of the input
MAX_PASSWORD_BYTES = 72


def hash_password_sync(password: str, rounds: Optional[int] = None) -> str:
    rounds = rounds or get_settings().BCRYPT_ROUNDS
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password_sync(password: str, password_hash: str) -> bool:
    """Constant-time comparison; malformed hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


async def hash_password(password: str, rounds: Optional[int] = None) -> str:
    return await asyncio.to_thread(hash_password_sync, password, rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password_sync, password, password_hash)
