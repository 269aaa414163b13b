from __future__ import annotations

import secrets
import uuid

USERNAME_PREFIX = "user_"

PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "!@#$%^&*"
)


def new_user_id() -> str:
    return uuid.uuid4().hex


def terminal_username(user_id: str) -> str:
    """Stable terminal login name; regeneration keeps it and only rotates the password."""
    return f"{USERNAME_PREFIX}{user_id[:8]}"


def random_password(length: int = 12) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(int(length)))
