"""Share token generation and link password hashing."""

from __future__ import annotations

import secrets

import bcrypt

TOKEN_BYTES = 32
DEFAULT_BCRYPT_ROUNDS = 10


def generate_token() -> str:
    """Return a 256-bit CSPRNG token, hex-encoded (64 characters)."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Hash *password* with bcrypt and a fresh per-call salt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check *password* against a bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
