from __future__ import annotations

import hashlib
import hmac
import secrets


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str, *, iterations: int = 120_000) -> str:
    # PBKDF2 keeps brute-force cost tunable through settings.
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return digest.hex()


def verify_password(password: str, salt: str, expected_hash: str, *, iterations: int = 120_000) -> bool:
    candidate = hash_password(password, salt, iterations=iterations)
    return hmac.compare_digest(candidate, expected_hash)
