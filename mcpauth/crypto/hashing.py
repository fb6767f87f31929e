"""Client secret hashing (Argon2id) and token digests for storage keys."""

import hashlib

import argon2

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def hash_secret(secret: str) -> str:
    """Hash a client secret using Argon2id."""
    return _hasher.hash(secret)


def verify_secret(plain: str, hashed: str) -> bool:
    """Verify a plaintext client secret against its Argon2 hash."""
    try:
        return _hasher.verify(hashed, plain)
    except argon2.exceptions.VerifyMismatchError:
        return False
    except argon2.exceptions.InvalidHashError:
        return False


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token, used as its storage key."""
    return hashlib.sha256(token.encode()).hexdigest()
