"""PKCE (RFC 7636) challenge and verifier checks."""

import hashlib
import re
import secrets
from base64 import urlsafe_b64encode

METHOD_S256 = "S256"
METHOD_PLAIN = "plain"
S256_CHALLENGE_LENGTH = 43

_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


class PKCEError(ValueError):
    """The code verifier or challenge is unacceptable."""


def compute_s256_challenge(verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def validate_verifier(verifier: str, challenge: str, method: str = "") -> None:
    """Check a presented verifier against the stored challenge.

    An empty method means S256.
    """
    if not verifier:
        raise PKCEError("code_verifier is required")
    if not _VERIFIER_PATTERN.fullmatch(verifier):
        raise PKCEError(
            "code_verifier must be 43-128 characters of [A-Za-z0-9-._~]"
        )

    method = method or METHOD_S256
    if method == METHOD_S256:
        computed = compute_s256_challenge(verifier)
    elif method == METHOD_PLAIN:
        computed = verifier
    else:
        raise PKCEError(f"unsupported code_challenge_method: {method}")

    if not secrets.compare_digest(computed.encode(), challenge.encode()):
        raise PKCEError("code_verifier does not match code_challenge")


def validate_challenge(challenge: str, method: str = "") -> None:
    """Check a challenge presented at the authorization endpoint."""
    if not challenge:
        raise PKCEError("code_challenge is required")
    if method not in ("", METHOD_S256, METHOD_PLAIN):
        raise PKCEError(f"unsupported code_challenge_method: {method}")
    if method in ("", METHOD_S256) and len(challenge) != S256_CHALLENGE_LENGTH:
        raise PKCEError(
            f"S256 code_challenge must be {S256_CHALLENGE_LENGTH} characters"
        )
