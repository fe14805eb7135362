"""TURN REST API credential derivation.

Long-term TURN credentials minted from a shared secret:

- username = "{expiry_unix_timestamp}:{identity}"
- password = base64(HMAC-SHA1(secret, username))

The TURN server holds the same secret and recomputes the password from the
username, so nothing but the secret has to be shared ahead of time.
"""

import base64
import hashlib
import hmac
import time

from turnprobe.protocols import Credential

__all__ = [
    "DEFAULT_TTL",
    "make_username",
    "compute_password",
    "derive_credential",
    "verify_password",
    "username_expiry",
]

DEFAULT_TTL = 24 * 3600  # credential valid for the next 24 hours


def make_username(identity: str, ttl: int = DEFAULT_TTL, now: float | None = None) -> str:
    """Build a time-limited TURN username.

    Args:
        identity: User identifier appended after the expiry.
        ttl: Validity window in seconds.
        now: Current unix time (for testing).

    Returns:
        "{expiry}:{identity}".
    """
    if now is None:
        now = time.time()
    expiry = int(now) + ttl
    return f"{expiry}:{identity}"


def compute_password(secret: str | bytes, username: str) -> str:
    """Compute base64(HMAC-SHA1(secret, username))."""
    key = secret.encode() if isinstance(secret, str) else secret
    digest = hmac.new(key, username.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def derive_credential(
    secret: str | bytes,
    identity: str,
    ttl: int = DEFAULT_TTL,
    now: float | None = None,
) -> Credential:
    """Derive a full credential pair from a shared secret."""
    username = make_username(identity, ttl=ttl, now=now)
    return Credential(username=username, password=compute_password(secret, username))


def verify_password(secret: str | bytes, username: str, password: str) -> bool:
    """Verify a password in constant time."""
    expected = compute_password(secret, username)
    return hmac.compare_digest(expected.encode(), password.encode())


def username_expiry(username: str) -> int | None:
    """Return the expiry timestamp embedded in a username, if any."""
    prefix, sep, _ = username.partition(":")
    if not sep or not prefix.isdigit():
        return None
    return int(prefix)
