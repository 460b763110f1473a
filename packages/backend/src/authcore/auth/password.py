"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks.
The work factor comes from AUTHCORE_BCRYPT_ROUNDS (12 by default,
~100ms per hash on modern hardware; tests drop it to 4).
"""

from typing import Optional

import bcrypt

from authcore.config import settings

# bcrypt only looks at the first 72 bytes of input.
_MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Hashing the same password twice gives
    two different digests; both verify.
    """
    pw_bytes = password.encode("utf-8")[:_MAX_PASSWORD_BYTES]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against its hash.

    checkpw compares in constant time. A missing or malformed hash
    is a failed verification, never an exception.
    """
    if not password_hash:
        return False
    try:
        pw_bytes = password.encode("utf-8")[:_MAX_PASSWORD_BYTES]
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(pw_bytes, hash_bytes)
    except (ValueError, TypeError):
        return False
