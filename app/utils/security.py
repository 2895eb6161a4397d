import hmac

import bcrypt

from core.config import config


def hash_password(password: str) -> str:
    """Hash a class password using bcrypt."""
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a class password against its hash."""
    password_bytes = plain_password.encode("utf-8")
    hashed_bytes = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # Malformed stored hash
        return False


def verify_admin_key(candidate: str) -> bool:
    """Constant-time comparison against the configured admin key."""
    return hmac.compare_digest(candidate.encode("utf-8"), config.ADMIN_API_KEY.encode("utf-8"))
