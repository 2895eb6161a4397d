from app.utils.security import (
    hash_password,
    verify_admin_key,
    verify_password,
)

__all__ = [
    "hash_password",
    "verify_password",
    "verify_admin_key",
]
