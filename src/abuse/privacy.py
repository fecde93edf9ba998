# kudosguard - Identifier Hashing
# AGPL-3.0 License

"""
Privacy helpers for audit records and logs.

User and recognition ids are never written to the audit trail or logs in
raw form. They are replaced with a short one-way digest that is stable
across calls so entries for the same user can still be correlated.
"""

import hashlib
import hmac
from typing import Optional

HASH_LENGTH = 16


def hash_identifier(value: str, secret: Optional[str] = None) -> str:
    """
    Return a deterministic 16-character one-way digest of an identifier.

    Args:
        value: Raw identifier (user id, recognition id)
        secret: Optional key; when set the digest is HMAC-SHA256 keyed with it

    Returns:
        Lowercase hex digest truncated to HASH_LENGTH characters
    """
    data = str(value).encode("utf-8")
    if secret:
        digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()
    else:
        digest = hashlib.sha256(data).hexdigest()
    return digest[:HASH_LENGTH]
