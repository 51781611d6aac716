"""
Security utilities: recipient access tokens, content hashing.
"""
import hashlib
import logging
import re
import secrets
import time

logger = logging.getLogger(__name__)

# s_<16 hex>_<issued-at epoch millis>
RECIPIENT_TOKEN_PATTERN = re.compile(r"s_[a-f0-9]{16}_[0-9]+")


def generate_recipient_token() -> str:
    """
    Generate an opaque recipient access token.

    The token is stored as-is so the owner can share the link again;
    it is never logged raw, use fingerprint() for correlation.
    """
    random_part = secrets.token_hex(8)
    issued_at = int(time.time() * 1000)
    return f"s_{random_part}_{issued_at}"


def is_valid_token_format(token: str) -> bool:
    """Check the token shape before touching the database."""
    if not token:
        return False
    return RECIPIENT_TOKEN_PATTERN.fullmatch(token) is not None


def tokens_match(presented: str, stored: str) -> bool:
    """Constant-time token comparison."""
    return secrets.compare_digest(presented.encode(), stored.encode())


def compute_bytes_hash(data: bytes) -> str:
    """Compute SHA-256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()
