"""Hashing utilities for API keys and cache keys."""
import hashlib
import json
import secrets
from typing import Any


def hash_api_key(api_key: str, salt: str) -> str:
    """
    Hash an API key using SHA-256 with salt.

    Args:
        api_key: The API key to hash
        salt: Server-side salt from settings

    Returns:
        Hex digest of the hashed key
    """
    salted_key = f"{api_key}{salt}"
    return hashlib.sha256(salted_key.encode()).hexdigest()


def generate_api_key() -> str:
    """
    Generate a new API key.

    Returns:
        A new API key string (format: cs_xxxxxxxxxxxx)
    """
    random_part = secrets.token_urlsafe(32)
    return f"cs_{random_part}"


def digest(*parts: Any) -> str:
    """Stable SHA-256 digest over JSON-encoded parts, used for cache keys."""
    encoded = json.dumps(parts, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()
