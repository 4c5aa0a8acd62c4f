"""
Session Identity

A session is addressed at the relay by a short token that a person can read
aloud or type: 6 characters of uppercase letters and digits.
"""

import secrets
import string

SESSION_ID_LENGTH = 6
SESSION_ID_ALPHABET = string.digits + string.ascii_uppercase


def generate_session_id(length: int = SESSION_ID_LENGTH) -> str:
    """Generate a random session identifier, e.g. ``'K3Q9ZB'``."""
    return ''.join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(length))


def normalize_session_id(value: str) -> str:
    """Normalize user input (strip + uppercase) for use as a peer identifier."""
    return value.strip().upper()


def is_valid_session_id(value: str) -> bool:
    return (
        len(value) == SESSION_ID_LENGTH
        and all(c in SESSION_ID_ALPHABET for c in value)
    )
