"""ULID identifiers for users and tutoring sessions."""

from typing import Optional

import ulid

# Crockford base32, uppercase, as produced by str(ulid.ULID())
ULID_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


def is_valid_ulid(value: Optional[str]) -> bool:
    """Check that a caller-supplied id is a well-formed ULID string."""
    if not value or len(value) != 26:
        return False
    try:
        ulid.ULID.from_str(value)
    except ValueError:
        return False
    return True
