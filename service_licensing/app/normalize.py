"""
Identifier and email normalization.
"""

from typing import Iterable, Optional


def normalize(value: Optional[str]) -> str:
    """Lowercase and trim; ``None`` becomes the empty string."""
    return (value or "").strip().lower()


def get_domain(email: Optional[str]) -> str:
    """Normalized domain part of an email address, or ``""``."""
    _, at, domain = (email or "").rpartition("@")
    return normalize(domain) if at else ""


def same(left: Optional[str], right: Optional[str]) -> bool:
    return normalize(left) == normalize(right)


def contains(values: Optional[Iterable[str]], value: Optional[str]) -> bool:
    """Whether ``value`` is in ``values`` under normalization."""
    needle = normalize(value)
    return any(normalize(item) == needle for item in values or ())
