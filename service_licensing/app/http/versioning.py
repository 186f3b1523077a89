"""
Client version guard.
"""

from typing import List, Optional

from shared.errors import UpgradeRequired


def _parts(version: str) -> List[int]:
    # Non-numeric components count as zero
    return [int(piece) if piece.strip().isdigit() else 0 for piece in version.strip().split(".")]


def compare_versions(left: str, right: str) -> int:
    """Dotted numeric comparison; missing components count as zero."""
    a, b = _parts(left), _parts(right)
    length = max(len(a), len(b))
    a += [0] * (length - len(a))
    b += [0] * (length - len(b))
    return (a > b) - (a < b)


def check_version(client_version: Optional[str], minimum_version: str) -> None:
    """Raise ``UpgradeRequired`` for a missing or outdated client."""
    if not client_version or compare_versions(client_version, minimum_version) < 0:
        raise UpgradeRequired(minimum_version, client_version)
