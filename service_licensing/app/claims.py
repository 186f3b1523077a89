"""
Claim resolution for unowned apps.

An organization may take ownership of an unowned app when it lists the
app's publisher and the calling user is one of its members, either by
explicit email or by email domain.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from service_licensing.app.models import Organization
from service_licensing.app.normalize import contains, get_domain, normalize


class ClaimMatch(str, Enum):
    USER = "user"
    DOMAIN = "domain"


class ClaimOutcome(str, Enum):
    """What the caller should do with an evaluation."""
    NO_PUBLISHER = "no_publisher"
    UNRESOLVED = "unresolved"
    CONFLICT = "conflict"
    CLAIM = "claim"


@dataclass(frozen=True)
class ClaimCandidate:
    organization: Organization
    match: ClaimMatch


@dataclass(frozen=True)
class ClaimEvaluation:
    publisher_matched: bool
    candidates: List[ClaimCandidate] = field(default_factory=list)

    @property
    def outcome(self) -> ClaimOutcome:
        if not self.publisher_matched:
            return ClaimOutcome.NO_PUBLISHER
        if not self.candidates:
            return ClaimOutcome.UNRESOLVED
        if len(self.candidates) > 1:
            return ClaimOutcome.CONFLICT
        return ClaimOutcome.CLAIM

    @property
    def is_issue(self) -> bool:
        """Publisher is configured but no single organization can claim."""
        return self.outcome in (ClaimOutcome.UNRESOLVED, ClaimOutcome.CONFLICT)

    @property
    def winner(self) -> Optional[Organization]:
        if self.outcome is ClaimOutcome.CLAIM:
            return self.candidates[0].organization
        return None


def evaluate_claim(publisher: Optional[str], email: Optional[str],
                   organizations: Sequence[Organization]) -> ClaimEvaluation:
    """Organizations eligible to claim an app of ``publisher`` for ``email``.

    At most one candidate per organization; a user match takes precedence
    over a domain match.
    """
    publisher_norm = normalize(publisher)
    email_norm = normalize(email)
    domain = get_domain(email)

    with_publisher = [
        org for org in organizations
        if any(normalize(p) == publisher_norm for p in org.publishers)
    ]
    if not with_publisher:
        return ClaimEvaluation(publisher_matched=False)

    candidates: List[ClaimCandidate] = []
    for org in with_publisher:
        if email_norm and contains(org.users, email_norm):
            candidates.append(ClaimCandidate(org, ClaimMatch.USER))
        elif domain and contains(org.domains, domain):
            candidates.append(ClaimCandidate(org, ClaimMatch.DOMAIN))

    return ClaimEvaluation(publisher_matched=True, candidates=candidates)
