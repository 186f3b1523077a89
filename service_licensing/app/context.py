"""
Per-request decision context.

Built stage by stage by the pipeline, read by the handler and response
post-processing, then consumed by the writeback engine. Never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from service_licensing.app.claims import ClaimEvaluation
from service_licensing.app.models import (
    App,
    BlockedOrganization,
    DunningEntry,
    Organization,
    OwnerKind,
    UserProfile,
    Verdict,
)


class WritebackIntent(str, Enum):
    """Deferred side effects decided while handling a request."""
    REGISTER_UNOWNED = "register_unowned"
    CLAIM = "claim"
    FORCE_UNOWNED = "force_unowned"
    PROMOTE_USER = "promote_user"
    DENY_USER = "deny_user"
    LOG_UNKNOWN_ACCESS = "log_unknown_access"


@dataclass
class DecisionContext:
    """What the pipeline learned about the calling app and user."""

    app: Optional[App] = None
    user: Optional[UserProfile] = None
    organization: Optional[Organization] = None
    blocked: Optional[BlockedOrganization] = None
    dunning: Optional[DunningEntry] = None
    claim: Optional[ClaimEvaluation] = None
    verdict: Optional[Verdict] = None
    intents: List[WritebackIntent] = field(default_factory=list)

    def mark(self, *intents: WritebackIntent) -> None:
        for intent in intents:
            if intent not in self.intents:
                self.intents.append(intent)

    def has(self, intent: WritebackIntent) -> bool:
        return intent in self.intents

    @property
    def owner_kind(self) -> Optional[OwnerKind]:
        return self.app.owner_kind if self.app else None

    @property
    def claim_issue(self) -> bool:
        return bool(self.claim and self.claim.is_issue)

    @property
    def denied(self) -> bool:
        return self.verdict is not None and not self.verdict.allowed
