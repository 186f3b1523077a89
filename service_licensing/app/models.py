"""
Data models for the Licensing Service.

Persisted entities mirror the JSON documents written by the account
website (camelCase keys); Python code uses snake_case field names.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


GRACE_PERIOD_MS = 15 * 24 * 60 * 60 * 1000
CACHE_TTL_MS = 15 * 60 * 1000

# 8-4-4-4-12 hex, no braces
APP_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


class OwnerKind(str, Enum):
    """Who owns an app."""
    USER = "user"
    ORGANIZATION = "organization"


class SubscriptionTier(str, Enum):
    """Organization subscription plans."""
    FREE = "free"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    UNLIMITED = "unlimited"
    PAY_AS_YOU_GO = "payAsYouGo"


class BlockReason(str, Enum):
    """Why an organization is blocked."""
    FLAGGED = "flagged"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_FAILED = "payment_failed"
    NO_SUBSCRIPTION = "no_subscription"


class ErrorCode(str, Enum):
    """Denial codes returned to the client."""
    GRACE_EXPIRED = "GRACE_EXPIRED"
    NOT_AUTHORIZED = "USER_NOT_AUTHORIZED"
    EMAIL_REQUIRED = "GIT_EMAIL_REQUIRED"
    ORG_FLAGGED = "ORG_FLAGGED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    ORG_GRACE_EXPIRED = "ORG_GRACE_EXPIRED"


class WarningCode(str, Enum):
    """Warning codes added to successful responses."""
    GRACE_PERIOD = "APP_GRACE_PERIOD"
    ORG_GRACE_PERIOD = "ORG_GRACE_PERIOD"


BLOCK_REASON_CODES: Dict[BlockReason, ErrorCode] = {
    BlockReason.FLAGGED: ErrorCode.ORG_FLAGGED,
    BlockReason.SUBSCRIPTION_CANCELLED: ErrorCode.SUBSCRIPTION_CANCELLED,
    BlockReason.PAYMENT_FAILED: ErrorCode.PAYMENT_FAILED,
    BlockReason.NO_SUBSCRIPTION: ErrorCode.NO_SUBSCRIPTION,
}


class PersistedModel(BaseModel):
    """Base for entities read from JSON documents.

    Unknown keys are kept so that a record written back after a cache patch
    loses nothing the account website stored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class App(PersistedModel):
    """App entry from ``system://apps.json``."""

    id: str
    name: str = ""
    publisher: str = ""
    owner_type: Optional[OwnerKind] = None
    owner_id: Optional[str] = None
    sponsored: bool = False
    created: int = 0
    free_until: int = 0
    git_email: Optional[str] = None

    @property
    def is_unowned(self) -> bool:
        return not self.owner_id and not self.sponsored

    @property
    def owner_kind(self) -> Optional[OwnerKind]:
        if self.sponsored or not self.owner_id:
            return None
        return self.owner_type

    def without_owner(self) -> "App":
        return self.model_copy(update={"owner_type": None, "owner_id": None})

    def owned_by(self, kind: OwnerKind, owner_id: str) -> "App":
        return self.model_copy(update={"owner_type": kind, "owner_id": owner_id})


class UserProfile(PersistedModel):
    """User profile from ``system://users.json``."""

    id: str
    name: str = ""
    email: str = ""
    git_email: Optional[str] = None
    organization_id: Optional[str] = None


class Organization(PersistedModel):
    """Organization entry from ``system://organizations.json``."""

    id: str
    name: str = ""
    plan: Optional[str] = None
    users: List[str] = Field(default_factory=list)
    denied_users: List[str] = Field(default_factory=list)
    domains: List[str] = Field(default_factory=list)
    pending_domains: List[str] = Field(default_factory=list)
    publishers: List[str] = Field(default_factory=list)
    deny_unknown_domains: bool = False
    do_not_store_app_names: bool = False
    user_first_seen_timestamp: Dict[str, int] = Field(default_factory=dict)
    stripe_customer_id: Optional[str] = None

    @property
    def is_unlimited(self) -> bool:
        return self.plan == SubscriptionTier.UNLIMITED.value

    @property
    def is_metered(self) -> bool:
        return self.plan == SubscriptionTier.PAY_AS_YOU_GO.value and bool(self.stripe_customer_id)


class BlockedOrganization(PersistedModel):
    """One entry of ``system://blocked.json``; the id comes from the map key."""

    organization_id: str = Field(default="", exclude=True)
    reason: BlockReason
    blocked_at: int = 0
    note: Optional[str] = None


class DunningEntry(PersistedModel):
    """Entry from ``system://dunning.json``. Advisory only."""

    organization_id: str
    dunning_stage: int = Field(ge=1, le=3)
    started_at: int = 0
    last_stage_changed_at: int = 0


# Verdicts

@dataclass(frozen=True)
class Allowed:
    allowed = True

    def warning_body(self) -> Optional[Dict[str, Any]]:
        return None


@dataclass(frozen=True)
class AllowedWithWarning:
    code: WarningCode
    time_remaining: int
    email: Optional[str] = None

    allowed = True

    def warning_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code.value, "timeRemaining": self.time_remaining}
        if self.email:
            body["gitEmail"] = self.email
        return body


@dataclass(frozen=True)
class Denied:
    code: ErrorCode
    email: Optional[str] = None

    allowed = False

    def details(self) -> Dict[str, Any]:
        return {"gitEmail": self.email} if self.email else {}

    def error_body(self) -> Dict[str, Any]:
        return {"error": {"code": self.code.value, **self.details()}}


Verdict = Union[Allowed, AllowedWithWarning, Denied]
