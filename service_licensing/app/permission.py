"""
Permission resolution.

Pure functions over already-bound entities. Dispatch is by the app's
ownership class: sponsored, unowned, personal, organization.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from service_licensing.app.context import WritebackIntent
from service_licensing.app.models import (
    App,
    Allowed,
    AllowedWithWarning,
    BLOCK_REASON_CODES,
    BlockedOrganization,
    Denied,
    ErrorCode,
    GRACE_PERIOD_MS,
    Organization,
    OwnerKind,
    UserProfile,
    Verdict,
    WarningCode,
)
from service_licensing.app.normalize import contains, get_domain, normalize


class UserPermission(str, Enum):
    """Standing of an email within an organization."""
    ALLOWED = "allowed"
    DENIED = "denied"
    ALLOWED_BY_DOMAIN = "allowed_by_domain"
    ALLOWED_PENDING = "allowed_pending"
    DENIED_UNKNOWN_DOMAIN = "denied_unknown_domain"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PermissionDecision:
    verdict: Verdict
    intents: Tuple[WritebackIntent, ...] = field(default_factory=tuple)


def get_user_permission(organization: Organization, email: str) -> UserPermission:
    """Classify ``email`` against the organization's lists and domains.

    The allow list is consulted first, so an email on both the allow and
    the deny list is allowed.
    """
    if contains(organization.users, email):
        return UserPermission.ALLOWED

    if contains(organization.denied_users, email):
        return UserPermission.DENIED

    domain = get_domain(email)
    if domain and contains(organization.domains, domain):
        return UserPermission.ALLOWED_BY_DOMAIN

    if domain and contains(organization.pending_domains, domain):
        return UserPermission.ALLOWED_PENDING

    if organization.deny_unknown_domains:
        return UserPermission.DENIED_UNKNOWN_DOMAIN

    return UserPermission.UNKNOWN


def authorized_emails(app: App, user: Optional[UserProfile]) -> List[str]:
    """Emails allowed to use a personal app, normalized, in order, deduplicated."""
    emails: List[str] = []
    candidates = [app.git_email]
    if user:
        candidates.extend([user.email, user.git_email])
    for candidate in candidates:
        email = normalize(candidate)
        if email and email not in emails:
            emails.append(email)
    return emails


def _unowned_permission(app: App, now: int) -> PermissionDecision:
    remaining = app.free_until - now
    # The deadline itself is already expired
    if remaining <= 0:
        return PermissionDecision(Denied(ErrorCode.GRACE_EXPIRED))
    return PermissionDecision(AllowedWithWarning(WarningCode.GRACE_PERIOD, remaining))


def _personal_permission(app: App, user: Optional[UserProfile], email: Optional[str]) -> PermissionDecision:
    if not email:
        return PermissionDecision(Denied(ErrorCode.EMAIL_REQUIRED))
    if normalize(email) in authorized_emails(app, user):
        return PermissionDecision(Allowed())
    return PermissionDecision(Denied(ErrorCode.NOT_AUTHORIZED, email))


def _unknown_user_permission(organization: Organization, email: str, now: int,
                             grace_period_ms: int) -> PermissionDecision:
    first_seen = organization.user_first_seen_timestamp.get(normalize(email))
    seen_at = first_seen if first_seen is not None else now
    remaining = grace_period_ms - (now - seen_at)

    if remaining < 0:
        return PermissionDecision(Denied(ErrorCode.ORG_GRACE_EXPIRED, email))

    # Logged on every occurrence, no deduplication
    return PermissionDecision(
        AllowedWithWarning(WarningCode.ORG_GRACE_PERIOD, remaining, email),
        (WritebackIntent.LOG_UNKNOWN_ACCESS,),
    )


def _organization_permission(organization: Optional[Organization],
                             blocked: Optional[BlockedOrganization],
                             email: Optional[str], now: int,
                             grace_period_ms: int) -> PermissionDecision:
    if organization is None:
        return PermissionDecision(Allowed())

    if blocked is not None:
        return PermissionDecision(Denied(BLOCK_REASON_CODES[blocked.reason]))

    if organization.is_unlimited:
        return PermissionDecision(Allowed())

    if not email:
        return PermissionDecision(Denied(ErrorCode.EMAIL_REQUIRED))

    standing = get_user_permission(organization, email)

    if standing is UserPermission.ALLOWED:
        return PermissionDecision(Allowed())
    if standing is UserPermission.ALLOWED_BY_DOMAIN:
        return PermissionDecision(Allowed(), (WritebackIntent.PROMOTE_USER,))
    if standing is UserPermission.ALLOWED_PENDING:
        return PermissionDecision(Allowed(), (WritebackIntent.LOG_UNKNOWN_ACCESS,))
    if standing is UserPermission.DENIED:
        return PermissionDecision(Denied(ErrorCode.NOT_AUTHORIZED, email))
    if standing is UserPermission.DENIED_UNKNOWN_DOMAIN:
        return PermissionDecision(Denied(ErrorCode.NOT_AUTHORIZED, email), (WritebackIntent.DENY_USER,))

    return _unknown_user_permission(organization, email, now, grace_period_ms)


def resolve_permission(app: Optional[App],
                       user: Optional[UserProfile] = None,
                       organization: Optional[Organization] = None,
                       blocked: Optional[BlockedOrganization] = None,
                       email: Optional[str] = None,
                       *,
                       now: int,
                       grace_period_ms: int = GRACE_PERIOD_MS) -> PermissionDecision:
    """Verdict for the caller plus the writebacks it implies."""
    if app is None:
        return PermissionDecision(Allowed())

    if app.sponsored:
        return PermissionDecision(Allowed())

    kind = app.owner_kind
    if kind is OwnerKind.USER:
        return _personal_permission(app, user, email)
    if kind is OwnerKind.ORGANIZATION:
        return _organization_permission(organization, blocked, email, now, grace_period_ms)
    if not app.owner_id:
        return _unowned_permission(app, now)

    # Owner id without a recognizable owner kind
    return PermissionDecision(Allowed())
