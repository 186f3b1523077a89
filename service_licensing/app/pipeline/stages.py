"""
Pipeline stages.

Each stage reads what earlier stages put into the DecisionContext and adds
its own findings. Stages that touch the cache are async; the rest are pure.
"""

import asyncio
from typing import Optional

from shared.errors import AuthorizationDenied, ValidationError
from shared.logging import get_logger
from service_licensing.app.cache.entity_cache import EntityCache
from service_licensing.app.claims import ClaimOutcome, evaluate_claim
from service_licensing.app.context import DecisionContext, WritebackIntent
from service_licensing.app.http.headers import NinjaHeaders
from service_licensing.app.models import APP_ID_PATTERN, App, DunningEntry, OwnerKind
from service_licensing.app.normalize import normalize
from service_licensing.app.permission import resolve_permission


logger = get_logger("licensing.pipeline")


async def _load_dunning(cache: EntityCache, org_id: str) -> Optional[DunningEntry]:
    """Dunning is advisory: a failed load means no dunning, never a fault."""
    try:
        return await cache.get_dunning_entry(org_id)
    except Exception as e:
        logger.warning("Dunning status unavailable", organization_id=org_id, error=str(e))
        return None


def _force_unowned(ctx: DecisionContext) -> None:
    logger.warning("App references a missing owner, clearing ownership",
                   app_id=ctx.app.id, owner_id=ctx.app.owner_id)
    ctx.app = ctx.app.without_owner()
    ctx.mark(WritebackIntent.FORCE_UNOWNED)


async def bind_stage(ctx: DecisionContext, headers: NinjaHeaders, cache: EntityCache,
                     now: int, grace_period_ms: int) -> None:
    """Resolve the app and its owner."""
    if not headers.app_id:
        return

    app = await cache.get_app(headers.app_id, headers.app_publisher)
    if app is None:
        if not APP_ID_PATTERN.match(headers.app_id):
            return
        app = App(
            id=headers.app_id.lower(),
            name=headers.app_name or "",
            publisher=headers.app_publisher or "",
            created=now,
            free_until=now + grace_period_ms,
        )
        ctx.mark(WritebackIntent.REGISTER_UNOWNED)
        logger.info("New unowned app", app_id=app.id, publisher=app.publisher)
    ctx.app = app

    kind = app.owner_kind
    if kind is OwnerKind.USER:
        user = await cache.get_user(app.owner_id)
        if user is None:
            _force_unowned(ctx)
        else:
            ctx.user = user
    elif kind is OwnerKind.ORGANIZATION:
        organization, dunning = await asyncio.gather(
            cache.get_organization(app.owner_id),
            _load_dunning(cache, app.owner_id),
        )
        if organization is None:
            _force_unowned(ctx)
        else:
            ctx.organization = organization
            ctx.dunning = dunning


async def claim_stage(ctx: DecisionContext, headers: NinjaHeaders, cache: EntityCache) -> None:
    """Attach an unowned app to the single organization that can claim it."""
    app = ctx.app
    if app is None or not app.is_unowned:
        return
    if not normalize(headers.app_publisher) or not headers.git_user_email:
        return

    evaluation = evaluate_claim(headers.app_publisher, headers.git_user_email,
                                await cache.get_organizations())
    ctx.claim = evaluation

    outcome = evaluation.outcome
    if outcome is ClaimOutcome.CLAIM:
        organization = evaluation.winner
        ctx.app = app.owned_by(OwnerKind.ORGANIZATION, organization.id)
        ctx.organization = organization
        ctx.mark(WritebackIntent.CLAIM)
        logger.info("App claimed", app_id=app.id, organization_id=organization.id,
                    match=evaluation.candidates[0].match.value)
    elif ctx.claim_issue:
        logger.warning("App claim not resolved", app_id=app.id, publisher=headers.app_publisher,
                       outcome=outcome.value, candidates=len(evaluation.candidates))


async def block_stage(ctx: DecisionContext, cache: EntityCache) -> None:
    """Bind the organization's blocked status, if any."""
    if ctx.organization is None:
        return
    ctx.blocked = await cache.get_blocked_status(ctx.organization.id)


def dunning_stage(ctx: DecisionContext) -> bool:
    """Whether the response carries the dunning advisory."""
    return ctx.dunning is not None


def permission_stage(ctx: DecisionContext, headers: NinjaHeaders, now: int,
                     grace_period_ms: int) -> None:
    """Resolve the verdict for the caller."""
    if not headers.app_id:
        raise ValidationError("Ninja-App-Id header is required")

    decision = resolve_permission(
        ctx.app,
        ctx.user,
        ctx.organization,
        ctx.blocked,
        headers.git_user_email,
        now=now,
        grace_period_ms=grace_period_ms,
    )
    ctx.verdict = decision.verdict
    ctx.mark(*decision.intents)


def enforce_stage(ctx: DecisionContext) -> None:
    """Raise a denial as a client-facing authorization failure."""
    verdict = ctx.verdict
    if verdict is None or verdict.allowed:
        return
    raise AuthorizationDenied(verdict.code.value, verdict.details())
