"""
Writeback engine.

Persists what a request decided, after its response is determined. Every
change is an optimistic read-transform-write of one document; transforms
are pure functions of the current document so conflicts can simply be
retried. Each writeback is caught individually: one failing never stops
the others and never reaches the client.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from shared.logging import get_logger
from service_licensing.app.cache.entity_cache import EntityCache
from service_licensing.app.capabilities import Capability
from service_licensing.app.context import DecisionContext, WritebackIntent
from service_licensing.app.http.headers import NinjaHeaders
from service_licensing.app.models import App, Organization, now_ms
from service_licensing.app.normalize import contains, normalize, same
from service_licensing.app.storage import paths
from service_licensing.app.storage.base import DocumentStore
from service_licensing.app.writeback.billing_log import update_billing_log
from service_licensing.app.writeback.meter_events import MeterEventsClient


Document = Dict[str, Any]


def _find_app(apps: List[Document], app_id: str, publisher: str) -> int:
    for index, entry in enumerate(apps):
        if same(entry.get("id"), app_id) and same(entry.get("publisher"), publisher):
            return index
    return -1


def _find_organization(orgs: List[Document], org_id: str) -> int:
    for index, entry in enumerate(orgs):
        if same(entry.get("id"), org_id):
            return index
    return -1


# App document transforms

def register_unowned_transform(app: App) -> Callable[[List[Document]], List[Document]]:
    """Add the app unless an entry with the same id and publisher exists (first writer wins)."""
    def transform(apps: List[Document]) -> List[Document]:
        apps = apps or []
        if _find_app(apps, app.id, app.publisher) >= 0:
            return apps
        return [*apps, app.to_document()]
    return transform


def claim_transform(app: App, organization: Organization) -> Callable[[List[Document]], List[Document]]:
    """Record organization ownership; keep an existing name, or clear it for private organizations."""
    def transform(apps: List[Document]) -> List[Document]:
        apps = apps or []
        index = _find_app(apps, app.id, app.publisher)
        if index < 0:
            name = "" if organization.do_not_store_app_names else app.name
            return [*apps, {**app.to_document(), "name": name}]

        existing = apps[index]
        name = "" if organization.do_not_store_app_names else existing.get("name", "")
        apps[index] = {
            **existing,
            "ownerType": app.owner_type.value,
            "ownerId": app.owner_id,
            "name": name,
        }
        return apps
    return transform


def force_unowned_transform(app: App) -> Callable[[List[Document]], List[Document]]:
    def transform(apps: List[Document]) -> List[Document]:
        apps = apps or []
        index = _find_app(apps, app.id, app.publisher)
        if index < 0:
            return apps
        entry = dict(apps[index])
        entry.pop("ownerType", None)
        entry.pop("ownerId", None)
        apps[index] = entry
        return apps
    return transform


# Organization document transforms

def _organization_transform(org_id: str, change: Callable[[Document], Document]):
    def transform(orgs: List[Document]) -> List[Document]:
        orgs = orgs or []
        index = _find_organization(orgs, org_id)
        if index < 0:
            return orgs
        orgs[index] = change(dict(orgs[index]))
        return orgs
    return transform


def promote_user_transform(org_id: str, email: str):
    """Add to ``users`` and drop from ``deniedUsers``."""
    def change(org: Document) -> Document:
        users = list(org.get("users") or [])
        if not contains(users, email):
            users.append(email)
        org["users"] = users
        org["deniedUsers"] = [u for u in org.get("deniedUsers") or [] if not same(u, email)]
        return org
    return _organization_transform(org_id, change)


def deny_user_transform(org_id: str, email: str):
    def change(org: Document) -> Document:
        denied = list(org.get("deniedUsers") or [])
        if not contains(denied, email):
            denied.append(email)
        org["deniedUsers"] = denied
        return org
    return _organization_transform(org_id, change)


def first_seen_transform(org_id: str, email: str, now: int):
    """Set the first-seen time only if none is recorded yet."""
    def change(org: Document) -> Document:
        first_seen = dict(org.get("userFirstSeenTimestamp") or {})
        first_seen.setdefault(normalize(email), now)
        org["userFirstSeenTimestamp"] = first_seen
        return org
    return _organization_transform(org_id, change)


class WritebackEngine:
    """Applies DecisionContext intents in the background."""

    def __init__(self, store: DocumentStore, cache: EntityCache,
                 meter_client: Optional[MeterEventsClient] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.cache = cache
        self.meter_client = meter_client
        self.clock = clock or now_ms
        self.logger = get_logger("licensing.writeback")
        self._pending: Set[asyncio.Task] = set()

    # Scheduling

    def _track(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def schedule(self, ctx: Optional[DecisionContext], headers: Optional[NinjaHeaders],
                 capabilities: Capability = Capability.NONE,
                 feature: Optional[str] = None) -> Optional[asyncio.Task]:
        """Start applying ``ctx`` without waiting for it."""
        if ctx is None or headers is None:
            return None
        return self._track(self.perform(ctx, headers, capabilities, feature))

    async def drain(self) -> None:
        """Wait until every scheduled writeback, and anything they spawned, has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _attempt(self, name: str, operation: Awaitable[Any], **log_context) -> None:
        try:
            await operation
            self.logger.debug("Writeback applied", writeback=name, **log_context)
        except Exception as e:
            self.logger.error("Writeback failed", writeback=name, error=str(e), exc_info=True, **log_context)

    # Entry point

    async def perform(self, ctx: DecisionContext, headers: NinjaHeaders,
                      capabilities: Capability = Capability.NONE,
                      feature: Optional[str] = None) -> None:
        """Apply every intent in ``ctx``; failures are logged per writeback."""
        app = ctx.app
        organization = ctx.organization
        email = headers.git_user_email

        if app is not None:
            if ctx.has(WritebackIntent.REGISTER_UNOWNED):
                await self._attempt("register_unowned", self.register_unowned(app), app_id=app.id)
            # A stale owner is cleared before a claim decided on the same request
            if ctx.has(WritebackIntent.FORCE_UNOWNED):
                await self._attempt("force_unowned", self.force_unowned(app), app_id=app.id)
            if ctx.has(WritebackIntent.CLAIM) and organization is not None:
                await self._attempt("claim", self.claim(app, organization),
                                    app_id=app.id, organization_id=organization.id)

        if organization is not None and email:
            if ctx.has(WritebackIntent.PROMOTE_USER):
                await self._attempt("promote_user", self.promote_user(organization.id, email),
                                    organization_id=organization.id)
            if ctx.has(WritebackIntent.DENY_USER):
                await self._attempt("deny_user", self.deny_user(organization.id, email),
                                    organization_id=organization.id)
            # Not an intent: every organization caller with an email gets a first-seen entry
            await self._attempt("record_first_seen", self.record_first_seen(organization.id, email),
                                organization_id=organization.id)

            if app is not None and ctx.has(WritebackIntent.LOG_UNKNOWN_ACCESS):
                await self._attempt("log_unknown_access",
                                    self.log_unknown_access(organization.id, email, app.id),
                                    organization_id=organization.id)

            if app is not None and feature and capabilities.logs_usage:
                await self._attempt("log_usage", self.log_usage(ctx, email, feature),
                                    organization_id=organization.id)

    # Apps

    async def _write_apps(self, transform, app: App) -> None:
        apps = await self.store.optimistic_update(paths.APPS_PATH, transform, [])
        index = _find_app(apps, app.id, app.publisher)
        if index >= 0:
            self.cache.update_app(App.model_validate(apps[index]))

    async def register_unowned(self, app: App) -> None:
        await self._write_apps(register_unowned_transform(app), app)

    async def claim(self, app: App, organization: Organization) -> None:
        await self._write_apps(claim_transform(app, organization), app)

    async def force_unowned(self, app: App) -> None:
        await self._write_apps(force_unowned_transform(app), app)

    # Organizations

    async def _write_organizations(self, transform, org_id: str) -> None:
        orgs = await self.store.optimistic_update(paths.ORGANIZATIONS_PATH, transform, [])
        index = _find_organization(orgs, org_id)
        if index >= 0:
            self.cache.update_organization(Organization.model_validate(orgs[index]))

    async def promote_user(self, org_id: str, email: str) -> None:
        await self._write_organizations(promote_user_transform(org_id, email), org_id)

    async def deny_user(self, org_id: str, email: str) -> None:
        await self._write_organizations(deny_user_transform(org_id, email), org_id)

    async def record_first_seen(self, org_id: str, email: str) -> None:
        await self._write_organizations(first_seen_transform(org_id, email, self.clock()), org_id)

    # Logs

    async def log_unknown_access(self, org_id: str, email: str, app_id: str) -> None:
        entry = {"timestamp": self.clock(), "email": normalize(email), "appId": app_id}
        await self.store.append(paths.unknown_users_path(org_id), entry)

    async def log_usage(self, ctx: DecisionContext, email: str, feature: str) -> None:
        """Feature usage entry, plus the billing log for metered organizations.

        Re-checks the caller: handlers that log usage without enforcing never
        computed a verdict, so the deny list is consulted here too.
        """
        organization = ctx.organization
        app = ctx.app
        if ctx.denied or contains(organization.denied_users, email):
            self.logger.debug("Usage not logged for denied caller", organization_id=organization.id)
            return

        now = self.clock()
        await self.store.append(
            paths.feature_log_path(organization.id),
            {"appId": app.id, "timestamp": now, "email": email, "feature": feature},
        )

        if not organization.is_metered:
            return

        update = await update_billing_log(self.store, organization.id, app.id, app.publisher, email, now)
        if self.meter_client is None:
            return

        customer_id = organization.stripe_customer_id
        if update.new_app:
            self._track(self.meter_client.send_app_event(customer_id, organization.id,
                                                         update.month, update.app_key))
        if update.new_user:
            self._track(self.meter_client.send_user_event(customer_id, organization.id,
                                                          update.month, update.email))
