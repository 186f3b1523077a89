"""
Read-through entity cache with TTL expiry and single-flight refresh.

Each entity kind has one slot holding the last bulk-loaded snapshot, the
time it was loaded and, while a reload runs, the task performing it.
Concurrent readers of an expired slot all await that one task.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_licensing.app.models import (
    App,
    BlockedOrganization,
    CACHE_TTL_MS,
    DunningEntry,
    Organization,
    UserProfile,
    now_ms,
)
from service_licensing.app.normalize import normalize
from service_licensing.app.storage import paths
from service_licensing.app.storage.base import DocumentStore


Clock = Callable[[], int]
EntityKey = Union[str, Tuple[str, str]]


class EntityKind(str, Enum):
    """Cached collections."""
    APPS = "apps"
    USERS = "users"
    ORGANIZATIONS = "organizations"
    BLOCKED = "blocked"
    DUNNING = "dunning"


@dataclass
class _Slot:
    data: Optional[List[Any]] = None
    loaded_at: Optional[int] = None
    refreshing: Optional["asyncio.Task[List[Any]]"] = None


def entity_key(kind: EntityKind, entity: Any) -> EntityKey:
    """Normalized lookup key of a cached entity."""
    if kind is EntityKind.APPS:
        return (normalize(entity.id), normalize(entity.publisher))
    if kind in (EntityKind.BLOCKED, EntityKind.DUNNING):
        return normalize(entity.organization_id)
    return normalize(entity.id)


def _lookup_key(kind: EntityKind, key: EntityKey) -> EntityKey:
    if kind is EntityKind.APPS:
        app_id, publisher = key
        return (normalize(app_id), normalize(publisher))
    return normalize(key)


class EntityCache:
    """Cache over the five system collections."""

    def __init__(self, store: DocumentStore, ttl_ms: int = CACHE_TTL_MS,
                 clock: Optional[Clock] = None, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.ttl_ms = ttl_ms
        self.clock = clock or now_ms
        self.metrics = metrics
        self.logger = get_logger("licensing.cache")
        self._slots: Dict[EntityKind, _Slot] = {kind: _Slot() for kind in EntityKind}
        self._loaders: Dict[EntityKind, Callable[[], Awaitable[List[Any]]]] = {
            EntityKind.APPS: self._load_apps,
            EntityKind.USERS: self._load_users,
            EntityKind.ORGANIZATIONS: self._load_organizations,
            EntityKind.BLOCKED: self._load_blocked,
            EntityKind.DUNNING: self._load_dunning,
        }

    def _now(self) -> int:
        return self.clock()

    # Loaders

    async def _load_apps(self) -> List[App]:
        documents = await self.store.read_value(paths.APPS_PATH, [])
        return [App.model_validate(item) for item in documents or []]

    async def _load_users(self) -> List[UserProfile]:
        documents = await self.store.read_value(paths.USERS_PATH, [])
        return [UserProfile.model_validate(item) for item in documents or []]

    async def _load_organizations(self) -> List[Organization]:
        documents = await self.store.read_value(paths.ORGANIZATIONS_PATH, [])
        return [Organization.model_validate(item) for item in documents or []]

    async def _load_blocked(self) -> List[BlockedOrganization]:
        document = await self.store.read_value(paths.BLOCKED_PATH, {}) or {}
        return [
            BlockedOrganization.model_validate({**entry, "organizationId": org_id})
            for org_id, entry in (document.get("orgs") or {}).items()
        ]

    async def _load_dunning(self) -> List[DunningEntry]:
        documents = await self.store.read_value(paths.DUNNING_PATH, [])
        return [DunningEntry.model_validate(item) for item in documents or []]

    # Slots

    def _is_valid(self, slot: _Slot) -> bool:
        if slot.loaded_at is None:
            return False
        return self._now() - slot.loaded_at < self.ttl_ms

    async def _snapshot(self, kind: EntityKind) -> List[Any]:
        slot = self._slots[kind]
        if self._is_valid(slot):
            return slot.data

        if slot.refreshing is None:
            slot.refreshing = asyncio.get_running_loop().create_task(self._refresh(kind, slot))

        # Shielded so one cancelled waiter does not cancel the shared load
        return await asyncio.shield(slot.refreshing)

    async def _refresh(self, kind: EntityKind, slot: _Slot) -> List[Any]:
        task = asyncio.current_task()
        try:
            data = await self._loaders[kind]()
        except Exception as e:
            if slot.refreshing is task:
                slot.refreshing = None
            if self.metrics:
                self.metrics.record_cache_load(kind.value, "error")
            self.logger.warning("Entity cache load failed", kind=kind.value, error=str(e))
            raise

        if self.metrics:
            self.metrics.record_cache_load(kind.value, "success")

        # An invalidation during the load replaced the slot; do not commit into it
        if self._slots[kind] is slot and slot.refreshing is task:
            slot.data = data
            slot.loaded_at = self._now()
            slot.refreshing = None
            self.logger.debug("Entity cache refreshed", kind=kind.value, count=len(data))
        return data

    # Public API

    async def get(self, kind: EntityKind, key: EntityKey) -> Optional[Any]:
        """Entity matching ``key``; apps are keyed by ``(id, publisher)``."""
        wanted = _lookup_key(kind, key)
        for entity in await self._snapshot(kind):
            if entity_key(kind, entity) == wanted:
                return entity
        return None

    async def get_all(self, kind: EntityKind) -> List[Any]:
        return list(await self._snapshot(kind))

    def update(self, kind: EntityKind, entity: Any) -> None:
        """Patch the loaded snapshot after a successful writeback."""
        slot = self._slots[kind]
        if slot.data is None:
            return

        wanted = entity_key(kind, entity)
        for index, existing in enumerate(slot.data):
            if entity_key(kind, existing) == wanted:
                slot.data[index] = entity
                return
        slot.data.append(entity)

    def invalidate(self, kind: EntityKind) -> None:
        self._slots[kind] = _Slot()

    def invalidate_all(self) -> None:
        """Drop every snapshot and forget any load in flight."""
        for kind in EntityKind:
            self.invalidate(kind)

    # Typed helpers

    async def get_app(self, app_id: str, publisher: Optional[str]) -> Optional[App]:
        return await self.get(EntityKind.APPS, (app_id, publisher or ""))

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        return await self.get(EntityKind.USERS, user_id)

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        return await self.get(EntityKind.ORGANIZATIONS, org_id)

    async def get_organizations(self) -> List[Organization]:
        return await self.get_all(EntityKind.ORGANIZATIONS)

    async def get_blocked_status(self, org_id: str) -> Optional[BlockedOrganization]:
        return await self.get(EntityKind.BLOCKED, org_id)

    async def get_dunning_entry(self, org_id: str) -> Optional[DunningEntry]:
        return await self.get(EntityKind.DUNNING, org_id)

    def update_app(self, app: App) -> None:
        self.update(EntityKind.APPS, app)

    def update_organization(self, organization: Organization) -> None:
        self.update(EntityKind.ORGANIZATIONS, organization)
