"""
Licensing service for the developer tool backend.
"""

from typing import Any, Callable, Dict, List, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import LicensingConfig, get_config
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from service_licensing.app.cache.entity_cache import EntityCache
from service_licensing.app.capabilities import Capability
from service_licensing.app.http.handler import Endpoint, LicensingRequest, RequestHandler
from service_licensing.app.models import now_ms
from service_licensing.app.pipeline.orchestrator import PipelineOrchestrator
from service_licensing.app.storage.base import DocumentStore
from service_licensing.app.storage.redis_store import RedisDocumentStore
from service_licensing.app.writeback.engine import WritebackEngine
from service_licensing.app.writeback.meter_events import MeterEventsClient


class LicensingService(BaseService):
    """Licensing service implementation."""

    def __init__(self, config: Optional[LicensingConfig] = None,
                 store: Optional[DocumentStore] = None,
                 meter_client: Optional[MeterEventsClient] = None,
                 clock: Optional[Callable[[], int]] = None,
                 metrics: Optional[MetricsCollector] = None):
        config = config or get_config()
        super().__init__(config.service_name, config, metrics)
        self.clock = clock or now_ms

        self.store = store or RedisDocumentStore(
            self.config.redis_url,
            prefix=self.config.document_prefix,
            retry_config=RetryConfig(
                max_attempts=self.config.write_max_attempts,
                base_delay=self.config.write_base_delay,
                max_delay=self.config.write_max_delay,
            ),
            metrics=self.metrics,
        )
        self.cache = EntityCache(
            self.store,
            ttl_ms=self.config.cache_ttl_ms,
            clock=self.clock,
            metrics=self.metrics,
        )
        self.meter_client = meter_client or MeterEventsClient(
            self.config.stripe_secret_key,
            url=self.config.meter_events_url,
            timeout=self.config.meter_timeout_seconds,
            metrics=self.metrics,
            clock=self.clock,
        )
        self.orchestrator = PipelineOrchestrator(
            self.cache,
            self.store,
            private_backend=self.config.private_backend,
            grace_period_ms=self.config.grace_period_ms,
            clock=self.clock,
            metrics=self.metrics,
        )
        self.writeback = WritebackEngine(self.store, self.cache, self.meter_client, clock=self.clock)
        self.request_handler = RequestHandler(
            self.orchestrator,
            self.writeback,
            self.config.minimum_client_version,
            clock=self.clock,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.writeback.drain()
            await self.meter_client.close()
            await self.store.close()

        self.endpoints = self._build_endpoints()
        for endpoint in self.endpoints:
            self._register_endpoint(endpoint)

        # Expose service instance via app state for introspection/testing
        self.app.state.licensing_service = self

    def _build_endpoints(self) -> List[Endpoint]:
        return [
            Endpoint(
                moniker="v3-check",
                path="/v3/check",
                handler=self.check,
                methods=("POST",),
                capabilities=Capability.SECURITY | Capability.USAGE_LOGGING,
            ),
            Endpoint(
                moniker="v3-usage",
                path="/v3/usage",
                handler=self.record_usage,
                methods=("POST",),
                capabilities=Capability.USAGE_LOGGING,
            ),
            Endpoint(
                moniker="v3-status",
                path="/v3/status",
                handler=self.status,
                methods=("GET",),
                capabilities=Capability.BILLING,
            ),
        ]

    def _register_endpoint(self, endpoint: Endpoint) -> None:
        async def route(request: Request):
            return await self.request_handler.handle(endpoint, request)

        route.__name__ = endpoint.moniker.replace("-", "_")
        self.app.add_api_route(endpoint.path, route, methods=list(endpoint.methods), name=endpoint.moniker)

    async def _check_dependencies(self) -> Dict[str, str]:
        ping = getattr(self.store, "ping", None)
        if ping is not None:
            await ping()
        return {"document_store": "ok"}

    # Endpoint handlers

    async def check(self, request: LicensingRequest) -> Dict[str, Any]:
        """Enforced licensing check; reaching here means the caller may proceed."""
        return {"licensed": True}

    async def record_usage(self, request: LicensingRequest) -> Dict[str, Any]:
        """Usage is logged by the writeback engine; the handler only acknowledges."""
        return {"accepted": True}

    async def status(self, request: LicensingRequest) -> Dict[str, Any]:
        """Read-only view of what the pipeline bound for this caller."""
        ctx = request.context
        if ctx is None or ctx.app is None:
            return {"bound": False}

        owner_kind = ctx.owner_kind
        return {
            "bound": True,
            "appId": ctx.app.id,
            "sponsored": ctx.app.sponsored,
            "ownership": owner_kind.value if owner_kind else ("sponsored" if ctx.app.sponsored else "unowned"),
            "organizationId": ctx.organization.id if ctx.organization else None,
            "dunningStage": ctx.dunning.dunning_stage if ctx.dunning else None,
            "claimIssue": ctx.claim_issue,
        }


def create_app():
    """Create FastAPI application."""
    service = LicensingService()
    return service.app


if __name__ == "__main__":
    service = LicensingService()
    service.run()
