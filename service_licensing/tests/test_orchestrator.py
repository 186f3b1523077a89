"""
Unit tests for the pipeline orchestrator.
"""

from unittest.mock import AsyncMock, patch

import pytest

from shared.errors import AuthorizationDenied, ValidationError
from shared.metrics import MetricsCollector
from shared.test_helpers import DAY_MS, NOW_MS, FakeClock, TestDataFactory
from service_licensing.app.cache.entity_cache import EntityCache
from service_licensing.app.capabilities import Capability
from service_licensing.app.claims import ClaimOutcome
from service_licensing.app.context import DecisionContext, WritebackIntent
from service_licensing.app.http.headers import NinjaHeaders
from service_licensing.app.models import OwnerKind, WarningCode
from service_licensing.app.pipeline.orchestrator import PipelineOrchestrator
from service_licensing.app.pipeline.postprocess import (
    CLAIM_ISSUE_HEADER,
    DUNNING_WARNING_HEADER,
    postprocess_success,
)
from service_licensing.app.storage import paths
from service_licensing.app.storage.memory import InMemoryDocumentStore
from service_licensing.app.writeback.engine import WritebackEngine


APP_ID = "0c5f2b4e-8a1d-4c3b-9e7f-1a2b3c4d5e6f"
ORG_APP_ID = "11111111-2222-3333-4444-555555555555"
ENFORCED = Capability.SECURITY | Capability.USAGE_LOGGING


def headers_for(app_id=APP_ID, email="jane@fabrikam.com", publisher="Fabrikam") -> NinjaHeaders:
    return NinjaHeaders(app_id=app_id, git_user_email=email, app_publisher=publisher, client_version="3.1.0")


class TestPipelineOrchestrator:
    """Test cases for PipelineOrchestrator."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore({
            paths.APPS_PATH: [
                TestDataFactory.create_app(ORG_APP_ID, publisher="Contoso",
                                           owner_type="organization", owner_id="org-2"),
            ],
            paths.USERS_PATH: [],
            paths.ORGANIZATIONS_PATH: [
                TestDataFactory.create_organization("org-1", publishers=["Fabrikam"], domains=["fabrikam.com"]),
                TestDataFactory.create_organization("org-2", users=["joe@contoso.com"]),
            ],
            paths.BLOCKED_PATH: TestDataFactory.create_blocked({}),
            paths.DUNNING_PATH: [TestDataFactory.create_dunning_entry("org-2", stage=1)],
        })

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("licensing-test")

    @pytest.fixture
    def cache(self, store, clock, metrics):
        return EntityCache(store, clock=clock, metrics=metrics)

    @pytest.fixture
    def orchestrator(self, cache, store, clock, metrics):
        return PipelineOrchestrator(cache, store, clock=clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_private_backend_has_no_context(self, cache, store, clock):
        orchestrator = PipelineOrchestrator(cache, store, private_backend=True, clock=clock)
        assert await orchestrator.run(headers_for(), ENFORCED) is None

    @pytest.mark.asyncio
    async def test_handlers_without_billing_have_no_context(self, orchestrator):
        assert await orchestrator.run(headers_for(), Capability.NONE) is None

    @pytest.mark.asyncio
    async def test_new_app_is_claimed_by_domain(self, orchestrator):
        ctx = await orchestrator.run(headers_for(), ENFORCED)

        assert ctx.app.id == APP_ID
        assert ctx.app.owner_kind is OwnerKind.ORGANIZATION
        assert ctx.organization.id == "org-1"
        assert ctx.claim.outcome is ClaimOutcome.CLAIM
        assert ctx.intents[:2] == [WritebackIntent.REGISTER_UNOWNED, WritebackIntent.CLAIM]
        assert ctx.has(WritebackIntent.PROMOTE_USER)
        assert ctx.verdict.allowed

    @pytest.mark.asyncio
    async def test_malformed_app_id_is_not_registered(self, orchestrator):
        ctx = await orchestrator.run(headers_for(app_id="{not-a-guid}"), ENFORCED)

        assert ctx.app is None
        assert ctx.intents == []
        assert ctx.verdict.allowed

    @pytest.mark.asyncio
    async def test_unresolved_claim_is_flagged(self, orchestrator, clock):
        ctx = await orchestrator.run(headers_for(email="someone@northwind.com"), ENFORCED)
        body, headers = postprocess_success(ctx, {"licensed": True}, clock())

        assert ctx.app.is_unowned
        assert ctx.claim_issue
        assert headers[CLAIM_ISSUE_HEADER] == "true"
        assert body["warning"] == {"code": WarningCode.GRACE_PERIOD.value, "timeRemaining": 15 * DAY_MS}

    @pytest.mark.asyncio
    async def test_organization_app_binds_dunning(self, orchestrator, clock):
        ctx = await orchestrator.run(
            headers_for(app_id=ORG_APP_ID, email="joe@contoso.com", publisher="Contoso"), ENFORCED
        )
        _, headers = postprocess_success(ctx, None, clock())

        assert ctx.organization.id == "org-2"
        assert ctx.dunning.dunning_stage == 1
        assert headers[DUNNING_WARNING_HEADER] == "true"

    @pytest.mark.asyncio
    async def test_dunning_failure_is_advisory(self, orchestrator, cache):
        with patch.object(cache, "get_dunning_entry", new_callable=AsyncMock) as mock_dunning:
            mock_dunning.side_effect = ConnectionError("storage unavailable")
            ctx = await orchestrator.run(
                headers_for(app_id=ORG_APP_ID, email="joe@contoso.com", publisher="Contoso"), ENFORCED
            )

        assert ctx is not None
        assert ctx.dunning is None
        assert ctx.verdict.allowed

    @pytest.mark.asyncio
    async def test_missing_owner_is_cleared(self, orchestrator, store):
        await store.put(paths.APPS_PATH, [
            TestDataFactory.create_app(APP_ID, owner_type="user", owner_id="ghost"),
        ])

        ctx = await orchestrator.run(headers_for(email="someone@northwind.com"), Capability.BILLING)

        assert ctx.app.is_unowned
        assert ctx.has(WritebackIntent.FORCE_UNOWNED)
        assert ctx.verdict is None

    @pytest.mark.asyncio
    async def test_claim_replacing_missing_owner_is_persisted(self, orchestrator, cache, store, clock):
        await store.put(paths.APPS_PATH, [
            TestDataFactory.create_app(APP_ID, owner_type="user", owner_id="ghost"),
        ])
        engine = WritebackEngine(store, cache, AsyncMock(), clock=clock)
        headers = headers_for()

        ctx = await orchestrator.run(headers, ENFORCED)
        await engine.perform(ctx, headers)

        assert ctx.verdict.allowed
        assert ctx.has(WritebackIntent.FORCE_UNOWNED)
        assert ctx.has(WritebackIntent.CLAIM)
        assert ctx.app.owner_id == "org-1"
        stored = store.snapshot(paths.APPS_PATH)[0]
        assert stored["ownerType"] == "organization"
        assert stored["ownerId"] == "org-1"
        assert (await cache.get_app(APP_ID, "Fabrikam")).owner_id == "org-1"

    @pytest.mark.asyncio
    async def test_denial_propagates_with_context(self, orchestrator, store, metrics):
        await store.put(paths.BLOCKED_PATH, TestDataFactory.create_blocked({"org-2": "payment_failed"}))
        ctx = DecisionContext()

        with pytest.raises(AuthorizationDenied) as exc_info:
            await orchestrator.run(
                headers_for(app_id=ORG_APP_ID, email="joe@contoso.com", publisher="Contoso"), ENFORCED, ctx
            )

        assert exc_info.value.to_body() == {"error": {"code": "PAYMENT_FAILED"}}
        assert ctx.organization.id == "org-2"
        assert not ctx.verdict.allowed
        assert metrics.get_metric_value("verdicts_total", outcome="denied", code="PAYMENT_FAILED") == 1

    @pytest.mark.asyncio
    async def test_missing_app_id_is_a_client_error(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.run(headers_for(app_id=None), ENFORCED)

    @pytest.mark.asyncio
    async def test_fault_fails_open_and_is_recorded_once(self, orchestrator, cache, store, metrics):
        with patch.object(cache, "get_app", new_callable=AsyncMock) as mock_get_app:
            mock_get_app.side_effect = RuntimeError("storage unavailable")
            ctx = await orchestrator.run(headers_for(), ENFORCED)

        assert ctx is None
        assert store.snapshot(paths.UNHANDLED_ERRORS_PATH) == [
            {"timestamp": NOW_MS, "message": "storage unavailable", "stage": "bind"}
        ]
        assert metrics.get_metric_value("infrastructure_faults_total", stage="bind") == 1

    @pytest.mark.asyncio
    async def test_fault_log_failure_is_swallowed(self, orchestrator, cache, store):
        with patch.object(cache, "get_organizations", new_callable=AsyncMock) as mock_orgs, \
                patch.object(store, "append", new_callable=AsyncMock) as mock_append:
            mock_orgs.side_effect = RuntimeError("storage unavailable")
            mock_append.side_effect = RuntimeError("still unavailable")
            ctx = await orchestrator.run(headers_for(), ENFORCED)

        assert ctx is None
        mock_append.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enforcing_handlers_read_fresh_data(self, orchestrator, store):
        await orchestrator.run(headers_for(), Capability.BILLING)
        await store.put(paths.BLOCKED_PATH, TestDataFactory.create_blocked({"org-1": "flagged"}))

        # Cached snapshot still serves non-enforcing handlers
        ctx = await orchestrator.run(headers_for(), Capability.BILLING)
        assert ctx.organization.id == "org-1"
        assert ctx.blocked is None

        with pytest.raises(AuthorizationDenied):
            await orchestrator.run(headers_for(), ENFORCED)
