"""
Pipeline orchestrator.

Runs bind, claim, block, dunning, permission and enforce in that order for
endpoints that need licensing data. Deliberate client errors (including
authorization denials) propagate. Anything else is an infrastructure fault:
the context is dropped, the fault is recorded and the request proceeds
without licensing data.
"""

from typing import Callable, Optional

from shared.errors import ClientError, InfrastructureFault
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_licensing.app.cache.entity_cache import EntityCache
from service_licensing.app.capabilities import Capability
from service_licensing.app.context import DecisionContext
from service_licensing.app.http.headers import NinjaHeaders
from service_licensing.app.models import GRACE_PERIOD_MS, now_ms
from service_licensing.app.pipeline import stages
from service_licensing.app.storage import paths
from service_licensing.app.storage.base import DocumentStore


class PipelineOrchestrator:
    """Builds the DecisionContext for one request."""

    def __init__(self, cache: EntityCache, store: DocumentStore, *,
                 private_backend: bool = False,
                 grace_period_ms: int = GRACE_PERIOD_MS,
                 clock: Optional[Callable[[], int]] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.store = store
        self.private_backend = private_backend
        self.grace_period_ms = grace_period_ms
        self.clock = clock or now_ms
        self.metrics = metrics
        self.logger = get_logger("licensing.orchestrator")

    async def run(self, headers: NinjaHeaders, capabilities: Capability,
                  ctx: Optional[DecisionContext] = None) -> Optional[DecisionContext]:
        """Populate ``ctx`` and return it, or return None when there is no context.

        A denial raised by the enforce stage leaves ``ctx`` populated so the
        caller can still apply its writebacks.
        """
        if self.private_backend or not capabilities.needs_billing:
            return None

        ctx = ctx if ctx is not None else DecisionContext()
        now = self.clock()
        stage = "prepare"

        try:
            if capabilities.enforces:
                # Enforcing handlers read fresh data
                self.cache.invalidate_all()

            stage = "bind"
            await stages.bind_stage(ctx, headers, self.cache, now, self.grace_period_ms)

            stage = "claim"
            await stages.claim_stage(ctx, headers, self.cache)

            stage = "block"
            await stages.block_stage(ctx, self.cache)

            stage = "dunning"
            stages.dunning_stage(ctx)

            if capabilities.enforces:
                stage = "permission"
                stages.permission_stage(ctx, headers, now, self.grace_period_ms)
                self._record_verdict(ctx)

                stage = "enforce"
                stages.enforce_stage(ctx)

        except ClientError:
            raise

        except Exception as e:
            fault = InfrastructureFault.from_exception(e, stage)
            self.logger.error(
                "Licensing pipeline fault, proceeding without context",
                stage=stage,
                error=fault.message,
                exc_info=True
            )
            if self.metrics:
                self.metrics.record_infrastructure_fault(stage)
            await self.record_fault(fault, stage)
            return None

        return ctx

    def _record_verdict(self, ctx: DecisionContext) -> None:
        if not self.metrics or ctx.verdict is None:
            return
        verdict = ctx.verdict
        if not verdict.allowed:
            self.metrics.record_verdict("denied", verdict.code.value)
        elif verdict.warning_body():
            self.metrics.record_verdict("warning", verdict.code.value)
        else:
            self.metrics.record_verdict("allowed")

    async def record_fault(self, fault: InfrastructureFault, stage: str) -> None:
        """Append to the fault log. Best effort."""
        entry = {"timestamp": self.clock(), "message": fault.message, "stage": stage}
        try:
            await self.store.append(paths.UNHANDLED_ERRORS_PATH, entry)
        except Exception as e:
            self.logger.error("Failed to record pipeline fault", stage=stage, error=str(e))
