"""
Request handling around licensing endpoints.

Order per request: parse headers, version guard, licensing pipeline,
endpoint handler, success post-processing. Writebacks are scheduled once
the outcome is known, whether the request succeeded or failed.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.errors import LicensingException
from shared.logging import get_logger, set_caller_context
from service_licensing.app.capabilities import Capability
from service_licensing.app.context import DecisionContext
from service_licensing.app.http.headers import NinjaHeaders, parse_ninja_headers
from service_licensing.app.http.versioning import check_version
from service_licensing.app.models import now_ms
from service_licensing.app.pipeline.orchestrator import PipelineOrchestrator
from service_licensing.app.pipeline.postprocess import advisory_headers, postprocess_success
from service_licensing.app.writeback.engine import WritebackEngine


@dataclass
class LicensingRequest:
    """What an endpoint handler receives."""
    request: Request
    headers: NinjaHeaders
    context: Optional[DecisionContext] = None


EndpointHandler = Callable[[LicensingRequest], Awaitable[Any]]


@dataclass(frozen=True)
class Endpoint:
    """Registration record: route, handler and what it needs from the pipeline."""
    moniker: str
    path: str
    handler: EndpointHandler
    methods: Tuple[str, ...] = ("POST",)
    capabilities: Capability = field(default=Capability.NONE)


class RequestHandler:
    """Runs one endpoint invocation through the licensing pipeline."""

    def __init__(self, orchestrator: PipelineOrchestrator, writeback: WritebackEngine,
                 minimum_client_version: str, clock: Optional[Callable[[], int]] = None):
        self.orchestrator = orchestrator
        self.writeback = writeback
        self.minimum_client_version = minimum_client_version
        self.clock = clock or now_ms
        self.logger = get_logger("licensing.handler")

    async def handle(self, endpoint: Endpoint, request: Request) -> Response:
        start_time = time.time()
        headers: Optional[NinjaHeaders] = None
        ctx: Optional[DecisionContext] = None
        status_code = 500

        try:
            headers = parse_ninja_headers(request.headers)
            set_caller_context(headers.app_id, headers.git_user_email)
            check_version(headers.client_version, self.minimum_client_version)

            ctx = DecisionContext()
            try:
                ctx = await self.orchestrator.run(headers, endpoint.capabilities, ctx)
            except LicensingException as e:
                e.headers.update(advisory_headers(ctx))
                raise

            body = await endpoint.handler(LicensingRequest(request, headers, ctx))
            body, extra_headers = postprocess_success(ctx, body, self.clock())

            status_code = 200
            if body is None:
                return Response(status_code=status_code, headers=extra_headers)
            return JSONResponse(content=body, status_code=status_code, headers=extra_headers)

        except LicensingException as e:
            status_code = e.status_code
            raise

        finally:
            self.writeback.schedule(ctx, headers, endpoint.capabilities, endpoint.moniker)

            if endpoint.capabilities.logs_invocation:
                code = getattr(ctx.verdict, "code", None) if ctx else None
                self.logger.info(
                    "Endpoint invoked",
                    moniker=endpoint.moniker,
                    status_code=status_code,
                    owner_kind=ctx.owner_kind.value if ctx and ctx.owner_kind else None,
                    verdict_code=code.value if code else None,
                    duration_ms=round((time.time() - start_time) * 1000, 2)
                )
