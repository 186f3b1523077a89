"""
Response post-processing: warnings in the body, advisories in headers.
"""

from typing import Any, Dict, Optional, Tuple

from service_licensing.app.context import DecisionContext
from service_licensing.app.models import WarningCode
from service_licensing.app.pipeline.stages import dunning_stage


DUNNING_WARNING_HEADER = "X-Ninja-Dunning-Warning"
CLAIM_ISSUE_HEADER = "X-Ninja-Claim-Issue"


def permission_warning(ctx: DecisionContext, now: int) -> Optional[Dict[str, Any]]:
    """Warning from the verdict, else the grace period of an unowned app."""
    if ctx.verdict is not None and ctx.verdict.allowed:
        warning = ctx.verdict.warning_body()
        if warning:
            return warning

    app = ctx.app
    if app is not None and app.is_unowned:
        remaining = app.free_until - now
        if remaining > 0:
            return {"code": WarningCode.GRACE_PERIOD.value, "timeRemaining": remaining}

    return None


def advisory_headers(ctx: Optional[DecisionContext]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if ctx is None:
        return headers
    if dunning_stage(ctx):
        headers[DUNNING_WARNING_HEADER] = "true"
    if ctx.claim_issue:
        headers[CLAIM_ISSUE_HEADER] = "true"
    return headers


def postprocess_success(ctx: Optional[DecisionContext], body: Any, now: int) -> Tuple[Any, Dict[str, str]]:
    """Augmented body and extra headers for a successful response."""
    if ctx is None:
        return body, {}

    warning = permission_warning(ctx, now)
    if warning:
        if body is None:
            body = {"warning": warning}
        elif isinstance(body, dict):
            body = {**body, "warning": warning}

    return body, advisory_headers(ctx)
