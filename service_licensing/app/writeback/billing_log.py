"""
Monthly billing log for pay-as-you-go organizations.

``logs://{orgId}_billingLog.json`` is keyed by UTC ``YYYY-MM``; each month
records the apps (``"{appId}|{publisher}"``) and users (normalized email)
seen, with first-seen time and a use count.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from service_licensing.app.normalize import normalize
from service_licensing.app.storage import paths
from service_licensing.app.storage.base import DocumentStore


@dataclass(frozen=True)
class BillingLogUpdate:
    """Outcome of recording one usage."""
    month: str
    app_key: str
    email: str
    new_app: bool
    new_user: bool


def month_key(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m")


def app_key(app_id: str, publisher: str) -> str:
    return f"{app_id}|{publisher}"


def record_usage(log: Dict[str, Any], month: str, app_id: str, publisher: str,
                 email: str, now: int) -> Tuple[Dict[str, Any], bool, bool]:
    """Count one usage in ``log``. Returns the log and whether app/user are new this month."""
    log = dict(log or {})
    entry = log.get(month) or {}
    apps = dict(entry.get("apps") or {})
    users = dict(entry.get("users") or {})

    key = app_key(app_id, publisher)
    new_app = key not in apps
    if new_app:
        apps[key] = {"id": app_id, "publisher": publisher, "firstSeen": now, "count": 1}
    else:
        apps[key] = {**apps[key], "count": apps[key].get("count", 0) + 1}

    email_norm = normalize(email)
    new_user = email_norm not in users
    if new_user:
        users[email_norm] = {"email": email, "firstSeen": now, "count": 1}
    else:
        users[email_norm] = {**users[email_norm], "count": users[email_norm].get("count", 0) + 1}

    log[month] = {**entry, "apps": apps, "users": users}
    return log, new_app, new_user


async def update_billing_log(store: DocumentStore, org_id: str, app_id: str, publisher: str,
                             email: str, now: int) -> BillingLogUpdate:
    """Record a usage under the current month, retrying on conflict."""
    month = month_key(now)
    outcome = {"new_app": False, "new_user": False}

    def transform(current: Dict[str, Any]) -> Dict[str, Any]:
        # Reset on every attempt; only the committed attempt counts
        updated, outcome["new_app"], outcome["new_user"] = record_usage(
            current, month, app_id, publisher, email, now
        )
        return updated

    await store.optimistic_update(paths.billing_log_path(org_id), transform, {})
    return BillingLogUpdate(
        month=month,
        app_key=app_key(app_id, publisher),
        email=normalize(email),
        new_app=outcome["new_app"],
        new_user=outcome["new_user"],
    )
