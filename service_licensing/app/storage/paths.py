"""
Document paths used by the licensing backend.
"""

APPS_PATH = "system://apps.json"
USERS_PATH = "system://users.json"
ORGANIZATIONS_PATH = "system://organizations.json"
BLOCKED_PATH = "system://blocked.json"
DUNNING_PATH = "system://dunning.json"
UNHANDLED_ERRORS_PATH = "system://unhandledErrors.json"


def feature_log_path(org_id: str) -> str:
    return f"logs://{org_id}_featureLog.json"


def unknown_users_path(org_id: str) -> str:
    return f"logs://{org_id}_unknown.json"


def billing_log_path(org_id: str) -> str:
    return f"logs://{org_id}_billingLog.json"
