"""
Unit tests for the pay-as-you-go billing log.
"""

import pytest

from shared.test_helpers import NOW_MS
from service_licensing.app.storage import paths
from service_licensing.app.storage.memory import InMemoryDocumentStore
from service_licensing.app.writeback.billing_log import (
    app_key,
    month_key,
    record_usage,
    update_billing_log,
)


APP_ID = "0c5f2b4e-8a1d-4c3b-9e7f-1a2b3c4d5e6f"


class TestBillingLog:
    """Test cases for billing log updates."""

    def test_month_key_is_utc(self):
        # 2025-10-31T23:59:59.999Z
        assert month_key(1761955199999) == "2025-10"
        assert month_key(1761955200000) == "2025-11"

    def test_first_usage_is_new(self):
        log, new_app, new_user = record_usage({}, "2025-10", APP_ID, "Fabrikam", "Jane@Fabrikam.com", NOW_MS)

        assert new_app and new_user
        month = log["2025-10"]
        assert month["apps"][app_key(APP_ID, "Fabrikam")] == {
            "id": APP_ID, "publisher": "Fabrikam", "firstSeen": NOW_MS, "count": 1
        }
        assert month["users"]["jane@fabrikam.com"]["count"] == 1

    def test_repeat_usage_counts(self):
        log, _, _ = record_usage({}, "2025-10", APP_ID, "Fabrikam", "jane@fabrikam.com", NOW_MS)
        log, new_app, new_user = record_usage(log, "2025-10", APP_ID, "Fabrikam", "JANE@fabrikam.com", NOW_MS + 1)

        assert not new_app and not new_user
        assert log["2025-10"]["apps"][app_key(APP_ID, "Fabrikam")]["firstSeen"] == NOW_MS
        assert log["2025-10"]["users"]["jane@fabrikam.com"]["count"] == 2

    def test_new_month_starts_fresh(self):
        log, _, _ = record_usage({}, "2025-10", APP_ID, "Fabrikam", "jane@fabrikam.com", NOW_MS)
        log, new_app, new_user = record_usage(log, "2025-11", APP_ID, "Fabrikam", "jane@fabrikam.com", NOW_MS)

        assert new_app and new_user
        assert set(log) == {"2025-10", "2025-11"}

    @pytest.mark.asyncio
    async def test_update_billing_log(self):
        store = InMemoryDocumentStore()

        first = await update_billing_log(store, "org-1", APP_ID, "Fabrikam", "jane@fabrikam.com", NOW_MS)
        second = await update_billing_log(store, "org-1", APP_ID, "Fabrikam", "joe@fabrikam.com", NOW_MS)

        assert first.month == "2025-10"
        assert first.app_key == f"{APP_ID}|Fabrikam"
        assert (first.new_app, first.new_user) == (True, True)
        assert (second.new_app, second.new_user) == (False, True)
        assert len(store.snapshot(paths.billing_log_path("org-1"))["2025-10"]["users"]) == 2
