"""
Unit tests for handler capabilities.
"""

from service_licensing.app.capabilities import Capability


class TestCapability:
    """Test cases for Capability."""

    def test_security_implies_logging_and_billing(self):
        expanded = Capability.SECURITY.expanded()

        assert expanded & Capability.LOGGING
        assert expanded & Capability.BILLING
        assert not expanded & Capability.USAGE_LOGGING

    def test_usage_logging_implies_billing(self):
        capability = Capability.USAGE_LOGGING

        assert capability.needs_billing
        assert capability.logs_usage
        assert not capability.enforces

    def test_none_needs_nothing(self):
        assert not Capability.NONE.needs_billing
        assert not Capability.NONE.logs_invocation

    def test_enforcing_endpoint(self):
        capability = Capability.SECURITY | Capability.USAGE_LOGGING

        assert capability.enforces
        assert capability.logs_invocation
        assert capability.logs_usage
