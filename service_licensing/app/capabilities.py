"""
Handler capabilities.

Each endpoint declares what it needs from the licensing pipeline. Higher
capabilities imply the lower ones they depend on.
"""

from enum import Flag, auto


class Capability(Flag):
    NONE = 0
    BILLING = auto()
    LOGGING = auto()
    USAGE_LOGGING = auto()
    SECURITY = auto()

    def expanded(self) -> "Capability":
        """This set plus everything it implies."""
        result = self
        if result & Capability.SECURITY:
            result |= Capability.LOGGING | Capability.BILLING
        if result & (Capability.USAGE_LOGGING | Capability.LOGGING):
            result |= Capability.BILLING
        return result

    @property
    def needs_billing(self) -> bool:
        return bool(self.expanded() & Capability.BILLING)

    @property
    def enforces(self) -> bool:
        return bool(self & Capability.SECURITY)

    @property
    def logs_usage(self) -> bool:
        return bool(self & Capability.USAGE_LOGGING)

    @property
    def logs_invocation(self) -> bool:
        return bool(self.expanded() & Capability.LOGGING)
