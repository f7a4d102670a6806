"""
Error taxonomy for the fast-routing harness.

Each class documents how much of the run it aborts. Check mismatches are
never raised: they are reported as failed checks and the run continues.
"""

__all__ = [
    "HarnessError",
    "TargetConnectionError",
    "ProvisioningError",
    "IntrospectionUnavailable",
    "ParseError",
    "EmptyResultError",
    "LogAccessError",
]


class HarnessError(Exception):
    """Base class for all harness errors."""


class TargetConnectionError(HarnessError):
    """Could not connect to the ProxySQL admin or client interface. Aborts all scenarios."""


class ProvisioningError(HarnessError):
    """A fixture write failed. Aborts the current scenario."""


class IntrospectionUnavailable(HarnessError):
    """Session introspection resolved to the unknown sentinel. Aborts the current range check."""

    def __init__(self, message: str, schema: str = "", query: str = ""):
        super().__init__(message)
        self.schema = schema
        self.query = query


class ParseError(HarnessError):
    """A stats value could not be parsed as an integer. Aborts the current scenario."""


class EmptyResultError(HarnessError):
    """A stats query returned no row. Aborts the current scenario."""


class LogAccessError(HarnessError, IOError):
    """The log file cannot be opened or read. Aborts all scenarios."""
