"""
Exceptions raised by the scraper database layer.

None of these are retried or swallowed here; the caller owns retry policy.
"""


class StoreError(Exception):
    """Base class for all scraper database errors."""


class QueryError(StoreError):
    """The relational store failed to execute a query or could not be reached."""


class DecodeError(StoreError):
    """Stored bytes (or supplied hex) cannot be read back as a protocol value."""


class InvariantViolation(StoreError):
    """A store operation was called in a way that breaks its contract."""
