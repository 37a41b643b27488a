"""
Error taxonomy for the abuse gateway.

ValidationError and StorageError surface to callers; CorrelationFailure
is confined to the advisory ban-evasion path; StoreTimeout lets the
enforcement engine tell a slow store apart from a broken one.
"""


class GatewayError(Exception):
    """Base class for gateway errors."""


class ValidationError(GatewayError):
    """Malformed or missing payload fields."""


class StorageError(GatewayError):
    """Record store unreachable or returned an unexpected error."""


class StoreTimeout(StorageError):
    """Record store call exceeded its timeout."""


class CorrelationFailure(GatewayError):
    """Ban-evasion lookup could not be completed."""
