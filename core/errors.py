"""
Error types for the parcel engine.

InvalidGeometry is fatal and propagates to the caller before any external
query is issued. ProviderUnavailable and NotificationError are caught where
they happen and degrade the result instead of failing it. RepositoryError is
fatal for remediation but never for the geometric decision.
"""

from typing import List, Optional


class ParcelEngineError(Exception):
    """Base class for all parcel engine errors."""


class InvalidGeometry(ParcelEngineError):
    """A submitted boundary could not be parsed into a valid polygon."""

    def __init__(self, reasons: List[str]):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "Invalid polygon geometry")


class ProviderUnavailable(ParcelEngineError):
    """An external geodata provider failed, timed out, or returned garbage."""

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        super().__init__(f"{provider} unavailable: {message}" if message else f"{provider} unavailable")


class RepositoryError(ParcelEngineError):
    """Listing polygons could not be read or a listing could not be deleted."""

    def __init__(self, message: str, listing_id: Optional[str] = None):
        self.listing_id = listing_id
        super().__init__(message)


class NotificationError(ParcelEngineError):
    """A notification, audit entry or email could not be delivered."""
