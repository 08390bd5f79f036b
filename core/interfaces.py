"""
Collaborator contracts.

The engine never talks to storage, mail or geodata services directly; it
goes through these interfaces so decision logic can be tested without any
network or database. core.registry and core.notifications provide SQLite
implementations, loaders.overpass and loaders.elevation the HTTP ones.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from core.models import ParcelCandidate


class PolygonRepository(ABC):
    """Read registered boundaries and delete a listing's data."""

    @abstractmethod
    def list_active_polygons(self, exclude_id: Optional[str] = None) -> List[ParcelCandidate]:
        """
        Registered boundaries of listings that are neither draft nor archived.

        Raises:
            RepositoryError: the listing could not be read
        """

    @abstractmethod
    def delete_listing_artifacts(self, listing_id: str) -> None:
        """
        Delete a listing's boundary and media, then the listing itself.

        Raises:
            RepositoryError: nothing was deleted or deletion stopped part way
        """


class NotificationSink(ABC):
    """In-app notifications, audit trail and email."""

    @abstractmethod
    def notify_user(self, user_id: str, title: str, message: str, link: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def notify_admins(self, title: str, message: str, link: Optional[str] = None) -> int:
        """Notify every administrator. Returns how many were notified."""

    @abstractmethod
    def append_audit_log(self, action_type: str, actor_id: Optional[str], details: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def send_email(self, to: str, subject: str, html: str) -> bool:
        """
        Send an email to a user id or address. Best-effort.

        Returns:
            True if handed to the mail server, False if skipped
        """


class FeatureQueryProvider(ABC):
    """Tag-queryable map feature source (hydrology, land use)."""

    @abstractmethod
    def query_features(self, lat: float, lon: float, specs: Sequence[Any]) -> List[Any]:
        """
        Features matching any of the tag specs around a point.

        Raises:
            ProviderUnavailable: the provider failed; callers treat this as
                "zero features, category unavailable"
        """


class ElevationProvider(ABC):
    """Point elevation lookup."""

    @abstractmethod
    def get_elevation(self, lat: float, lon: float) -> float:
        """
        Elevation in meters.

        Raises:
            ProviderUnavailable: no elevation could be obtained
        """
