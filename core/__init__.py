"""
Core module for the Parcel Engine.
Contains geometry, overlap detection, remediation, risk scoring and storage.
"""

from core.errors import (
    ParcelEngineError,
    InvalidGeometry,
    ProviderUnavailable,
    RepositoryError,
    NotificationError,
)
from core.geometry import Polygon, BoundingBox, parse_polygon, validate_polygon
from core.models import OverlapDecision, OverlapResult, RiskProfile, RiskLevel, GeoEvidence
from core.overlap import detect_overlaps, detect_fraud_signals, scan_overlap_pairs
from core.remediation import RemediationWorkflow, RemediationState, RemediationOutcome
from core.risk_scoring import score, classify_level, build_environmental_notes
from core.registry import ParcelRegistry
from core.notifications import SQLiteNotificationSink
from core.service import ParcelService

__all__ = [
    # Errors
    "ParcelEngineError",
    "InvalidGeometry",
    "ProviderUnavailable",
    "RepositoryError",
    "NotificationError",
    # Geometry
    "Polygon",
    "BoundingBox",
    "parse_polygon",
    "validate_polygon",
    # Models
    "OverlapDecision",
    "OverlapResult",
    "RiskProfile",
    "RiskLevel",
    "GeoEvidence",
    # Pipelines
    "detect_overlaps",
    "detect_fraud_signals",
    "scan_overlap_pairs",
    "RemediationWorkflow",
    "RemediationState",
    "RemediationOutcome",
    "score",
    "classify_level",
    "build_environmental_notes",
    # Storage & orchestration
    "ParcelRegistry",
    "SQLiteNotificationSink",
    "ParcelService",
]
