"""
Parcel Service - The two entry points the marketplace backend calls.

- check_overlap: may this boundary be registered? (auto-removes blocking
  submissions when the caller says which listing and uploader it was)
- calculate_risk: flood risk profile for a parcel

Both are per-request and share no mutable state.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, List, Optional

from core.config import Settings, get_settings
from core.geometry import area, parse_polygon
from core.interfaces import NotificationSink, PolygonRepository
from core.models import FraudSignal, OverlapDecision, OverlapPair, RiskProfile
from core.overlap import detect_fraud_signals, detect_overlaps, scan_overlap_pairs, REVIEW_THRESHOLD_PERCENT
from core.remediation import RemediationState, RemediationWorkflow
from core.risk_scoring import build_environmental_notes, score

log = logging.getLogger(__name__)


class ParcelService:
    """
    Orchestrates parsing, detection, remediation and risk scoring.

    Usage:
        service = ParcelService(registry, sink, pipeline)
        decision = service.check_overlap(geojson, exclude_listing_id="L-9",
                                         listing_title="Plot 7", uploader_id="user-3")
        profile = service.calculate_risk("L-9", geojson)
    """

    def __init__(
        self,
        repository: PolygonRepository,
        sink: NotificationSink,
        pipeline: Any = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.sink = sink
        self.pipeline = pipeline
        self.settings = settings or get_settings()
        self.remediation = RemediationWorkflow(repository, sink, review_url=self.settings.review_url)

    def check_overlap(
        self,
        geojson: Any,
        exclude_listing_id: Optional[str] = None,
        listing_title: Optional[str] = None,
        uploader_id: Optional[str] = None,
    ) -> OverlapDecision:
        """
        Decide whether a boundary may be registered.

        When the boundary is blocking and both exclude_listing_id (the
        just-created listing) and uploader_id are given, that listing is
        deleted and everyone concerned is notified.

        Raises:
            InvalidGeometry: the boundary is malformed (nothing else happens)
            RepositoryError: registered boundaries could not be read
        """
        polygon = parse_polygon(geojson)
        candidates = self.repository.list_active_polygons(exclude_id=exclude_listing_id)
        decision = detect_overlaps(polygon, candidates)

        if decision.can_proceed:
            return decision

        outcome = self.remediation.run(decision, exclude_listing_id, listing_title, uploader_id)
        if outcome.state is RemediationState.CHECKED:
            log.info("Blocking overlap found without submission context; nothing removed")
            return decision
        if outcome.state is RemediationState.REJECTION_FAILED:
            return replace(decision, remediation_error=outcome.error)
        return replace(decision, was_auto_deleted=outcome.deleted)

    def calculate_risk(self, listing_id: str, geojson: Any) -> RiskProfile:
        """
        Build a flood risk profile for a parcel.

        Never persists anything; store the result with
        ParcelRegistry.upsert_risk_profile.

        Raises:
            InvalidGeometry: the boundary is malformed (no provider is queried)
        """
        polygon = parse_polygon(geojson)
        if self.pipeline is None:
            raise RuntimeError("ParcelService was created without an enrichment pipeline")

        evidence = self.pipeline.enrich(polygon)
        assessment = score(evidence, area(polygon))

        profile = RiskProfile(
            parcel_id=listing_id,
            flood_risk_score=assessment.score,
            flood_risk_level=assessment.level,
            near_river=evidence.near_river,
            distance_to_river_m=evidence.distance_to_river_m,
            elevation_m=evidence.elevation_m,
            slope_percent=evidence.slope_percent,
            terrain_variation_m=evidence.terrain_variation_m,
            environmental_notes=build_environmental_notes(assessment, evidence),
            calculated_at=datetime.now(timezone.utc),
            data_availability=evidence.data_availability,
            risk_factors=assessment.risk_factors,
            protective_factors=assessment.protective_factors,
        )
        log.info(f"Risk for {listing_id}: {profile.flood_risk_score} ({profile.flood_risk_level.value})")
        return profile

    def fraud_signals(self, geojson: Any, exclude_listing_id: Optional[str] = None) -> List[FraudSignal]:
        """Duplicate / similar boundary signals for a submission."""
        polygon = parse_polygon(geojson)
        candidates = self.repository.list_active_polygons(exclude_id=exclude_listing_id)
        return detect_fraud_signals(polygon, candidates)

    def scan_registry(self, min_percentage: float = REVIEW_THRESHOLD_PERCENT) -> List[OverlapPair]:
        """Every overlapping pair of registered parcels, worst first."""
        return scan_overlap_pairs(self.repository.list_active_polygons(), min_percentage)
