"""
Core data models for the parcel engine.

All values here are created fresh per request and never mutated; derived
copies are made with dataclasses.replace.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core.geometry import Polygon


# ═══════════════════════════════════════════════════════════════════════════
# OVERLAP
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ParcelCandidate:
    """An already-registered parcel boundary to compare against."""
    parcel_id: str
    title: str
    owner_ref: Optional[str]
    polygon: Polygon


@dataclass(frozen=True)
class OverlapResult:
    """Overlap between the submitted boundary and one registered parcel."""
    other_parcel_id: str
    other_parcel_title: str
    owner_ref: Optional[str]
    overlap_percentage: float   # 0-100, one decimal
    overlap_area_m2: float
    other_polygon: Polygon

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing_id": self.other_parcel_id,
            "listing_title": self.other_parcel_title,
            "owner_ref": self.owner_ref,
            "overlap_percentage": self.overlap_percentage,
            "overlap_area_m2": round(self.overlap_area_m2),
            "geojson": self.other_polygon.to_geojson(),
        }


@dataclass(frozen=True)
class OverlapDecision:
    """
    The answer to "can this boundary be registered?".

    Always reflects the geometric finding, even when remediation fails;
    remediation_error carries the failure in that case.
    """
    can_proceed: bool
    has_overlaps: bool
    max_overlap_percentage: float
    top_overlaps: Tuple[OverlapResult, ...]
    message: str
    was_auto_deleted: bool = False
    remediation_error: Optional[str] = None

    @property
    def worst_overlap(self) -> Optional[OverlapResult]:
        return self.top_overlaps[0] if self.top_overlaps else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_proceed": self.can_proceed,
            "has_overlaps": self.has_overlaps,
            "max_overlap_percentage": self.max_overlap_percentage,
            "was_auto_deleted": self.was_auto_deleted,
            "overlapping_properties": [o.to_dict() for o in self.top_overlaps],
            "message": self.message,
            "remediation_error": self.remediation_error,
        }


@dataclass(frozen=True)
class OverlapPair:
    """Two registered parcels that overlap, for the admin review surface."""
    first_id: str
    first_title: str
    second_id: str
    second_title: str
    overlap_percentage: float
    overlap_area_m2: float
    is_blocking: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing1_id": self.first_id,
            "listing1_title": self.first_title,
            "listing2_id": self.second_id,
            "listing2_title": self.second_title,
            "overlap_percentage": self.overlap_percentage,
            "overlap_area_m2": round(self.overlap_area_m2),
            "is_blocking": self.is_blocking,
        }


@dataclass(frozen=True)
class FraudSignal:
    """A suspicious-boundary signal raised against a submission."""
    signal_type: str     # "duplicate_polygon", "similar_polygon"
    signal_score: int
    details: str
    other_parcel_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal_type": self.signal_type,
            "signal_score": self.signal_score,
            "details": self.details,
            "other_parcel_id": self.other_parcel_id,
        }


# ═══════════════════════════════════════════════════════════════════════════
# RISK
# ═══════════════════════════════════════════════════════════════════════════
class RiskLevel(Enum):
    """Flood risk classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class DataAvailability:
    """Which evidence categories were actually gathered."""
    hydrology: bool = False
    elevation: bool = False
    land_use: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "hydrology": self.hydrology,
            "elevation": self.elevation,
            "land_use": self.land_use,
        }


@dataclass(frozen=True)
class GeoEvidence:
    """
    Everything the enrichment pipeline learned about a parcel's surroundings.

    Distances are None when nothing of that kind was found (or the category
    was unavailable); check data_availability before reading absence as
    a fact.
    """
    # Hydrology
    near_river: bool = False
    distance_to_river_m: Optional[float] = None
    water_body_count: int = 0
    nearest_lake_distance_m: Optional[float] = None
    wetland_count: int = 0
    drainage_count: int = 0
    spring_count: int = 0

    # Terrain
    elevation_m: Optional[float] = None
    slope_percent: Optional[float] = None
    terrain_variation_m: Optional[float] = None
    elevation_samples: int = 0  # perimeter samples that came back from the provider

    # Land use
    flood_zone_nearby: bool = False
    agricultural: bool = False
    developed: bool = False

    data_availability: DataAvailability = field(default_factory=DataAvailability)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "near_river": self.near_river,
            "distance_to_river_m": self.distance_to_river_m,
            "water_body_count": self.water_body_count,
            "nearest_lake_distance_m": self.nearest_lake_distance_m,
            "wetland_count": self.wetland_count,
            "drainage_count": self.drainage_count,
            "spring_count": self.spring_count,
            "elevation_m": self.elevation_m,
            "slope_percent": self.slope_percent,
            "terrain_variation_m": self.terrain_variation_m,
            "elevation_samples": self.elevation_samples,
            "flood_zone_nearby": self.flood_zone_nearby,
            "agricultural": self.agricultural,
            "developed": self.developed,
            "data_availability": self.data_availability.to_dict(),
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Output of the scoring model."""
    score: int
    level: RiskLevel
    risk_factors: Tuple[str, ...]
    protective_factors: Tuple[str, ...]


@dataclass(frozen=True)
class RiskProfile:
    """Flood risk profile for a parcel; at most one per parcel, fully replaced on recalculation."""
    parcel_id: str
    flood_risk_score: int
    flood_risk_level: RiskLevel
    near_river: bool
    distance_to_river_m: Optional[float]
    elevation_m: Optional[float]
    slope_percent: Optional[float]
    terrain_variation_m: Optional[float]
    environmental_notes: str
    calculated_at: datetime
    data_availability: DataAvailability = field(default_factory=DataAvailability)
    risk_factors: Tuple[str, ...] = ()
    protective_factors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing_id": self.parcel_id,
            "flood_risk_score": self.flood_risk_score,
            "flood_risk_level": self.flood_risk_level.value,
            "near_river": self.near_river,
            "distance_to_river_m": self.distance_to_river_m,
            "elevation_m": self.elevation_m,
            "slope_percent": self.slope_percent,
            "terrain_variation_m": self.terrain_variation_m,
            "environmental_notes": self.environmental_notes,
            "calculated_at": self.calculated_at.isoformat(),
            "data_availability": self.data_availability.to_dict(),
            "risk_factors": list(self.risk_factors),
            "protective_factors": list(self.protective_factors),
        }
