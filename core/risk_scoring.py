"""
Flood Risk Scoring Model

Additive banded model over GeoEvidence:
- Each band looks at one aspect of the surroundings and returns
  (points, risk_factors, protective_factors)
- Bands are folded in a fixed order so factor lists are reproducible
- The total is clamped to [0, 100] once, after the fold

Categories whose data could not be gathered contribute nothing; the
narrative says which categories were missing.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from core.models import GeoEvidence, RiskAssessment, RiskLevel

log = logging.getLogger(__name__)

BandResult = Tuple[int, List[str], List[str]]
Band = Callable[[GeoEvidence, float], BandResult]


# ═══════════════════════════════════════════════════════════════════════════
# BAND TABLES
# ═══════════════════════════════════════════════════════════════════════════
# (upper bound exclusive, points)
RIVER_BANDS = [(50, 35), (100, 30), (250, 25), (500, 15), (1000, 8)]
LAKE_BANDS = [(100, 20), (300, 15), (1000, 10)]
ELEVATION_BANDS = [(50, 25), (100, 20), (200, 15), (400, 8), (600, 3)]
SLOPE_BANDS = [(1.0, 20), (2.0, 15), (3.5, 10), (5.0, 5)]

ANY_WATER_BODY_POINTS = 5
STANDING_WATER_CAP = 20
WETLAND_POINTS = 5
WETLAND_CAP = 15
DRAINAGE_CREDIT = -3
DRAINAGE_FLOOR = -10
FLOODPLAIN_POINTS = 15
DEVELOPED_CREDIT = -5

# (minimum area m², points), checked largest first
PARCEL_SIZE_BANDS = [(100_000, 5), (50_000, 3)]

HIGH_RISK_MIN = 60
MEDIUM_RISK_MIN = 30


def _lookup(value: float, bands: Sequence[Tuple[float, int]]) -> Optional[int]:
    for upper, points in bands:
        if value < upper:
            return points
    return None


def _severity(points: int) -> str:
    if points >= 25:
        return "very high risk"
    if points >= 15:
        return "high risk"
    if points >= 8:
        return "moderate risk"
    return "low risk"


# ═══════════════════════════════════════════════════════════════════════════
# BANDS
# ═══════════════════════════════════════════════════════════════════════════
def river_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.hydrology:
        return 0, [], []
    distance = ev.distance_to_river_m
    points = _lookup(distance, RIVER_BANDS) if distance is not None else None
    if points is None:
        return 0, [], ["No river within 1km"]
    return points, [f"River {distance:.0f}m away - {_severity(points)}"], []


def standing_water_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.hydrology:
        return 0, [], []
    distance = ev.nearest_lake_distance_m
    points = _lookup(distance, LAKE_BANDS) if distance is not None else None
    if points is not None:
        return min(points, STANDING_WATER_CAP), [f"Lake or pond {distance:.0f}m away"], []
    if ev.water_body_count > 0:
        return ANY_WATER_BODY_POINTS, [f"{ev.water_body_count} water bodies within 5km"], []
    return 0, [], []


def wetland_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.hydrology or ev.wetland_count <= 0:
        return 0, [], []
    points = min(WETLAND_POINTS * ev.wetland_count, WETLAND_CAP)
    return points, [f"{ev.wetland_count} wetland areas nearby"], []


def elevation_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.elevation or ev.elevation_m is None:
        return 0, [], []
    elevation = ev.elevation_m
    points = _lookup(elevation, ELEVATION_BANDS)
    if points is None:
        return 0, [], [f"High elevation ({elevation:.0f}m)"]
    return points, [f"Elevation {elevation:.0f}m - {_severity(points)}"], []


def slope_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.elevation or ev.slope_percent is None:
        return 0, [], []
    slope = ev.slope_percent
    points = _lookup(slope, SLOPE_BANDS)
    if points is None:
        return 0, [], [f"Good natural drainage (slope {slope:.1f}%)"]
    if slope < SLOPE_BANDS[0][0]:
        return points, [f"Very flat terrain (slope {slope:.1f}%) - water may pool"], []
    return points, [f"Gentle slope ({slope:.1f}%) - limited runoff"], []


def drainage_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.hydrology or ev.drainage_count <= 0:
        return 0, [], []
    points = max(DRAINAGE_CREDIT * ev.drainage_count, DRAINAGE_FLOOR)
    return points, [], [f"{ev.drainage_count} drainage channels nearby"]


def floodplain_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.land_use or not ev.flood_zone_nearby:
        return 0, [], []
    return FLOODPLAIN_POINTS, ["Mapped floodplain nearby"], []


def parcel_size_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    for minimum, points in PARCEL_SIZE_BANDS:
        if parcel_area_m2 > minimum:
            hectares = parcel_area_m2 / 10_000
            return points, [f"Large parcel ({hectares:.1f} ha) - more exposure to local flooding"], []
    return 0, [], []


def developed_band(ev: GeoEvidence, parcel_area_m2: float) -> BandResult:
    if not ev.data_availability.land_use or not ev.developed:
        return 0, [], []
    return DEVELOPED_CREDIT, [], ["Developed area with likely drainage infrastructure"]


BANDS: Tuple[Band, ...] = (
    river_band,
    standing_water_band,
    wetland_band,
    elevation_band,
    slope_band,
    drainage_band,
    floodplain_band,
    parcel_size_band,
    developed_band,
)


# ═══════════════════════════════════════════════════════════════════════════
# SCORING
# ═══════════════════════════════════════════════════════════════════════════
def classify_level(score: int) -> RiskLevel:
    if score >= HIGH_RISK_MIN:
        return RiskLevel.HIGH
    if score >= MEDIUM_RISK_MIN:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score(evidence: GeoEvidence, parcel_area_m2: float, bands: Sequence[Band] = BANDS) -> RiskAssessment:
    """
    Fold the bands over the evidence.

    Args:
        evidence: Output of the enrichment pipeline
        parcel_area_m2: Geodesic area of the parcel

    Returns:
        RiskAssessment with the clamped score, its level and the factor lists
    """
    total = 0
    risk_factors: List[str] = []
    protective_factors: List[str] = []

    for band in bands:
        points, risks, protections = band(evidence, parcel_area_m2)
        total += points
        risk_factors.extend(risks)
        protective_factors.extend(protections)

    clamped = max(0, min(100, total))
    level = classify_level(clamped)
    log.debug(f"Risk fold total {total} -> {clamped} ({level.value})")

    return RiskAssessment(
        score=clamped,
        level=level,
        risk_factors=tuple(risk_factors),
        protective_factors=tuple(protective_factors),
    )


# ═══════════════════════════════════════════════════════════════════════════
# NARRATIVE
# ═══════════════════════════════════════════════════════════════════════════
_LEVEL_SUMMARY = {
    RiskLevel.HIGH: "High flood risk",
    RiskLevel.MEDIUM: "Moderate flood risk",
    RiskLevel.LOW: "Low flood risk",
}


def build_environmental_notes(assessment: RiskAssessment, evidence: GeoEvidence) -> str:
    """Human-readable summary of an assessment, one section per line."""
    lines = [f"{_LEVEL_SUMMARY[assessment.level]} (score {assessment.score}/100)."]

    if assessment.risk_factors:
        lines.append("Risk factors: " + "; ".join(assessment.risk_factors) + ".")
    if assessment.protective_factors:
        lines.append("Protective factors: " + "; ".join(assessment.protective_factors) + ".")
    if evidence.agricultural:
        lines.append("Surrounding land is used for agriculture.")

    availability = evidence.data_availability
    status = [
        f"hydrology {'available' if availability.hydrology else 'unavailable'}",
        f"elevation {'available' if availability.elevation else 'unavailable'}",
        f"land use {'available' if availability.land_use else 'unavailable'}",
    ]
    lines.append("Data availability: " + ", ".join(status) + ".")

    return "\n".join(lines)
