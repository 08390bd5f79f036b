"""
Geometry Kernel - Parcel boundary parsing, measurement and topology.

Pure, deterministic helpers with no I/O:
- Parsing GeoJSON-like input into a validated Polygon
- Geodesic area, perimeter and distance (WGS84 ellipsoid via pyproj)
- Centroid and bounding box
- Ring equality tolerant of start offset and winding direction
- Intersection area for overlap detection

Coordinates are always (longitude, latitude) in decimal degrees.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pyproj import Geod
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from core.errors import InvalidGeometry

Coordinate = Tuple[float, float]

_GEOD = Geod(ellps="WGS84")

# Intersections smaller than this (in square degrees, roughly 1e-4 m²) are
# treated as touching boundaries rather than shared ground.
_MIN_PLANAR_AREA = 1e-14

DEFAULT_EQUALITY_EPSILON = 1e-9

MIN_AREA_M2 = 10.0
MAX_AREA_WARNING_M2 = 100_000_000.0  # 100 km²
MAX_ASPECT_RATIO = 20.0
MAX_VERTICES = 1000


# ═══════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box in decimal degrees (WGS84)."""
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def center(self) -> Coordinate:
        return ((self.min_lon + self.max_lon) / 2, (self.min_lat + self.max_lat) / 2)

    def contains(self, lon: float, lat: float) -> bool:
        """Check if a point is inside (or on the edge of) this box."""
        return (self.min_lon <= lon <= self.max_lon and
                self.min_lat <= lat <= self.max_lat)


@dataclass(frozen=True)
class Polygon:
    """
    A closed parcel boundary ring.

    Only the outer ring is modelled. The ring is stored closed (first point
    repeated at the end). Instances are only created through parse_polygon,
    which guarantees the ring is valid.
    """
    ring: Tuple[Coordinate, ...]
    _shape: ShapelyPolygon = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_shape", ShapelyPolygon(self.ring))

    @property
    def shape(self) -> ShapelyPolygon:
        return self._shape

    @property
    def vertices(self) -> Tuple[Coordinate, ...]:
        """Ring without the closing point."""
        return self.ring[:-1]

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Polygon",
            "coordinates": [[list(point) for point in self.ring]],
        }


@dataclass
class ValidationReport:
    """Outcome of validate_polygon: blocking errors, advisory warnings and metrics."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    area_m2: Optional[float] = None
    perimeter_m: Optional[float] = None
    centroid: Optional[Coordinate] = None
    is_convex: Optional[bool] = None
    num_vertices: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "metrics": {
                "area_m2": self.area_m2,
                "perimeter_m": self.perimeter_m,
                "centroid": list(self.centroid) if self.centroid else None,
                "is_convex": self.is_convex,
                "num_vertices": self.num_vertices,
            },
        }


# ═══════════════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════════════
def _extract_ring(geojson_like: Any) -> Sequence[Any]:
    """Dig the outer ring out of the shapes users actually submit."""
    if isinstance(geojson_like, dict):
        kind = geojson_like.get("type")
        if kind == "Feature":
            return _extract_ring(geojson_like.get("geometry"))
        if kind == "FeatureCollection":
            features = geojson_like.get("features") or []
            if not features:
                raise InvalidGeometry(["FeatureCollection has no features"])
            return _extract_ring(features[0])
        if kind not in (None, "Polygon"):
            raise InvalidGeometry([f'GeoJSON must be of type "Polygon", got "{kind}"'])
        coordinates = geojson_like.get("coordinates")
        if not isinstance(coordinates, (list, tuple)) or not coordinates:
            raise InvalidGeometry(["Missing or invalid coordinates array"])
        return _extract_ring(coordinates)

    if isinstance(geojson_like, (list, tuple)) and geojson_like:
        first = geojson_like[0]
        # [[lon, lat], ...] is a ring; [[[lon, lat], ...], ...] is a list of rings
        if isinstance(first, (list, tuple)) and first and isinstance(first[0], (list, tuple)):
            return first
        return geojson_like

    raise InvalidGeometry(["Invalid GeoJSON format"])


def _to_coordinate(point: Any, index: int) -> Coordinate:
    if not isinstance(point, (list, tuple)) or len(point) < 2:
        raise InvalidGeometry([f"Point {index} is not a [lon, lat] pair"])
    lon, lat = point[0], point[1]
    for value in (lon, lat):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidGeometry([f"Point {index} has a non-numeric coordinate"])
    return (float(lon), float(lat))


def parse_polygon(geojson_like: Any) -> Polygon:
    """
    Parse a GeoJSON-like boundary into a validated Polygon.

    Accepts a Polygon geometry, a Feature or FeatureCollection wrapping one,
    a coordinates list of rings, or a bare ring of [lon, lat] pairs.

    Raises:
        InvalidGeometry: fewer than 4 points, unclosed ring, coordinates out
            of range, self-intersection or zero area. Nothing is repaired.
    """
    raw_ring = _extract_ring(geojson_like)
    ring = tuple(_to_coordinate(point, i) for i, point in enumerate(raw_ring))

    reasons = []
    if len(ring) < 4:
        reasons.append(f"Polygon ring needs at least 4 points, got {len(ring)}")
    elif ring[0] != ring[-1]:
        reasons.append("Polygon ring is not closed (first and last points differ)")

    for i, (lon, lat) in enumerate(ring):
        if not -180.0 <= lon <= 180.0:
            reasons.append(f"Point {i} longitude {lon} is out of range")
        if not -90.0 <= lat <= 90.0:
            reasons.append(f"Point {i} latitude {lat} is out of range")

    if reasons:
        raise InvalidGeometry(reasons)

    shape = ShapelyPolygon(ring)
    if not shape.is_valid:
        raise InvalidGeometry([f"Polygon has self-intersections ({explain_validity(shape)})"])
    if shape.area <= 0:
        raise InvalidGeometry(["Polygon is degenerate (zero area)"])

    return Polygon(ring=ring)


# ═══════════════════════════════════════════════════════════════════════════
# MEASUREMENT
# ═══════════════════════════════════════════════════════════════════════════
def _geodesic_area(geom: BaseGeometry) -> float:
    """Geodesic area in m² of the polygonal parts of any shapely geometry."""
    total = 0.0
    for part in getattr(geom, "geoms", [geom]):
        if part.geom_type == "Polygon":
            total += abs(_GEOD.geometry_area_perimeter(part)[0])
        elif part.geom_type in ("MultiPolygon", "GeometryCollection"):
            total += _geodesic_area(part)
    return total


def area(polygon: Polygon) -> float:
    """Area in square meters on the WGS84 ellipsoid."""
    return _geodesic_area(polygon.shape)


def perimeter_meters(polygon: Polygon) -> float:
    """Length of the boundary ring in meters."""
    lons = [lon for lon, _ in polygon.ring]
    lats = [lat for _, lat in polygon.ring]
    return _GEOD.line_length(lons, lats)


def centroid(polygon: Polygon) -> Coordinate:
    """Area-weighted centroid as (lon, lat)."""
    point = polygon.shape.centroid
    return (point.x, point.y)


def bounding_box(polygon: Polygon) -> BoundingBox:
    min_lon, min_lat, max_lon, max_lat = polygon.shape.bounds
    return BoundingBox(min_lon, min_lat, max_lon, max_lat)


def bounds_overlap(bbox1: BoundingBox, bbox2: BoundingBox) -> bool:
    """
    Cheap rejection test.

    Boxes overlap unless one lies strictly left, right, above or below the
    other. Touching edges count as overlap.
    """
    return not (bbox1.max_lon < bbox2.min_lon or bbox1.min_lon > bbox2.max_lon or
                bbox1.max_lat < bbox2.min_lat or bbox1.min_lat > bbox2.max_lat)


def distance_meters(point_a: Coordinate, point_b: Coordinate) -> float:
    """Geodesic distance between two (lon, lat) points."""
    _, _, dist = _GEOD.inv(point_a[0], point_a[1], point_b[0], point_b[1])
    return abs(dist)


def bbox_diagonal_meters(bbox: BoundingBox) -> float:
    return distance_meters((bbox.min_lon, bbox.min_lat), (bbox.max_lon, bbox.max_lat))


def bbox_perimeter_points(bbox: BoundingBox) -> List[Coordinate]:
    """
    Eight sample points around a bounding box.

    Order is fixed: SW, SE, NE, NW corners, then S, E, N, W edge midpoints.
    """
    mid_lon, mid_lat = bbox.center
    return [
        (bbox.min_lon, bbox.min_lat),
        (bbox.max_lon, bbox.min_lat),
        (bbox.max_lon, bbox.max_lat),
        (bbox.min_lon, bbox.max_lat),
        (mid_lon, bbox.min_lat),
        (bbox.max_lon, mid_lat),
        (mid_lon, bbox.max_lat),
        (bbox.min_lon, mid_lat),
    ]


# ═══════════════════════════════════════════════════════════════════════════
# TOPOLOGY
# ═══════════════════════════════════════════════════════════════════════════
def _points_close(a: Coordinate, b: Coordinate, epsilon: float) -> bool:
    return abs(a[0] - b[0]) <= epsilon and abs(a[1] - b[1]) <= epsilon


def is_exactly_equal(p1: Polygon, p2: Polygon, epsilon: float = DEFAULT_EQUALITY_EPSILON) -> bool:
    """
    True when both rings trace the same boundary.

    The second ring may start at any vertex and run in either direction;
    each vertex must match within epsilon degrees.
    """
    a = p1.vertices
    b = p2.vertices
    if len(a) != len(b):
        return False

    n = len(a)
    for candidate in (b, tuple(reversed(b))):
        for offset in range(n):
            if all(_points_close(a[i], candidate[(i + offset) % n], epsilon) for i in range(n)):
                return True
    return False


def intersection_area(p1: Polygon, p2: Polygon) -> float:
    """
    Area in m² of the region shared by two polygons.

    Zero when they are disjoint or only touch along an edge or at a point.
    """
    if not p1.shape.intersects(p2.shape):
        return 0.0
    shared = p1.shape.intersection(p2.shape)
    if shared.is_empty or shared.area <= _MIN_PLANAR_AREA:
        return 0.0
    return _geodesic_area(shared)


# ═══════════════════════════════════════════════════════════════════════════
# VALIDATION REPORT & HELPERS
# ═══════════════════════════════════════════════════════════════════════════
def validate_polygon(
    geojson_like: Any,
    service_region: Optional[Tuple[float, float, float, float]] = None,
) -> ValidationReport:
    """
    Validate a boundary for listing creation without raising.

    Args:
        geojson_like: Anything parse_polygon accepts
        service_region: Optional (min_lon, min_lat, max_lon, max_lat); a
            centroid outside it produces a warning

    Returns:
        ValidationReport with errors (blocking), warnings (advisory) and metrics
    """
    try:
        polygon = parse_polygon(geojson_like)
    except InvalidGeometry as e:
        return ValidationReport(is_valid=False, errors=list(e.reasons))

    errors: List[str] = []
    warnings: List[str] = []

    area_m2 = area(polygon)
    if area_m2 < MIN_AREA_M2:
        errors.append(f"Polygon area is too small (minimum {MIN_AREA_M2:.0f} m²)")
    if area_m2 > MAX_AREA_WARNING_M2:
        warnings.append("Polygon area is very large (> 100 km²). Please verify.")

    bbox = bounding_box(polygon)
    width = distance_meters((bbox.min_lon, bbox.min_lat), (bbox.max_lon, bbox.min_lat))
    height = distance_meters((bbox.min_lon, bbox.min_lat), (bbox.min_lon, bbox.max_lat))
    shorter = min(width, height)
    aspect_ratio = max(width, height) / shorter if shorter > 0 else float("inf")
    if aspect_ratio > MAX_ASPECT_RATIO:
        warnings.append("Polygon has unusual elongation. Please verify boundaries.")

    num_vertices = len(polygon.vertices)
    if num_vertices > MAX_VERTICES:
        warnings.append(f"Polygon has many vertices (> {MAX_VERTICES}). Consider simplification.")

    center = centroid(polygon)
    if service_region is not None:
        region = BoundingBox(*service_region)
        if not region.contains(*center):
            warnings.append("Polygon centroid is outside the service region")

    hull_area = _geodesic_area(polygon.shape.convex_hull)
    is_convex = abs(hull_area - area_m2) < 0.01 * area_m2

    return ValidationReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        area_m2=area_m2,
        perimeter_m=perimeter_meters(polygon),
        centroid=center,
        is_convex=is_convex,
        num_vertices=num_vertices,
    )


def polygon_similarity(p1: Polygon, p2: Polygon) -> int:
    """
    Similarity score 0-100 for duplicate triage.

    Weighted blend of area similarity (30%), centroid proximity (30%) and
    the share of p1 covered by p2 (40%).
    """
    area1 = area(p1)
    area2 = area(p2)
    larger = max(area1, area2)
    area_similarity = 1 - abs(area1 - area2) / larger if larger > 0 else 0.0

    max_distance = math.sqrt(larger) * 2
    gap = distance_meters(centroid(p1), centroid(p2))
    distance_similarity = max(0.0, 1 - gap / max_distance) if max_distance > 0 else 0.0

    overlap_similarity = intersection_area(p1, p2) / area1 if area1 > 0 else 0.0

    similarity = (area_similarity * 0.3 + distance_similarity * 0.3 + min(1.0, overlap_similarity) * 0.4) * 100
    return int(round(similarity))


def format_area(area_m2: float) -> str:
    """Human-readable area: m² below a hectare, ha below a km², km² above."""
    if area_m2 < 10_000:
        return f"{area_m2:.2f} m²"
    if area_m2 < 1_000_000:
        return f"{area_m2 / 10_000:.2f} ha"
    return f"{area_m2 / 1_000_000:.2f} km²"
