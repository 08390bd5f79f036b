import pytest
from core.errors import InvalidGeometry
from core.config import DEFAULT_SERVICE_REGION
from core.geometry import (
    area,
    bbox_perimeter_points,
    bounding_box,
    bounds_overlap,
    centroid,
    format_area,
    intersection_area,
    is_exactly_equal,
    parse_polygon,
    polygon_similarity,
    validate_polygon,
)

LON, LAT = 39.28, -6.80


def square(lon=LON, lat=LAT, size=0.001):
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat], [lon + size, lat], [lon + size, lat + size], [lon, lat + size], [lon, lat],
        ]],
    }


def test_parse_polygon_geometry():
    """Verify a plain GeoJSON Polygon parses."""
    polygon = parse_polygon(square())
    assert len(polygon.vertices) == 4
    assert polygon.ring[0] == polygon.ring[-1]


def test_parse_polygon_wrappers():
    """Verify Feature, FeatureCollection and bare rings are accepted."""
    geometry = square()
    feature = {"type": "Feature", "properties": {}, "geometry": geometry}
    collection = {"type": "FeatureCollection", "features": [feature]}
    ring = geometry["coordinates"][0]

    expected = parse_polygon(geometry).ring
    assert parse_polygon(feature).ring == expected
    assert parse_polygon(collection).ring == expected
    assert parse_polygon(ring).ring == expected
    assert parse_polygon([ring]).ring == expected


def test_parse_polygon_unclosed():
    ring = square()["coordinates"][0][:-1] + [[LON + 0.0005, LAT]]
    with pytest.raises(InvalidGeometry) as exc:
        parse_polygon(ring)
    assert any("not closed" in r for r in exc.value.reasons)


def test_parse_polygon_too_few_points():
    with pytest.raises(InvalidGeometry) as exc:
        parse_polygon([[LON, LAT], [LON + 0.001, LAT], [LON, LAT]])
    assert "at least 4 points" in exc.value.reasons[0]


def test_parse_polygon_out_of_range():
    ring = [[190.0, 0.0], [191.0, 0.0], [191.0, 1.0], [190.0, 0.0]]
    with pytest.raises(InvalidGeometry) as exc:
        parse_polygon(ring)
    assert any("longitude" in r for r in exc.value.reasons)


def test_parse_polygon_self_intersection():
    """A bow-tie ring is rejected, not repaired."""
    bowtie = [[0.0, 0.0], [1.0, 1.0], [1.0, 0.0], [0.0, 1.0], [0.0, 0.0]]
    with pytest.raises(InvalidGeometry) as exc:
        parse_polygon(bowtie)
    assert "self-intersections" in exc.value.reasons[0]


@pytest.mark.parametrize("bad", [
    "not geojson",
    {"type": "Point", "coordinates": [LON, LAT]},
    {"type": "Polygon", "coordinates": []},
    [[LON, "x"], [LON + 0.001, LAT], [LON, LAT + 0.001], [LON, "x"]],
    [[True, LAT], [LON + 0.001, LAT], [LON, LAT + 0.001], [True, LAT]],
])
def test_parse_polygon_rejects_malformed(bad):
    with pytest.raises(InvalidGeometry):
        parse_polygon(bad)


def test_area_is_geodesic():
    """0.001° square near Dar es Salaam is roughly 110m x 110m."""
    value = area(parse_polygon(square()))
    assert 12_000 < value < 12_500


def test_centroid_inside_bbox():
    polygon = parse_polygon(square())
    lon, lat = centroid(polygon)
    assert bounding_box(polygon).contains(lon, lat)
    assert lon == pytest.approx(LON + 0.0005)
    assert lat == pytest.approx(LAT + 0.0005)


def test_bounds_overlap_touching_counts():
    a = bounding_box(parse_polygon(square()))
    b = bounding_box(parse_polygon(square(lon=LON + 0.001)))
    c = bounding_box(parse_polygon(square(lon=LON + 0.01)))
    assert bounds_overlap(a, b)
    assert not bounds_overlap(a, c)


def test_exact_equality_ignores_start_and_direction():
    ring = square()["coordinates"][0]
    rotated = ring[2:-1] + ring[:3]
    reversed_ring = list(reversed(ring))

    base = parse_polygon(ring)
    assert is_exactly_equal(base, parse_polygon(rotated))
    assert is_exactly_equal(base, parse_polygon(reversed_ring))


def test_exact_equality_detects_shift():
    base = parse_polygon(square())
    shifted = parse_polygon(square(lon=LON + 1e-6))
    assert not is_exactly_equal(base, shifted)


def test_intersection_area_touching_is_zero():
    a = parse_polygon(square())
    b = parse_polygon(square(lon=LON + 0.001))
    assert intersection_area(a, b) == 0.0


def test_intersection_area_half():
    a = parse_polygon(square())
    b = parse_polygon(square(lon=LON + 0.0005))
    assert intersection_area(a, b) == pytest.approx(area(a) / 2, rel=0.01)


def test_perimeter_points_order():
    bbox = bounding_box(parse_polygon(square()))
    points = bbox_perimeter_points(bbox)
    assert len(points) == 8
    assert points[0] == (bbox.min_lon, bbox.min_lat)
    assert points[2] == (bbox.max_lon, bbox.max_lat)
    assert points[4] == pytest.approx((LON + 0.0005, bbox.min_lat))


def test_validate_polygon_too_small():
    report = validate_polygon(square(size=0.00001))
    assert not report.is_valid
    assert "too small" in report.errors[0]


def test_validate_polygon_warnings():
    """Elongated boundary outside the service region only warns."""
    sliver = {
        "type": "Polygon",
        "coordinates": [[[0.0, 0.0], [0.01, 0.0], [0.01, 0.0001], [0.0, 0.0001], [0.0, 0.0]]],
    }
    report = validate_polygon(sliver, service_region=DEFAULT_SERVICE_REGION)
    assert report.is_valid
    assert any("elongation" in w for w in report.warnings)
    assert any("service region" in w for w in report.warnings)
    assert report.is_convex


def test_validate_polygon_reports_parse_errors():
    report = validate_polygon({"type": "Polygon", "coordinates": []})
    assert not report.is_valid
    assert report.area_m2 is None
    assert report.to_dict()["metrics"]["area_m2"] is None


def test_polygon_similarity_identical():
    polygon = parse_polygon(square())
    assert polygon_similarity(polygon, polygon) == 100


@pytest.mark.parametrize("value,expected", [
    (500, "500.00 m²"),
    (25_000, "2.50 ha"),
    (2_500_000, "2.50 km²"),
])
def test_format_area(value, expected):
    assert format_area(value) == expected


def test_intersection_area_disjoint_bounds_is_zero():
    a = parse_polygon(square())
    b = parse_polygon(square(lon=LON + 0.01, lat=LAT + 0.01))
    assert not bounds_overlap(bounding_box(a), bounding_box(b))
    assert intersection_area(a, b) == 0.0
    assert intersection_area(b, a) == 0.0
