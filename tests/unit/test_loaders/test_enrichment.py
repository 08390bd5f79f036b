import threading
import time
import pytest
from core.errors import ProviderUnavailable
from core.geometry import parse_polygon
from core.interfaces import ElevationProvider, FeatureQueryProvider
from loaders.enrichment import GeoEnrichmentPipeline, summarize_hydrology
from loaders.features import FeatureCategory, GeoFeature
from loaders.overpass import HYDROLOGY_TAGS

LON, LAT = 39.28, -6.80
SIZE = 0.001
CENTER_LON, CENTER_LAT = LON + SIZE / 2, LAT + SIZE / 2


def parcel():
    return parse_polygon([
        [LON, LAT], [LON + SIZE, LAT], [LON + SIZE, LAT + SIZE], [LON, LAT + SIZE], [LON, LAT],
    ])


class FakeFeatures(FeatureQueryProvider):
    def __init__(self, hydrology=None, land_use=None, fail_hydrology=False, block=None):
        self.hydrology = hydrology or []
        self.land_use = land_use or []
        self.fail_hydrology = fail_hydrology
        self.block = block

    def query_features(self, lat, lon, specs):
        if specs is HYDROLOGY_TAGS:
            if self.block is not None:
                self.block.wait(5)
            if self.fail_hydrology:
                raise ProviderUnavailable("overpass", "HTTP 504")
            return self.hydrology
        return self.land_use


class FakeElevation(ElevationProvider):
    """First call is the centroid; later calls are perimeter samples."""

    def __init__(self, center=40.0, samples=None, fail_center=False, fail_samples=0,
                 center_delay=0.0, sample_block=None):
        self.center = center
        self.samples = samples or [42.0] * 8
        self.fail_center = fail_center
        self.fail_samples = fail_samples
        self.center_delay = center_delay
        self.sample_block = sample_block
        self.calls = 0
        self._lock = threading.Lock()

    def get_elevation(self, lat, lon):
        with self._lock:
            index = self.calls
            self.calls += 1
        if index == 0:
            time.sleep(self.center_delay)
            if self.fail_center:
                raise ProviderUnavailable("elevation", "down")
            return self.center
        if self.sample_block is not None:
            self.sample_block.wait(5)
        if index <= self.fail_samples:
            raise ProviderUnavailable("elevation", "sample lost")
        return self.samples[index - 1]


def river(offset_lat):
    return GeoFeature(FeatureCategory.RIVER, CENTER_LAT + offset_lat, CENTER_LON)


def test_full_enrichment():
    features = FakeFeatures(
        hydrology=[
            river(0.0007),
            river(0.01),
            GeoFeature(FeatureCategory.LAKE, CENTER_LAT - 0.005, CENTER_LON),
            GeoFeature(FeatureCategory.WETLAND, CENTER_LAT, CENTER_LON + 0.002),
            GeoFeature(FeatureCategory.DRAINAGE, CENTER_LAT, CENTER_LON - 0.001),
        ],
        land_use=[
            GeoFeature(FeatureCategory.FLOOD_ZONE, CENTER_LAT, CENTER_LON),
            GeoFeature(FeatureCategory.AGRICULTURAL, CENTER_LAT, CENTER_LON),
        ],
    )
    pipeline = GeoEnrichmentPipeline(features, FakeElevation(center=40.0, samples=[41.0] * 7 + [44.0]))

    evidence = pipeline.enrich(parcel())

    availability = evidence.data_availability
    assert availability.hydrology and availability.elevation and availability.land_use
    assert evidence.near_river
    assert evidence.distance_to_river_m == pytest.approx(77.4, abs=2.0)
    assert evidence.water_body_count == 1
    assert evidence.wetland_count == 1
    assert evidence.drainage_count == 1
    assert evidence.flood_zone_nearby
    assert evidence.agricultural
    assert not evidence.developed
    assert evidence.elevation_m == 40.0
    assert evidence.terrain_variation_m == 4.0
    assert evidence.elevation_samples == 8
    # 4m over a ~156m diagonal
    assert evidence.slope_percent == pytest.approx(2.56, abs=0.05)


def test_hydrology_failure_marks_category_unavailable():
    pipeline = GeoEnrichmentPipeline(FakeFeatures(fail_hydrology=True), FakeElevation())
    evidence = pipeline.enrich(parcel())

    assert not evidence.data_availability.hydrology
    assert evidence.data_availability.elevation
    assert evidence.data_availability.land_use
    assert evidence.distance_to_river_m is None
    assert not evidence.near_river


def test_centroid_failure_marks_elevation_unavailable():
    pipeline = GeoEnrichmentPipeline(FakeFeatures(), FakeElevation(fail_center=True))
    evidence = pipeline.enrich(parcel())

    assert not evidence.data_availability.elevation
    assert evidence.elevation_m is None
    assert evidence.slope_percent is None


def test_failed_samples_fall_back_to_centroid():
    pipeline = GeoEnrichmentPipeline(FakeFeatures(), FakeElevation(center=40.0, fail_samples=8))
    evidence = pipeline.enrich(parcel())

    assert evidence.data_availability.elevation
    assert evidence.elevation_samples == 0
    assert evidence.terrain_variation_m == 0.0
    assert evidence.slope_percent == 0.0


def test_slow_provider_times_out():
    release = threading.Event()
    pipeline = GeoEnrichmentPipeline(FakeFeatures(block=release), FakeElevation(), timeout_s=0.2)
    try:
        evidence = pipeline.enrich(parcel())
    finally:
        release.set()

    assert not evidence.data_availability.hydrology
    assert evidence.data_availability.elevation
    assert evidence.data_availability.land_use


def test_slow_centroid_leaves_terrain_inside_deadline():
    """A slow centroid shortens the sample window instead of losing the whole category."""
    release = threading.Event()
    elevation = FakeElevation(center=40.0, center_delay=0.2, sample_block=release)
    pipeline = GeoEnrichmentPipeline(FakeFeatures(), elevation, timeout_s=1.0, sample_timeout_s=10.0)
    try:
        evidence = pipeline.enrich(parcel())
    finally:
        release.set()

    assert evidence.data_availability.elevation
    assert evidence.elevation_m == 40.0
    assert evidence.elevation_samples == 0
    assert evidence.terrain_variation_m == 0.0


def test_summarize_hydrology_no_features():
    summary = summarize_hydrology([], CENTER_LAT, CENTER_LON)
    assert summary["distance_to_river_m"] is None
    assert summary["nearest_lake_distance_m"] is None
    assert not summary["near_river"]
    assert summary["water_body_count"] == 0


def test_summarize_hydrology_far_river_is_not_near():
    summary = summarize_hydrology([river(0.02)], CENTER_LAT, CENTER_LON)
    assert summary["distance_to_river_m"] > 1000
    assert not summary["near_river"]
