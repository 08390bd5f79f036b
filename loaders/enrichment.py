"""
Geodata Enrichment Pipeline - Gathers flood evidence around a parcel.

Runs three independent sub-queries concurrently:
- Hydrology (rivers, lakes, wetlands, drains, springs) from Overpass
- Terrain (centroid + 8 perimeter elevations) from Open-Elevation
- Land use (floodplain, farmland, developed) from Overpass

Every sub-query is bounded by a timeout. A failed or slow sub-query marks
its category unavailable; it never fails the whole enrichment. Perimeter
elevation samples get whatever is left of the overall deadline after the
centroid lookup, capped at sample_timeout_s.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional

import numpy as np

from core.errors import ProviderUnavailable
from core.geometry import (
    BoundingBox,
    Polygon,
    bbox_diagonal_meters,
    bbox_perimeter_points,
    bounding_box,
    centroid,
    distance_meters,
)
from core.interfaces import ElevationProvider, FeatureQueryProvider
from core.models import DataAvailability, GeoEvidence
from loaders.features import FeatureCategory, GeoFeature
from loaders.overpass import HYDROLOGY_TAGS, LAND_USE_TAGS

log = logging.getLogger(__name__)

NEAR_RIVER_METERS = 1000.0

# Terrain stops waiting on perimeter samples this long before the overall deadline
TERRAIN_REPLY_MARGIN_S = 0.5


class GeoEnrichmentPipeline:
    """
    Collects GeoEvidence for a parcel boundary.

    Usage:
        pipeline = GeoEnrichmentPipeline(get_overpass_loader(), get_elevation_loader())
        evidence = pipeline.enrich(polygon)
    """

    def __init__(
        self,
        features: FeatureQueryProvider,
        elevation: ElevationProvider,
        timeout_s: float = 25.0,
        sample_timeout_s: float = 10.0,
    ):
        self.features = features
        self.elevation = elevation
        self.timeout_s = timeout_s
        self.sample_timeout_s = sample_timeout_s

    def enrich(self, polygon: Polygon) -> GeoEvidence:
        """
        Gather hydrology, terrain and land-use evidence around a parcel.

        Args:
            polygon: An already parsed and validated boundary

        Returns:
            GeoEvidence; categories that could not be gathered are flagged
            in data_availability and left at their defaults
        """
        lon, lat = centroid(polygon)
        bbox = bounding_box(polygon)
        log.info(f"Enriching parcel at ({lat:.5f}, {lon:.5f})")

        deadline = time.monotonic() + self.timeout_s
        tasks = {
            "hydrology": lambda: self._hydrology(lat, lon),
            "elevation": lambda: self._terrain(bbox, lat, lon, deadline),
            "land_use": lambda: self._land_use(lat, lon),
        }

        fields: Dict[str, Any] = {}
        available = {name: False for name in tasks}

        executor = ThreadPoolExecutor(max_workers=len(tasks))
        try:
            futures = {name: executor.submit(task) for name, task in tasks.items()}
            for name, future in futures.items():
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    fields.update(future.result(timeout=remaining))
                    available[name] = True
                except FutureTimeout:
                    log.warning(f"{name} enrichment timed out after {self.timeout_s}s")
                except ProviderUnavailable as e:
                    log.warning(f"{name} enrichment unavailable: {e}")
                except Exception as e:
                    log.error(f"{name} enrichment failed: {e}")
        finally:
            # Do not wait on a provider that is still hanging
            executor.shutdown(wait=False, cancel_futures=True)

        evidence = GeoEvidence(
            data_availability=DataAvailability(
                hydrology=available["hydrology"],
                elevation=available["elevation"],
                land_use=available["land_use"],
            ),
            **fields,
        )
        log.info(f"Enrichment done: {evidence.data_availability.to_dict()}")
        return evidence

    # ═══════════════════════════════════════════════════════════════════════
    # HYDROLOGY
    # ═══════════════════════════════════════════════════════════════════════
    def _hydrology(self, lat: float, lon: float) -> Dict[str, Any]:
        features = self.features.query_features(lat, lon, HYDROLOGY_TAGS)
        return summarize_hydrology(features, lat, lon)

    # ═══════════════════════════════════════════════════════════════════════
    # LAND USE
    # ═══════════════════════════════════════════════════════════════════════
    def _land_use(self, lat: float, lon: float) -> Dict[str, Any]:
        features = self.features.query_features(lat, lon, LAND_USE_TAGS)
        categories = {f.category for f in features}
        return {
            "flood_zone_nearby": FeatureCategory.FLOOD_ZONE in categories,
            "agricultural": FeatureCategory.AGRICULTURAL in categories,
            "developed": FeatureCategory.DEVELOPED in categories,
        }

    # ═══════════════════════════════════════════════════════════════════════
    # TERRAIN
    # ═══════════════════════════════════════════════════════════════════════
    def _terrain(self, bbox: BoundingBox, lat: float, lon: float, deadline: float) -> Dict[str, Any]:
        # Without the centroid there is nothing to fall back on
        center_elevation = self.elevation.get_elevation(lat, lon)

        points = bbox_perimeter_points(bbox)
        samples: List[float] = [center_elevation]
        returned = 0

        executor = ThreadPoolExecutor(max_workers=len(points))
        try:
            futures = [
                executor.submit(self.elevation.get_elevation, p_lat, p_lon)
                for p_lon, p_lat in points
            ]
            # A slow centroid lookup eats into the sample window, never past the overall deadline
            sample_deadline = min(
                time.monotonic() + self.sample_timeout_s,
                deadline - TERRAIN_REPLY_MARGIN_S,
            )
            for future in futures:
                value = self._sample_or_none(future, sample_deadline)
                if value is None:
                    samples.append(center_elevation)
                else:
                    samples.append(value)
                    returned += 1
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        heights = np.array(samples, dtype=float)
        variation = float(heights.max() - heights.min())
        diagonal = bbox_diagonal_meters(bbox)
        slope = variation / diagonal * 100 if diagonal > 0 else 0.0

        log.debug(f"Terrain: {returned}/{len(points)} samples, variation {variation:.1f}m, slope {slope:.2f}%")
        return {
            "elevation_m": center_elevation,
            "terrain_variation_m": variation,
            "slope_percent": slope,
            "elevation_samples": returned,
        }

    @staticmethod
    def _sample_or_none(future, deadline: float) -> Optional[float]:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return float(future.result(timeout=remaining))
        except FutureTimeout:
            log.debug("Elevation sample timed out, using centroid elevation")
        except Exception as e:
            log.debug(f"Elevation sample failed ({e}), using centroid elevation")
        return None


def summarize_hydrology(features: List[GeoFeature], lat: float, lon: float) -> Dict[str, Any]:
    """Nearest river and lake distances plus counts per hydrology category."""
    nearest_river: Optional[float] = None
    nearest_lake: Optional[float] = None
    counts = {
        FeatureCategory.LAKE: 0,
        FeatureCategory.WETLAND: 0,
        FeatureCategory.DRAINAGE: 0,
        FeatureCategory.SPRING: 0,
    }

    for feature in features:
        distance = distance_meters((lon, lat), (feature.longitude, feature.latitude))
        if feature.category is FeatureCategory.RIVER:
            if nearest_river is None or distance < nearest_river:
                nearest_river = distance
        elif feature.category is FeatureCategory.LAKE:
            if nearest_lake is None or distance < nearest_lake:
                nearest_lake = distance
        if feature.category in counts:
            counts[feature.category] += 1

    return {
        "near_river": nearest_river is not None and nearest_river < NEAR_RIVER_METERS,
        "distance_to_river_m": nearest_river,
        "water_body_count": counts[FeatureCategory.LAKE],
        "nearest_lake_distance_m": nearest_lake,
        "wetland_count": counts[FeatureCategory.WETLAND],
        "drainage_count": counts[FeatureCategory.DRAINAGE],
        "spring_count": counts[FeatureCategory.SPRING],
    }
