"""
Data loaders for the Parcel Engine.

Includes:
- Map features (OpenStreetMap Overpass)
- Elevation (Open-Elevation)
- Enrichment pipeline (combines both into flood evidence)
"""

from loaders.features import FeatureCategory, GeoFeature, classify_element
from loaders.overpass import OverpassLoader, get_overpass_loader, TagSpec, HYDROLOGY_TAGS, LAND_USE_TAGS
from loaders.elevation import ElevationLoader, get_elevation_loader, ElevationResult
from loaders.enrichment import GeoEnrichmentPipeline

__all__ = [
    "FeatureCategory",
    "GeoFeature",
    "classify_element",
    "OverpassLoader",
    "get_overpass_loader",
    "TagSpec",
    "HYDROLOGY_TAGS",
    "LAND_USE_TAGS",
    "ElevationLoader",
    "get_elevation_loader",
    "ElevationResult",
    "GeoEnrichmentPipeline",
]
