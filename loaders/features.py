"""
Typed map features.

Raw Overpass elements are classified once, at the loader boundary, into
a closed set of categories. Everything downstream works with GeoFeature
values and never looks at raw tags.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class FeatureCategory(Enum):
    RIVER = "river"
    LAKE = "lake"
    WETLAND = "wetland"
    DRAINAGE = "drainage"
    SPRING = "spring"
    FLOOD_ZONE = "flood_zone"
    AGRICULTURAL = "agricultural"
    DEVELOPED = "developed"
    UNKNOWN = "unknown"


RIVER_WATERWAYS = {"river", "stream", "canal"}
DRAINAGE_WATERWAYS = {"drain", "ditch"}
LAKE_WATER_TYPES = {"lake", "pond", "reservoir"}
AGRICULTURAL_LANDUSE = {"farmland", "farmyard", "orchard"}
DEVELOPED_LANDUSE = {"residential", "commercial", "retail", "industrial"}


@dataclass(frozen=True)
class GeoFeature:
    """A classified map feature with one representative point."""
    category: FeatureCategory
    latitude: float
    longitude: float
    osm_id: Optional[int] = None
    name: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def is_hydrology(self) -> bool:
        return self.category in (
            FeatureCategory.RIVER,
            FeatureCategory.LAKE,
            FeatureCategory.WETLAND,
            FeatureCategory.DRAINAGE,
            FeatureCategory.SPRING,
        )


def classify_tags(tags: Dict[str, str]) -> FeatureCategory:
    """Map OSM tags to a feature category."""
    waterway = tags.get("waterway", "")
    natural = tags.get("natural", "")
    landuse = tags.get("landuse", "")
    water = tags.get("water", "")

    # Wide rivers are mapped as natural=water areas with a water=river subtag
    if waterway in RIVER_WATERWAYS or water in RIVER_WATERWAYS:
        return FeatureCategory.RIVER
    if waterway in DRAINAGE_WATERWAYS:
        return FeatureCategory.DRAINAGE
    # Basins hold water only after rain, so they count with wetlands
    if natural == "wetland" or water == "wetland" or landuse == "basin":
        return FeatureCategory.WETLAND
    if natural == "water" or water in LAKE_WATER_TYPES or landuse == "reservoir":
        return FeatureCategory.LAKE
    if natural == "spring":
        return FeatureCategory.SPRING
    if landuse == "floodplain" or natural == "floodplain":
        return FeatureCategory.FLOOD_ZONE
    if landuse in AGRICULTURAL_LANDUSE:
        return FeatureCategory.AGRICULTURAL
    if landuse in DEVELOPED_LANDUSE:
        return FeatureCategory.DEVELOPED
    return FeatureCategory.UNKNOWN


def classify_element(element: Dict[str, Any]) -> GeoFeature:
    """
    Classify one Overpass element.

    Nodes carry lat/lon directly; ways and relations carry a "center"
    when queried with `out center`. Elements with neither come back as
    UNKNOWN at (0, 0) and are discarded by the caller.
    """
    tags = element.get("tags") or {}
    center = element.get("center") or {}
    lat = element.get("lat", center.get("lat"))
    lon = element.get("lon", center.get("lon"))

    if lat is None or lon is None:
        return GeoFeature(FeatureCategory.UNKNOWN, 0.0, 0.0, osm_id=element.get("id"), tags=tags)

    return GeoFeature(
        category=classify_tags(tags),
        latitude=float(lat),
        longitude=float(lon),
        osm_id=element.get("id"),
        name=tags.get("name"),
        tags=tags,
    )
