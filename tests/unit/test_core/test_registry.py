import json
import sqlite3
import pytest
from datetime import datetime, timezone
from core.errors import InvalidGeometry, RepositoryError
from core.models import DataAvailability, RiskLevel, RiskProfile
from core.registry import ListingStatus, ParcelRegistry


def square(lon=39.28, lat=-6.80, size=0.001):
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat], [lon + size, lat], [lon + size, lat + size], [lon, lat + size], [lon, lat],
        ]],
    }


@pytest.fixture
def registry(tmp_path):
    return ParcelRegistry(db_path=str(tmp_path / "test_parcels.db"))


def _profile(listing_id, score, level):
    return RiskProfile(
        parcel_id=listing_id,
        flood_risk_score=score,
        flood_risk_level=level,
        near_river=False,
        distance_to_river_m=None,
        elevation_m=120.0,
        slope_percent=1.5,
        terrain_variation_m=2.0,
        environmental_notes="notes",
        calculated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        data_availability=DataAvailability(elevation=True),
    )


def test_register_and_list(registry):
    """Verify published listings are returned as candidates."""
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.register_listing("L-2", "Plot 2", "user-2", square(lon=39.29))

    candidates = registry.list_active_polygons()
    assert [c.parcel_id for c in candidates] == ["L-1", "L-2"]
    assert candidates[0].owner_ref == "user-1"
    assert len(candidates[0].polygon.vertices) == 4


def test_list_excludes_submission(registry):
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.register_listing("L-2", "Plot 2", "user-2", square())
    candidates = registry.list_active_polygons(exclude_id="L-2")
    assert [c.parcel_id for c in candidates] == ["L-1"]


def test_draft_and_archived_are_inactive(registry):
    registry.register_listing("L-1", "Plot 1", "user-1", square(), status=ListingStatus.DRAFT)
    registry.register_listing("L-2", "Plot 2", "user-2", square())
    registry.set_status("L-2", ListingStatus.ARCHIVED)
    assert registry.list_active_polygons() == []


def test_register_rejects_bad_boundary(registry):
    with pytest.raises(InvalidGeometry):
        registry.register_listing("L-1", "Plot 1", "user-1", {"type": "Polygon", "coordinates": []})
    assert registry.get_listing("L-1") is None


def test_unreadable_boundary_is_skipped(registry):
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.register_listing("L-2", "Plot 2", "user-2", square(lon=39.29))

    conn = sqlite3.connect(registry.db_path)
    conn.execute("UPDATE listing_polygons SET geojson = ? WHERE listing_id = ?",
                 (json.dumps({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}), "L-2"))
    conn.commit()
    conn.close()

    assert [c.parcel_id for c in registry.list_active_polygons()] == ["L-1"]


def test_delete_listing_artifacts(registry):
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.add_media("L-1", "https://cdn.example.com/a.jpg")
    registry.add_media("L-1", "https://cdn.example.com/b.jpg")
    assert registry.count_media("L-1") == 2

    registry.delete_listing_artifacts("L-1")

    assert registry.get_listing("L-1") is None
    assert registry.count_media("L-1") == 0
    assert registry.list_active_polygons() == []


def test_delete_missing_listing_raises(registry):
    with pytest.raises(RepositoryError) as exc:
        registry.delete_listing_artifacts("nope")
    assert exc.value.listing_id == "nope"


def test_update_boundary(registry):
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.update_boundary("L-1", square(lon=39.30))
    polygon = registry.list_active_polygons()[0].polygon
    assert polygon.vertices[0] == (39.30, -6.80)


def test_risk_profile_replaced(registry):
    """At most one profile per parcel; recalculation replaces it."""
    registry.register_listing("L-1", "Plot 1", "user-1", square())
    registry.upsert_risk_profile(_profile("L-1", 20, RiskLevel.LOW))
    registry.upsert_risk_profile(_profile("L-1", 70, RiskLevel.HIGH))

    stored = registry.get_risk_profile("L-1")
    assert stored["flood_risk_score"] == 70
    assert stored["flood_risk_level"] == "high"
    assert stored["data_availability"]["elevation"] is True

    conn = sqlite3.connect(registry.db_path)
    count = conn.execute("SELECT COUNT(*) FROM risk_profiles").fetchone()[0]
    conn.close()
    assert count == 1
