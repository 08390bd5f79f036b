"""
Parcel Registry - SQLite-backed polygon repository.

Reference implementation of the PolygonRepository contract plus risk
profile storage. The marketplace backend can swap in its own repository;
the engine only depends on core.interfaces.
"""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from core.errors import InvalidGeometry, RepositoryError
from core.geometry import Polygon, area, centroid, parse_polygon
from core.interfaces import PolygonRepository
from core.models import ParcelCandidate, RiskProfile

log = logging.getLogger(__name__)


class ListingStatus:
    """Listing lifecycle states."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# Listings in these states are invisible to the overlap check
INACTIVE_STATUSES = (ListingStatus.DRAFT, ListingStatus.ARCHIVED)


class ParcelRegistry(PolygonRepository):
    """
    SQLite store for listings, their boundaries, media and risk profiles.

    Usage:
        registry = ParcelRegistry("parcels.db")
        registry.register_listing("L-1", "Plot 7", "user-1", geojson)
        candidates = registry.list_active_polygons(exclude_id="L-2")
        registry.delete_listing_artifacts("L-2")
    """

    DEFAULT_DB_PATH = "parcels.db"

    def __init__(self, db_path: str = None):
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._lock = threading.RLock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS listings (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        owner_id TEXT,
                        status TEXT NOT NULL DEFAULT 'published',
                        created_at TEXT NOT NULL
                    )
                """)
                # area/centroid are derived and rewritten with every boundary change
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS listing_polygons (
                        listing_id TEXT PRIMARY KEY,
                        geojson TEXT NOT NULL,
                        area_m2 REAL NOT NULL,
                        centroid_lon REAL NOT NULL,
                        centroid_lat REAL NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS listing_media (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        listing_id TEXT NOT NULL,
                        url TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS risk_profiles (
                        listing_id TEXT PRIMARY KEY,
                        flood_risk_score INTEGER NOT NULL,
                        flood_risk_level TEXT NOT NULL,
                        near_river INTEGER NOT NULL,
                        distance_to_river_m REAL,
                        elevation_m REAL,
                        slope_percent REAL,
                        environmental_notes TEXT,
                        calculated_at TEXT NOT NULL,
                        profile_json TEXT NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_listing_status ON listings(status)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_media_listing ON listing_media(listing_id)")
                conn.commit()
                log.info(f"Parcel registry initialized at {self.db_path}")
            finally:
                conn.close()

    # ═══════════════════════════════════════════════════════════════════════
    # LISTINGS
    # ═══════════════════════════════════════════════════════════════════════
    def register_listing(
        self,
        listing_id: str,
        title: str,
        owner_id: Optional[str],
        geojson: Any,
        status: str = ListingStatus.PUBLISHED,
    ) -> Polygon:
        """
        Store a listing and its boundary.

        Raises:
            InvalidGeometry: the boundary is malformed (nothing is stored)
        """
        polygon = parse_polygon(geojson)
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO listings (id, title, owner_id, status, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (listing_id, title, owner_id, status, datetime.now().isoformat())
                )
                self._write_boundary(conn, listing_id, polygon)
                conn.commit()
                log.info(f"Registered listing {listing_id} ({status})")
            finally:
                conn.close()
        return polygon

    def update_boundary(self, listing_id: str, geojson: Any) -> Polygon:
        """Replace a listing's boundary, recomputing its area and centroid."""
        polygon = parse_polygon(geojson)
        with self._lock:
            conn = self._get_connection()
            try:
                self._write_boundary(conn, listing_id, polygon)
                conn.commit()
            finally:
                conn.close()
        return polygon

    def _write_boundary(self, conn: sqlite3.Connection, listing_id: str, polygon: Polygon):
        lon, lat = centroid(polygon)
        conn.execute(
            """
            INSERT OR REPLACE INTO listing_polygons
                (listing_id, geojson, area_m2, centroid_lon, centroid_lat, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (listing_id, json.dumps(polygon.to_geojson()), area(polygon), lon, lat,
             datetime.now().isoformat())
        )

    def set_status(self, listing_id: str, status: str):
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("UPDATE listings SET status = ? WHERE id = ?", (status, listing_id))
                conn.commit()
            finally:
                conn.close()

    def add_media(self, listing_id: str, url: str) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    "INSERT INTO listing_media (listing_id, url) VALUES (?, ?)",
                    (listing_id, url)
                )
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()

    def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def count_media(self, listing_id: str) -> int:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM listing_media WHERE listing_id = ?",
                (listing_id,)
            ).fetchone()
            return row["count"]
        finally:
            conn.close()

    # ═══════════════════════════════════════════════════════════════════════
    # POLYGON REPOSITORY CONTRACT
    # ═══════════════════════════════════════════════════════════════════════
    def list_active_polygons(self, exclude_id: Optional[str] = None) -> List[ParcelCandidate]:
        """
        Boundaries of published listings, optionally excluding one listing.

        Rows whose stored boundary no longer parses are skipped with a warning.
        """
        query = """
            SELECT l.id, l.title, l.owner_id, p.geojson
            FROM listing_polygons p
            JOIN listings l ON l.id = p.listing_id
            WHERE l.status NOT IN (?, ?)
        """
        params: List[Any] = list(INACTIVE_STATUSES)
        if exclude_id:
            query += " AND l.id != ?"
            params.append(exclude_id)
        query += " ORDER BY l.created_at ASC, l.id ASC"

        conn = self._get_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"Could not list polygons: {e}") from e
        finally:
            conn.close()

        candidates = []
        for row in rows:
            try:
                polygon = parse_polygon(json.loads(row["geojson"]))
            except (InvalidGeometry, ValueError) as e:
                log.warning(f"Skipping listing {row['id']} with unreadable boundary: {e}")
                continue
            candidates.append(ParcelCandidate(
                parcel_id=row["id"],
                title=row["title"],
                owner_ref=row["owner_id"],
                polygon=polygon,
            ))

        log.debug(f"Loaded {len(candidates)} active polygons (excluding {exclude_id or 'none'})")
        return candidates

    def delete_listing_artifacts(self, listing_id: str) -> None:
        """Delete boundary and media first, then the listing row, in one transaction."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM listing_polygons WHERE listing_id = ?", (listing_id,))
                conn.execute("DELETE FROM listing_media WHERE listing_id = ?", (listing_id,))
                conn.execute("DELETE FROM risk_profiles WHERE listing_id = ?", (listing_id,))
                cursor = conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
                if cursor.rowcount == 0:
                    conn.rollback()
                    raise RepositoryError(f"Listing {listing_id} not found", listing_id=listing_id)
                conn.commit()
                log.info(f"Deleted listing {listing_id} and its artifacts")
            except sqlite3.Error as e:
                conn.rollback()
                raise RepositoryError(f"Could not delete listing {listing_id}: {e}", listing_id=listing_id) from e
            finally:
                conn.close()

    # ═══════════════════════════════════════════════════════════════════════
    # RISK PROFILES
    # ═══════════════════════════════════════════════════════════════════════
    def upsert_risk_profile(self, profile: RiskProfile):
        """Store a risk profile, fully replacing any previous one for the parcel."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO risk_profiles
                        (listing_id, flood_risk_score, flood_risk_level, near_river,
                         distance_to_river_m, elevation_m, slope_percent,
                         environmental_notes, calculated_at, profile_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (profile.parcel_id, profile.flood_risk_score, profile.flood_risk_level.value,
                     int(profile.near_river), profile.distance_to_river_m, profile.elevation_m,
                     profile.slope_percent, profile.environmental_notes,
                     profile.calculated_at.isoformat(), json.dumps(profile.to_dict()))
                )
                conn.commit()
                log.info(f"Stored risk profile for {profile.parcel_id}: "
                         f"{profile.flood_risk_score} ({profile.flood_risk_level.value})")
            finally:
                conn.close()

    def get_risk_profile(self, listing_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT profile_json FROM risk_profiles WHERE listing_id = ?",
                (listing_id,)
            ).fetchone()
            return json.loads(row["profile_json"]) if row else None
        finally:
            conn.close()
