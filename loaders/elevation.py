"""
Elevation Loader - Fetch elevation data from Open-Elevation.

Open-Elevation serves SRTM-derived elevations worldwide, including East
Africa. Lookups are cached per point in SQLite.
"""

import time
import threading
import sqlite3
from typing import Optional, Dict
from dataclasses import dataclass
import logging
import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from core.config import DEFAULT_ELEVATION_URL, get_settings
from core.errors import ProviderUnavailable
from core.interfaces import ElevationProvider

log = logging.getLogger(__name__)

# Rate limiter
_last_request_time = 0.0
_rate_lock = threading.Lock()
_MIN_REQUEST_INTERVAL = 0.2  # 5 requests per second max

# SRTM voids and sea points come back as large negative values
_MIN_VALID_ELEVATION = -500.0


@dataclass
class ElevationResult:
    """Elevation data for a point."""
    latitude: float
    longitude: float
    elevation_meters: float
    data_source: str
    resolution_meters: float


class ElevationCache:
    """Point elevations keyed by provider and rounded coordinates."""

    def __init__(self, db_path: str = "elevation_cache.db", max_age_days: int = 365):
        self.db_path = db_path
        self.max_age_s = max_age_days * 86400
        self._create_table()

    def _create_table(self):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS point_elevations (
                    provider TEXT NOT NULL,
                    point_key TEXT NOT NULL,
                    meters REAL NOT NULL,
                    source TEXT,
                    resolution_m REAL,
                    fetched_at REAL NOT NULL,
                    PRIMARY KEY (provider, point_key)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def point_key(lat: float, lon: float) -> str:
        # 5 decimals is roughly 1m, well inside one SRTM cell
        return f"{lat:.5f},{lon:.5f}"

    def lookup(self, provider: str, lat: float, lon: float) -> Optional[ElevationResult]:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT meters, source, resolution_m, fetched_at FROM point_elevations "
                "WHERE provider = ? AND point_key = ?",
                (provider, self.point_key(lat, lon)),
            ).fetchone()
        finally:
            conn.close()
        if row is None or time.time() - row[3] > self.max_age_s:
            return None
        return ElevationResult(lat, lon, row[0], row[1], row[2])

    def store(self, provider: str, result: ElevationResult):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO point_elevations VALUES (?, ?, ?, ?, ?, ?)",
                (provider, self.point_key(result.latitude, result.longitude),
                 result.elevation_meters, result.data_source,
                 result.resolution_meters, time.time()),
            )
            conn.commit()
        finally:
            conn.close()


class ElevationLoader(ElevationProvider):
    """
    Fetch elevation data from an Open-Elevation compatible API.

    API Documentation:
    https://github.com/Jorl17/open-elevation/blob/master/docs/api.md
    """

    def __init__(
        self,
        url: str = DEFAULT_ELEVATION_URL,
        cache_path: str = "elevation_cache.db",
        timeout: float = 10.0,
    ):
        self.url = url
        self.cache = ElevationCache(cache_path)
        self.timeout = timeout
        self.session = requests.Session()

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        global _last_request_time
        # Held across the sleep so concurrent callers queue up behind each other
        with _rate_lock:
            elapsed = time.time() - _last_request_time
            if elapsed < _MIN_REQUEST_INTERVAL:
                time.sleep(_MIN_REQUEST_INTERVAL - elapsed)
            _last_request_time = time.time()

    @retry(stop=stop_after_attempt(2), wait=wait_exponential(multiplier=1, min=1, max=3), reraise=True)
    def _make_request(self, lat: float, lon: float) -> Dict:
        self._rate_limit()
        response = self.session.get(
            self.url,
            params={"locations": f"{lat},{lon}"},
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def lookup(self, lat: float, lon: float) -> ElevationResult:
        """
        Get elevation for a single point.

        Raises:
            ProviderUnavailable: request failed, or no usable value at this point
        """
        cached = self.cache.lookup(self.url, lat, lon)
        if cached:
            return cached

        try:
            data = self._make_request(lat, lon)
        except (requests.RequestException, ValueError) as e:
            log.error(f"Elevation request failed for ({lat}, {lon}): {e}")
            raise ProviderUnavailable("elevation", str(e)) from e

        try:
            elevation = float(data["results"][0]["elevation"])
        except (KeyError, IndexError, ValueError, TypeError) as e:
            log.error(f"Failed to parse elevation response: {e}")
            raise ProviderUnavailable("elevation", "unreadable response") from e

        if elevation < _MIN_VALID_ELEVATION:
            log.debug(f"No elevation data for ({lat}, {lon})")
            raise ProviderUnavailable("elevation", f"no data at ({lat}, {lon})")

        result = ElevationResult(
            latitude=lat,
            longitude=lon,
            elevation_meters=elevation,
            data_source="SRTM",
            resolution_meters=30.0,  # SRTM 1 arc-second
        )
        self.cache.store(self.url, result)
        log.debug(f"Elevation at ({lat:.4f}, {lon:.4f}): {elevation:.1f}m")
        return result

    def get_elevation(self, lat: float, lon: float) -> float:
        return self.lookup(lat, lon).elevation_meters


# Singleton
_loader: Optional[ElevationLoader] = None

def get_elevation_loader() -> ElevationLoader:
    """Get singleton elevation loader configured from the environment."""
    global _loader
    if _loader is None:
        settings = get_settings()
        settings.ensure_cache_dir()
        _loader = ElevationLoader(
            url=settings.elevation_url,
            cache_path=settings.elevation_cache_path,
            timeout=settings.elevation_timeout_s,
        )
    return _loader
