"""
Overpass API Feature Loader

Tag-based feature queries around a point with:
- Rate limiting (per Overpass API guidelines)
- SQLite caching to avoid redundant requests
- Retry with exponential backoff
- Fallback across several public Overpass endpoints
"""

import time
import threading
import sqlite3
import json
import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging
import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from core.config import DEFAULT_OVERPASS_URLS, get_settings
from core.errors import ProviderUnavailable
from core.interfaces import FeatureQueryProvider
from loaders.features import FeatureCategory, GeoFeature, classify_element

log = logging.getLogger(__name__)

# Rate limiter - shared by every loader instance in the process
_last_request_time = 0.0
_rate_lock = threading.Lock()
_MIN_REQUEST_INTERVAL = 1.0

CACHE_TTL_SECONDS = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class TagSpec:
    """One `element["key"="value"](around:radius)` clause."""
    element: str    # "node", "way", "relation", "nwr"
    key: str
    value: str
    radius_m: int

    def to_clause(self, lat: float, lon: float) -> str:
        return f'{self.element}["{self.key}"="{self.value}"](around:{self.radius_m},{lat:.6f},{lon:.6f});'


HYDROLOGY_TAGS = (
    TagSpec("way", "waterway", "river", 5000),
    TagSpec("way", "waterway", "stream", 5000),
    TagSpec("way", "waterway", "canal", 5000),
    TagSpec("nwr", "natural", "water", 5000),
    TagSpec("way", "water", "lake", 5000),
    TagSpec("way", "water", "pond", 5000),
    TagSpec("way", "water", "reservoir", 5000),
    TagSpec("way", "landuse", "reservoir", 5000),
    TagSpec("nwr", "natural", "wetland", 3000),
    TagSpec("way", "landuse", "basin", 3000),
    TagSpec("way", "waterway", "drain", 2000),
    TagSpec("way", "waterway", "ditch", 2000),
    TagSpec("node", "natural", "spring", 1000),
)

LAND_USE_TAGS = (
    TagSpec("way", "landuse", "floodplain", 2000),
    TagSpec("way", "natural", "floodplain", 2000),
    TagSpec("way", "landuse", "farmland", 1000),
    TagSpec("way", "landuse", "farmyard", 1000),
    TagSpec("way", "landuse", "orchard", 1000),
    TagSpec("way", "landuse", "residential", 500),
    TagSpec("way", "landuse", "commercial", 500),
    TagSpec("way", "landuse", "retail", 500),
    TagSpec("way", "landuse", "industrial", 500),
)


class OverpassCache:
    """SQLite cache for Overpass responses, keyed by query text."""

    def __init__(self, db_path: str = "overpass_cache.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS overpass_cache (
                query_hash TEXT PRIMARY KEY,
                result_json TEXT,
                created_at REAL
            )
        """)
        conn.execute(
            "DELETE FROM overpass_cache WHERE created_at < ?",
            (time.time() - CACHE_TTL_SECONDS,)
        )
        conn.commit()
        conn.close()

    def _hash_query(self, query: str) -> str:
        return hashlib.md5(query.encode()).hexdigest()

    def get(self, query: str) -> Optional[Dict]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT result_json FROM overpass_cache WHERE query_hash = ?",
            (self._hash_query(query),)
        ).fetchone()
        conn.close()
        if row:
            return json.loads(row[0])
        return None

    def set(self, query: str, result: Dict):
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            """INSERT OR REPLACE INTO overpass_cache
               (query_hash, result_json, created_at)
               VALUES (?, ?, ?)""",
            (self._hash_query(query), json.dumps(result), time.time())
        )
        conn.commit()
        conn.close()


class OverpassLoader(FeatureQueryProvider):
    """
    Feature query provider backed by the Overpass API.

    Usage:
        loader = OverpassLoader()
        features = loader.query_features(-6.8, 39.28, HYDROLOGY_TAGS)
    """

    def __init__(
        self,
        urls: Optional[Sequence[str]] = None,
        cache_path: str = "overpass_cache.db",
        timeout: float = 25.0,
    ):
        self.urls = list(urls or DEFAULT_OVERPASS_URLS)
        self.cache = OverpassCache(cache_path)
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

    def build_query(self, lat: float, lon: float, specs: Sequence[TagSpec]) -> str:
        """One union query over all specs, returning centers for ways and relations."""
        clauses = "\n          ".join(spec.to_clause(lat, lon) for spec in specs)
        return f"""
        [out:json][timeout:{int(self.timeout)}];
        (
          {clauses}
        );
        out center;
        """

    @retry(stop=stop_after_attempt(2), wait=wait_exponential(multiplier=1, min=1, max=4), reraise=True)
    def _make_request(self, url: str, query: str) -> Dict:
        """Make a rate-limited request with retry."""
        self._rate_limit()
        response = self.session.post(url, data={"data": query}, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or "elements" not in data:
            raise ValueError("Overpass response has no elements")
        return data

    def fetch_raw(self, lat: float, lon: float, specs: Sequence[TagSpec]) -> Dict:
        """
        Fetch the raw Overpass response for a set of tag specs.

        Raises:
            ProviderUnavailable: every endpoint failed
        """
        query = self.build_query(lat, lon, specs)

        cached = self.cache.get(query)
        if cached is not None:
            log.debug(f"Cache hit for Overpass at ({lat:.4f}, {lon:.4f})")
            return cached

        errors = []
        for url in self.urls:
            try:
                data = self._make_request(url, query)
            except (requests.RequestException, ValueError) as e:
                log.warning(f"Overpass endpoint {url} failed: {e}")
                errors.append(f"{url}: {e}")
                continue

            self.cache.set(query, data)
            log.info(f"Overpass fetched {len(data['elements'])} elements at ({lat:.4f}, {lon:.4f}) from {url}")
            return data

        raise ProviderUnavailable("overpass", "; ".join(errors) or "no endpoints configured")

    def query_features(self, lat: float, lon: float, specs: Sequence[TagSpec]) -> List[GeoFeature]:
        """Classified features around a point; unclassifiable elements are dropped."""
        data = self.fetch_raw(lat, lon, specs)
        features = []
        for element in data.get("elements", []):
            feature = classify_element(element)
            if feature.category is FeatureCategory.UNKNOWN:
                continue
            features.append(feature)
        return features


# Singleton
_loader: Optional[OverpassLoader] = None

def get_overpass_loader() -> OverpassLoader:
    """Get singleton Overpass loader configured from the environment."""
    global _loader
    if _loader is None:
        settings = get_settings()
        settings.ensure_cache_dir()
        _loader = OverpassLoader(
            urls=settings.overpass_urls,
            cache_path=settings.overpass_cache_path,
            timeout=settings.provider_timeout_s,
        )
    return _loader
