"""
Runtime configuration.

Everything here comes from environment variables so the same code runs in
tests, on a laptop, and behind the marketplace backend. Overlap policy
thresholds are NOT configuration; they live in core.overlap.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DEFAULT_OVERPASS_URLS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
]

DEFAULT_ELEVATION_URL = "https://api.open-elevation.com/api/v1/lookup"

# (min_lon, min_lat, max_lon, max_lat) - Tanzania, approximate
DEFAULT_SERVICE_REGION = (29.34, -11.76, 40.44, -0.99)


def _split_urls(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_OVERPASS_URLS)
    return [url.strip() for url in raw.split(",") if url.strip()]


@dataclass
class Settings:
    """Configuration for storage, external providers and notifications."""

    db_path: str = "parcels.db"
    cache_dir: str = "geo_cache"

    # External geodata providers
    overpass_urls: List[str] = field(default_factory=lambda: list(DEFAULT_OVERPASS_URLS))
    elevation_url: str = DEFAULT_ELEVATION_URL
    provider_timeout_s: float = 25.0   # whole sub-query budget
    elevation_timeout_s: float = 10.0  # single point lookup

    # Admin review surface linked from notifications
    review_url: str = "/admin/overlap-review"
    service_region: Tuple[float, float, float, float] = DEFAULT_SERVICE_REGION

    # Email (best-effort; skipped when incomplete)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass and self.smtp_from)

    def ensure_cache_dir(self) -> str:
        os.makedirs(self.cache_dir, exist_ok=True)
        return self.cache_dir

    @property
    def overpass_cache_path(self) -> str:
        return os.path.join(self.cache_dir, "overpass_cache.db")

    @property
    def elevation_cache_path(self) -> str:
        return os.path.join(self.cache_dir, "elevation_cache.db")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            db_path=os.getenv("PARCEL_DB_PATH", "parcels.db"),
            cache_dir=os.getenv("PARCEL_CACHE_DIR", "geo_cache"),
            overpass_urls=_split_urls(os.getenv("OVERPASS_URLS")),
            elevation_url=os.getenv("ELEVATION_URL", DEFAULT_ELEVATION_URL),
            provider_timeout_s=float(os.getenv("PROVIDER_TIMEOUT_S", "25")),
            elevation_timeout_s=float(os.getenv("ELEVATION_TIMEOUT_S", "10")),
            review_url=os.getenv("REVIEW_URL", "/admin/overlap-review"),
            smtp_host=os.getenv("SMTP_HOST"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER"),
            smtp_pass=os.getenv("SMTP_PASS"),
            smtp_from=os.getenv("SMTP_FROM"),
        )


# Singleton
_settings: Optional[Settings] = None

def get_settings() -> Settings:
    """Get singleton settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
