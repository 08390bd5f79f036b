"""
Parcel Engine CLI

    python main.py validate boundary.geojson
    python main.py check boundary.geojson [--listing L-9 --title "Plot 7" --uploader user-3]
    python main.py risk L-9 boundary.geojson [--save]
    python main.py scan [--min-percentage 10]

Reads GeoJSON files, prints JSON. Storage and providers are configured
from the environment (see core.config).
"""

import json
import logging
import sys

from core.config import get_settings
from core.errors import InvalidGeometry, RepositoryError
from core.geometry import validate_polygon
from core.notifications import SQLiteNotificationSink
from core.registry import ParcelRegistry
from core.service import ParcelService
from loaders.elevation import get_elevation_loader
from loaders.enrichment import GeoEnrichmentPipeline
from loaders.overpass import get_overpass_loader

log = logging.getLogger(__name__)


def _load_geojson(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _print(payload):
    print(json.dumps(payload, indent=2, default=str))


def build_service() -> ParcelService:
    settings = get_settings()
    registry = ParcelRegistry(settings.db_path)
    sink = SQLiteNotificationSink(settings.db_path, settings)
    pipeline = GeoEnrichmentPipeline(
        get_overpass_loader(),
        get_elevation_loader(),
        timeout_s=settings.provider_timeout_s,
        sample_timeout_s=settings.elevation_timeout_s,
    )
    return ParcelService(registry, sink, pipeline, settings)


def main(argv=None) -> int:
    """CLI interface for the parcel engine."""
    import argparse

    parser = argparse.ArgumentParser(description="Parcel overlap and flood risk engine")
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Validate a boundary without touching the registry")
    p_validate.add_argument("geojson", help="Path to a GeoJSON Polygon/Feature")

    p_check = sub.add_parser("check", help="Check a boundary against registered parcels")
    p_check.add_argument("geojson", help="Path to a GeoJSON Polygon/Feature")
    p_check.add_argument("--listing", help="Id of the just-created listing (excluded, removed if blocking)")
    p_check.add_argument("--title", help="Title of the just-created listing")
    p_check.add_argument("--uploader", help="User id of the uploader")

    p_risk = sub.add_parser("risk", help="Calculate a flood risk profile")
    p_risk.add_argument("listing_id")
    p_risk.add_argument("geojson", help="Path to a GeoJSON Polygon/Feature")
    p_risk.add_argument("--save", action="store_true", help="Store the profile in the registry")

    p_scan = sub.add_parser("scan", help="List overlapping pairs of registered parcels")
    p_scan.add_argument("--min-percentage", type=float, default=10.0)

    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.command == "validate":
            report = validate_polygon(_load_geojson(args.geojson), get_settings().service_region)
            _print(report.to_dict())
            return 0 if report.is_valid else 1

        service = build_service()

        if args.command == "check":
            decision = service.check_overlap(
                _load_geojson(args.geojson),
                exclude_listing_id=args.listing,
                listing_title=args.title,
                uploader_id=args.uploader,
            )
            _print(decision.to_dict())
            return 0 if decision.can_proceed else 2

        if args.command == "risk":
            profile = service.calculate_risk(args.listing_id, _load_geojson(args.geojson))
            if args.save:
                service.repository.upsert_risk_profile(profile)
            _print(profile.to_dict())
            return 0

        if args.command == "scan":
            _print([pair.to_dict() for pair in service.scan_registry(args.min_percentage)])
            return 0

    except InvalidGeometry as e:
        _print({"error": "invalid_geometry", "reasons": e.reasons})
        return 1
    except RepositoryError as e:
        log.error(f"Registry error: {e}")
        return 3

    return 0


if __name__ == "__main__":
    sys.exit(main())
