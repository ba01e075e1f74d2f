"""CLI job to geocode stored locations that have an address but no coordinates."""

import argparse
import logging
import time
from typing import Optional, Sequence

from crm_enrich.core.config import ConfigError, get_settings
from crm_enrich.core.db import Store, open_store
from crm_enrich.core.geocoder import Geocoder
from crm_enrich.models import GeocodeSummary

logger = logging.getLogger(__name__)


def run_geocode_job(
    *,
    limit: Optional[int] = None,
    dry_run: bool = False,
    store: Optional[Store] = None,
    geocoder: Optional[Geocoder] = None,
    delay_s: Optional[float] = None,
) -> GeocodeSummary:
    settings = get_settings()
    if store is None:
        store = open_store(dry_run)
    if geocoder is None:
        geocoder = Geocoder(settings=settings)
    if delay_s is None:
        delay_s = settings.geocode_delay_seconds

    locations = store.list_locations_missing_coordinates(limit=limit)
    summary = GeocodeSummary(locations_total=len(locations), dry_run=dry_run)
    logger.info("Geocoding %d locations (dry_run=%s)", len(locations), dry_run)

    for index, location in enumerate(locations):
        if index and delay_s > 0:
            # Nominatim allows one request per second.
            time.sleep(delay_s)

        try:
            result = geocoder.geocode(location.address_raw)
            if result is not None and not dry_run:
                store.update_location_coordinates(
                    location.id,
                    result.latitude,
                    result.longitude,
                    address_components=result.address_components,
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Geocoding failed for %s: %s", location.external_id, exc)
            summary.failed += 1
            summary.still_missing.append(location.external_id)
            continue

        if result is None:
            logger.info("Still ungeocoded: %s (%r)", location.external_id, location.address_raw)
            summary.still_missing.append(location.external_id)
            continue

        logger.info(
            "Geocoded %s via %s: %.6f, %.6f",
            location.external_id,
            result.provider,
            result.latitude,
            result.longitude,
        )
        summary.geocoded += 1

    logger.info("Geocoding %s: %s", "dry run" if dry_run else "complete", summary.to_dict())
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Geocode locations that lack coordinates")
    parser.add_argument("--limit", dest="limit", type=int, help="Maximum number of locations to geocode")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Geocode without writing results")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        summary = run_geocode_job(limit=args.limit, dry_run=args.dry_run)
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    logger.info("Geocoded: %d, still missing: %d", summary.geocoded, len(summary.still_missing))


if __name__ == "__main__":
    main()
