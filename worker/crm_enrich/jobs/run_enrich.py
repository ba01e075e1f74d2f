"""CLI job that fills street-level addresses from companies' own websites.

For every stored company with a website, the official domain is crawled and
the extracted addresses are matched against locations of the company and its
subsidiaries that still lack a street number.
"""

import argparse
import logging
from typing import Callable, Dict, List, Optional, Sequence, Set

from crm_enrich.core.config import ConfigError, get_settings
from crm_enrich.core.crawler import crawl_official_site
from crm_enrich.core.db import Store, open_store
from crm_enrich.core.fetcher import is_directory_domain
from crm_enrich.core.matcher import has_street_number, match_addresses_to_locations
from crm_enrich.models import CompanyRecord, CrawlResult, EnrichSummary, LocationRecord, MatchTarget

logger = logging.getLogger(__name__)

ENRICH_MAX_PAGES = 50
ENRICH_MAX_DEPTH = 2
MIN_ADDRESS_LENGTH = 4

CrawlFn = Callable[..., CrawlResult]


def needs_street_address(location: LocationRecord) -> bool:
    raw = (location.address_raw or "").strip()
    return len(raw) >= MIN_ADDRESS_LENGTH and not has_street_number(raw)


def _locations_needing_street(store: Store, company: CompanyRecord) -> List[LocationRecord]:
    company_ids = [company.id] + store.list_child_company_ids(company.id)
    return [location for location in store.list_company_locations(company_ids) if needs_street_address(location)]


def enrich_company(
    company: CompanyRecord,
    store: Store,
    *,
    max_pages: int = ENRICH_MAX_PAGES,
    max_depth: int = ENRICH_MAX_DEPTH,
    min_similarity: Optional[float] = None,
    dry_run: bool = False,
    crawl: CrawlFn = crawl_official_site,
) -> Dict[str, str]:
    """Crawl one company's site and apply matches; returns ``{location external id: new address}``."""

    locations = _locations_needing_street(store, company)
    if not locations:
        logger.debug("No locations of %s need a street address", company.external_id)
        return {}

    result = crawl(company.website, max_pages=max_pages, max_depth=max_depth)
    logger.info(
        "Crawled %s: %d pages, %d addresses",
        company.website,
        len(result.pages_visited),
        len(result.addresses),
    )
    if not result.addresses:
        return {}

    if min_similarity is None:
        min_similarity = get_settings().match_min_similarity
    targets = [
        MatchTarget(
            external_id=location.external_id,
            address_raw=location.address_raw,
            address_components=location.address_components,
        )
        for location in locations
    ]
    matches = match_addresses_to_locations(result.addresses, targets, min_similarity=min_similarity)

    for location in locations:
        new_address = matches.get(location.external_id)
        if not new_address:
            continue
        logger.info("Location %s: %r -> %r", location.external_id, location.address_raw, new_address)
        if dry_run:
            continue
        metadata = dict(location.metadata or {})
        metadata["previousAddressRaw"] = location.address_raw
        metadata["addressSource"] = company.website
        store.update_location_address(location.id, new_address, metadata)

    return matches


def run_enrich_job(
    *,
    company_ids: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
    max_pages: int = ENRICH_MAX_PAGES,
    max_depth: int = ENRICH_MAX_DEPTH,
    dry_run: bool = False,
    store: Optional[Store] = None,
    crawl: CrawlFn = crawl_official_site,
) -> EnrichSummary:
    if store is None:
        store = open_store(dry_run)

    companies = store.list_companies_with_website(limit=limit, external_ids=company_ids or None)
    summary = EnrichSummary(companies_total=len(companies), dry_run=dry_run)
    logger.info("Enriching %d companies (dry_run=%s)", len(companies), dry_run)

    pending: Dict[str, LocationRecord] = {}
    filled: Set[str] = set()

    for index, company in enumerate(companies, start=1):
        if is_directory_domain(company.website):
            logger.info("[%d/%d] Skipping %s: directory website %s", index, len(companies), company.name, company.website)
            summary.companies_skipped += 1
            continue

        for location in _locations_needing_street(store, company):
            pending.setdefault(location.external_id, location)

        logger.info("[%d/%d] Crawling %s (%s)", index, len(companies), company.name, company.website)
        try:
            matches = enrich_company(
                company,
                store,
                max_pages=max_pages,
                max_depth=max_depth,
                dry_run=dry_run,
                crawl=crawl,
            )
        except ValueError as exc:
            logger.warning("Skipping %s: %s", company.external_id, exc)
            summary.companies_skipped += 1
            continue
        except Exception as exc:  # noqa: BLE001
            logger.warning("Crawl failed for %s: %s", company.external_id, exc)
            summary.crawl_failures += 1
            continue

        summary.companies_crawled += 1
        filled.update(matches)

    summary.locations_filled = len(filled)
    summary.locations_still_missing = [external_id for external_id in pending if external_id not in filled]
    logger.info("Enrichment %s: %s", "dry run" if dry_run else "complete", summary.to_dict())
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fill street addresses by crawling official company websites")
    parser.add_argument(
        "--company",
        dest="company_ids",
        action="append",
        help="Company external id to process (repeatable); default is every company with a website",
    )
    parser.add_argument("--limit", dest="limit", type=int, help="Maximum number of companies to process")
    parser.add_argument("--max-pages", dest="max_pages", type=int, default=ENRICH_MAX_PAGES, help="Pages per site")
    parser.add_argument("--max-depth", dest="max_depth", type=int, default=ENRICH_MAX_DEPTH, help="Link depth per site")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Report matches without writing")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        summary = run_enrich_job(
            company_ids=args.company_ids,
            limit=args.limit,
            max_pages=args.max_pages,
            max_depth=args.max_depth,
            dry_run=args.dry_run,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    logger.info("Locations with street address filled: %d", summary.locations_filled)
    logger.info("Locations still missing street address: %d", len(summary.locations_still_missing))


if __name__ == "__main__":
    main()
