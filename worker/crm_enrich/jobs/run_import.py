"""CLI job to import supplier JSON files into the company/location graph."""

import argparse
import logging
from typing import List, Optional, Sequence

from crm_enrich.core.config import ConfigError
from crm_enrich.core.db import PostgresStore, Store, open_store
from crm_enrich.etl.reconcile import reconcile
from crm_enrich.etl.transform import load_supplier_files
from crm_enrich.models import ReconcileSummary

logger = logging.getLogger(__name__)


def run_import_job(
    *,
    files: Sequence[str],
    dry_run: bool = False,
    include_legacy: bool = True,
    ensure_schema: bool = False,
    store: Optional[Store] = None,
) -> ReconcileSummary:
    if not files:
        raise ValueError("At least one supplier file is required")

    if store is None:
        store = open_store(dry_run)
    if ensure_schema and not dry_run and isinstance(store, PostgresStore):
        store.ensure_schema()

    entries = load_supplier_files(files)
    logger.info("Importing %d entries from %d file(s) (dry_run=%s)", len(entries), len(files), dry_run)
    return reconcile(entries, store, dry_run=dry_run, include_legacy=include_legacy)


def _split_files(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import supplier JSON files into companies and locations")
    parser.add_argument(
        "--files",
        dest="files",
        type=_split_files,
        required=True,
        help="Comma-separated list of supplier JSON files",
    )
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Report counts without writing")
    parser.add_argument(
        "--no-legacy",
        dest="include_legacy",
        action="store_false",
        help="Do not import legacy payloads (stored ones are kept)",
    )
    parser.add_argument(
        "--ensure-schema",
        dest="ensure_schema",
        action="store_true",
        help="Create the companies/locations tables when missing",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        summary = run_import_job(
            files=args.files,
            dry_run=args.dry_run,
            include_legacy=args.include_legacy,
            ensure_schema=args.ensure_schema,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    logger.info("Summary: %s", summary.to_dict())


if __name__ == "__main__":
    main()
