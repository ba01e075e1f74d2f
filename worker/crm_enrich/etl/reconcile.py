"""Merge supplier rows into the canonical company/location graph.

The import runs in strictly ordered passes:

1. normalise rows and drop batch duplicates (first occurrence wins);
2. upsert one company per company external id;
3. link children to parents resolved through this batch, then the store;
4. upsert one location per location external id.

Within a pass, items are processed in batches on a thread pool; all counters
are tallied here, in the calling thread. Records whose content would not
change are never written, so importing the same files twice is a no-op.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from crm_enrich.core.config import get_settings
from crm_enrich.core.db import Store
from crm_enrich.core.geocoder import valid_coordinates
from crm_enrich.etl.keys import (
    company_base_name,
    company_external_id,
    company_key,
    dedupe_key,
    import_payload,
    location_external_id,
    merge_legacy_payload,
    parent_external_id,
)
from crm_enrich.etl.transform import to_supplier_row
from crm_enrich.models import CompanyRecord, LocationRecord, ReconcileSummary, SupplierRow

logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "dry-run:"
CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


@dataclass
class _CompanyOutcome:
    status: str
    record: CompanyRecord


def _iter_batched(
    items: List[Any],
    worker: Callable[[Any], Any],
    batch_size: int,
    max_workers: int,
) -> Iterator[Tuple[Any, Any, Optional[BaseException]]]:
    """Yield ``(item, result, error)`` in input order, one batch at a time."""

    if not items:
        return
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for start in range(0, len(items), batch_size):
            batch = items[start : start + batch_size]
            futures = [(item, executor.submit(worker, item)) for item in batch]
            for item, future in futures:
                try:
                    yield item, future.result(), None
                except Exception as exc:  # noqa: BLE001
                    yield item, None, exc


def _merged_legacy(existing: Optional[Any], incoming: Any, include_legacy: bool) -> Any:
    if not include_legacy:
        return existing
    return merge_legacy_payload(existing, incoming)


class _Reconciler:
    def __init__(self, store: Store, *, dry_run: bool, include_legacy: bool) -> None:
        self.store = store
        self.dry_run = dry_run
        self.include_legacy = include_legacy

    def _placeholder(self, external_id: str) -> str:
        return DRY_RUN_PREFIX + external_id

    def upsert_company(self, item: Tuple[str, SupplierRow]) -> _CompanyOutcome:
        external_id, row = item
        existing = self.store.find_company(external_id)

        metadata = dict(existing.metadata) if existing else {}
        metadata["importPayload"] = import_payload(row)
        website = (row.website or "").strip() or (existing.website if existing else None)

        candidate = CompanyRecord(
            external_id=external_id,
            name=company_base_name(row),
            website=website,
            company_key=(row.company_key or "").strip() or company_key(row),
            tier=row.tier,
            segment=row.segment,
            category=row.category,
            subtype_group=row.subtype_group,
            subtype=row.subtype,
            parent_external_id=parent_external_id(row) or (existing.parent_external_id if existing else None),
            parent_id=existing.parent_id if existing else None,
            legacy_json=_merged_legacy(existing.legacy_json if existing else None, row.legacy_json, self.include_legacy),
            metadata=metadata,
            id=existing.id if existing else None,
        )

        if existing is not None and candidate == existing:
            return _CompanyOutcome(UNCHANGED, candidate)

        status = UPDATED if existing else CREATED
        if self.dry_run:
            candidate.id = candidate.id or self._placeholder(external_id)
        else:
            candidate.id = self.store.save_company(candidate)
        return _CompanyOutcome(status, candidate)

    def resolve_parent(self, parent_ext_id: str, batch_ids: Dict[str, str]) -> Optional[str]:
        if parent_ext_id in batch_ids:
            return batch_ids[parent_ext_id]
        parent = self.store.find_company(parent_ext_id)
        return parent.id if parent else None

    def link_parent(self, item: Tuple[CompanyRecord, Dict[str, str]]) -> Optional[bool]:
        """``True`` when a link was written, ``False`` when already set, ``None`` when unresolved."""

        record, batch_ids = item
        parent_id = self.resolve_parent(record.parent_external_id, batch_ids)
        if parent_id is None:
            return None
        if parent_id == record.id or parent_id == record.parent_id:
            return False
        if not self.dry_run:
            self.store.save_company(replace(record, parent_id=parent_id))
        return True

    def upsert_location(self, item: Tuple[str, SupplierRow, str]) -> str:
        external_id, row, company_id = item
        existing = self.store.find_location(external_id)

        metadata = dict(existing.metadata) if existing else {}
        tags = dict(metadata.get("tags") or {})
        for key, values in (
            ("capabilityTags", row.capability_tags),
            ("packagingSignals", row.packaging_signals),
            ("industryKeywords", row.industry_keywords),
        ):
            if values:
                tags[key] = list(values)
        if tags:
            metadata["tags"] = tags

        coordinates = valid_coordinates(row.latitude, row.longitude)
        if coordinates is None and existing:
            coordinates = (existing.latitude, existing.longitude)

        candidate = LocationRecord(
            external_id=external_id,
            company_id=company_id,
            address_raw=row.address_raw or (existing.address_raw if existing else ""),
            address_components=row.address_components
            if row.address_components is not None
            else (existing.address_components if existing else None),
            address_confidence=row.address_confidence
            if row.address_confidence is not None
            else (existing.address_confidence if existing else None),
            latitude=coordinates[0] if coordinates else None,
            longitude=coordinates[1] if coordinates else None,
            legacy_json=_merged_legacy(existing.legacy_json if existing else None, row.legacy_json, self.include_legacy),
            metadata=metadata,
            id=existing.id if existing else None,
        )

        if existing is not None and candidate == existing:
            return UNCHANGED
        if not self.dry_run:
            self.store.save_location(candidate)
        return UPDATED if existing else CREATED


def _normalise(rows: Iterable[Any], summary: ReconcileSummary) -> List[SupplierRow]:
    unique: List[SupplierRow] = []
    seen = set()
    for entry in rows:
        summary.rows_total += 1
        row = entry if isinstance(entry, SupplierRow) else to_supplier_row(entry)
        if row is None:
            summary.rows_skipped += 1
            continue
        key = dedupe_key(row)
        if key in seen:
            summary.rows_duplicate += 1
            continue
        seen.add(key)
        unique.append(row)
    return unique


def reconcile(
    rows: Iterable[Any],
    store: Store,
    *,
    dry_run: bool = False,
    include_legacy: bool = True,
    batch_size: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> ReconcileSummary:
    """Import raw supplier entries (or ``SupplierRow`` objects) into ``store``."""

    settings = get_settings()
    batch_size = max(1, batch_size or settings.import_batch_size)
    max_workers = max(1, max_workers or settings.import_max_workers)

    summary = ReconcileSummary(dry_run=dry_run)
    reconciler = _Reconciler(store, dry_run=dry_run, include_legacy=include_legacy)

    unique_rows = _normalise(rows, summary)
    logger.info(
        "Normalised %d rows: %d unique, %d skipped, %d duplicate",
        summary.rows_total,
        len(unique_rows),
        summary.rows_skipped,
        summary.rows_duplicate,
    )

    # Companies: first row per external id supplies the fields.
    company_rows: Dict[str, SupplierRow] = {}
    row_company_ids: List[str] = []
    for row in unique_rows:
        external_id = company_external_id(row)
        row_company_ids.append(external_id)
        company_rows.setdefault(external_id, row)

    company_ids: Dict[str, str] = {}
    company_records: List[CompanyRecord] = []
    for (external_id, _), outcome, error in _iter_batched(
        list(company_rows.items()), reconciler.upsert_company, batch_size, max_workers
    ):
        if error is not None:
            logger.error("Failed to upsert company %s: %s", external_id, error)
            continue
        company_ids[external_id] = outcome.record.id
        company_records.append(outcome.record)
        if outcome.status == CREATED:
            summary.companies_created += 1
        elif outcome.status == UPDATED:
            summary.companies_updated += 1
        else:
            summary.companies_unchanged += 1

    # Parent links.
    children = [
        (record, company_ids)
        for record in company_records
        if record.parent_external_id and record.parent_external_id != record.external_id
    ]
    for (record, _), linked, error in _iter_batched(children, reconciler.link_parent, batch_size, max_workers):
        if error is not None:
            logger.error("Failed to link %s to parent %s: %s", record.external_id, record.parent_external_id, error)
            summary.parent_links_unresolved += 1
        elif linked is None:
            logger.debug("Parent %s of %s not found", record.parent_external_id, record.external_id)
            summary.parent_links_unresolved += 1
        elif linked:
            summary.parent_links_set += 1

    # Locations: collapsed by location external id, first row wins.
    location_items: List[Tuple[str, SupplierRow, str]] = []
    seen_locations = set()
    for row, company_ext_id in zip(unique_rows, row_company_ids):
        company_id = company_ids.get(company_ext_id)
        if company_id is None:
            summary.rows_failed += 1
            continue
        location_ext_id = location_external_id(row, company_ext_id)
        if location_ext_id in seen_locations:
            continue
        seen_locations.add(location_ext_id)
        location_items.append((location_ext_id, row, company_id))

    for (location_ext_id, _, _), status, error in _iter_batched(
        location_items, reconciler.upsert_location, batch_size, max_workers
    ):
        if error is not None:
            logger.error("Failed to upsert location %s: %s", location_ext_id, error)
            summary.rows_failed += 1
        elif status == CREATED:
            summary.locations_created += 1
        elif status == UPDATED:
            summary.locations_updated += 1
        else:
            summary.locations_unchanged += 1

    logger.info("Import %s: %s", "dry run" if dry_run else "complete", summary.to_dict())
    return summary
