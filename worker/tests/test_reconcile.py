import pytest

from crm_enrich.core.memory_store import MemoryStore
from crm_enrich.etl import reconcile as reconcile_module
from crm_enrich.etl.reconcile import reconcile

SUPPLIERS = [
    {
        "company": "Global Holdings",
        "website": "https://www.globalholdings.com",
        "address": "1 Tower Plaza, Chicago, IL 60601",
        "tier": "1",
    },
    {
        "company": "Acme Packaging (Erie, PA)",
        "website": "acme.com",
        "address": "12 Harbor Rd, Erie, PA 16501",
        "parentCompany": "Global Holdings (USA)",
        "parentCompanyId": "cmp:globalholdings.com",
        "capabilityTags": ["corrugated"],
        "lat": 42.13,
        "lng": -80.09,
    },
    {
        "company": "Acme Packaging (Dayton, OH)",
        "website": "https://acme.com/",
        "address": "Dayton, OH",
        "legacyJson": {"supplier": {"supplier_name": "Acme Packaging"}, "rank": 3},
    },
]


def _counts(summary):
    data = summary.to_dict()
    data.pop("dry_run")
    return data


def test_import_creates_graph():
    store = MemoryStore()

    summary = reconcile(SUPPLIERS, store)

    assert summary.rows_total == 3
    assert summary.companies_created == 2
    assert summary.locations_created == 3
    assert summary.parent_links_set == 1
    assert summary.rows_failed == 0

    parent = store.find_company("cmp:globalholdings.com")
    child = store.find_company("cmp:acme.com")
    assert child.parent_id == parent.id
    assert child.name == "Acme Packaging"
    assert child.metadata["importPayload"]["company"] == "Acme Packaging (Erie, PA)"

    erie = store.find_location("loc:cmp:acme.com:12-harbor-rd-erie-pa-16501")
    assert erie.company_id == child.id
    assert (erie.latitude, erie.longitude) == (42.13, -80.09)
    assert erie.metadata == {"tags": {"capabilityTags": ["corrugated"]}}


def test_second_import_is_a_no_op():
    store = MemoryStore()
    reconcile(SUPPLIERS, store)
    writes = store.writes

    summary = reconcile(SUPPLIERS, store)

    assert summary.companies_created == summary.companies_updated == 0
    assert summary.locations_created == summary.locations_updated == 0
    assert summary.parent_links_set == 0
    assert summary.companies_unchanged == 2
    assert summary.locations_unchanged == 3
    assert store.writes == writes


def test_batch_duplicates_keep_first_occurrence():
    store = MemoryStore()
    rows = [
        {"company": "Acme", "website": "acme.com", "address": "12 Harbor Rd, Erie, PA", "tier": "1"},
        {"company": "Acme", "website": "https://acme.com", "address": "12  harbor rd, erie, pa", "tier": "2"},
    ]

    summary = reconcile(rows, store)

    assert summary.rows_duplicate == 1
    assert summary.locations_created == 1
    assert store.find_company("cmp:acme.com").tier == "1"


def test_explicit_location_ids_collapse():
    store = MemoryStore()
    rows = [
        {"company": "Acme", "website": "acme.com", "locationId": "loc-7", "address": "12 Harbor Rd, Erie, PA"},
        {"company": "Acme", "website": "acme.com", "location_id": "loc-7", "address": "Somewhere else"},
    ]

    summary = reconcile(rows, store)

    assert summary.rows_duplicate == 1
    assert summary.locations_created == 1
    assert [loc.external_id for loc in store.locations] == ["loc-7"]
    assert store.find_location("loc-7").address_raw == "12 Harbor Rd, Erie, PA"


def test_unusable_rows_are_skipped():
    summary = reconcile([{"company": "No address"}, "junk", {"address": "1 Main St"}], MemoryStore())

    assert summary.rows_total == 3
    assert summary.rows_skipped == 3
    assert summary.companies_created == 0


def test_unresolved_parent_is_counted():
    store = MemoryStore()
    rows = [{"company": "Acme", "website": "acme.com", "address": "1 Main St", "parentCompany": "Nobody Corp"}]

    summary = reconcile(rows, store)

    assert summary.parent_links_unresolved == 1
    assert summary.parent_links_set == 0
    assert store.find_company("cmp:acme.com").parent_external_id == "cmp:name:nobody-corp"


def test_parent_resolved_from_store_in_later_import():
    store = MemoryStore()
    reconcile([{"company": "Nobody Corp", "address": "9 Elm St, Dover, DE"}], store)

    summary = reconcile(
        [{"company": "Acme", "website": "acme.com", "address": "1 Main St", "parentCompany": "Nobody Corp"}], store
    )

    assert summary.parent_links_set == 1
    assert store.find_company("cmp:acme.com").parent_id == store.find_company("cmp:name:nobody-corp").id


def test_company_never_links_to_itself():
    rows = [{"company": "Acme", "companyId": "cmp-1", "parentCompanyId": "cmp-1", "address": "1 Main St"}]

    summary = reconcile(rows, MemoryStore())

    assert summary.parent_links_set == 0
    assert summary.parent_links_unresolved == 0


def test_dry_run_counts_like_a_real_run_without_writing():
    store = MemoryStore()

    dry = reconcile(SUPPLIERS, store, dry_run=True)

    assert dry.dry_run is True
    assert store.writes == 0
    assert store.companies == []

    real = reconcile(SUPPLIERS, MemoryStore())
    assert _counts(dry) == _counts(real)


def test_update_merges_and_keeps_unsupplied_fields():
    store = MemoryStore()
    reconcile(SUPPLIERS, store)

    summary = reconcile(
        [
            {
                "company": "Acme Packaging (Erie, PA)",
                "website": "acme.com",
                "address": "12 Harbor Rd, Erie, PA 16501",
                "packagingSignals": ["boxes"],
            }
        ],
        store,
    )

    assert summary.companies_updated == 1
    assert summary.locations_updated == 1
    erie = store.find_location("loc:cmp:acme.com:12-harbor-rd-erie-pa-16501")
    assert erie.metadata["tags"] == {"capabilityTags": ["corrugated"], "packagingSignals": ["boxes"]}
    assert (erie.latitude, erie.longitude) == (42.13, -80.09)
    # Parent external id is kept when the row names none.
    assert store.find_company("cmp:acme.com").parent_external_id == "cmp:globalholdings.com"


def test_no_legacy_keeps_stored_payload():
    store = MemoryStore()
    reconcile(SUPPLIERS, store)
    dayton = "loc:cmp:acme.com:dayton-oh"
    stored = store.find_location(dayton).legacy_json
    assert stored == {"supplier": {"supplier_name": "Acme Packaging"}, "rank": 3}

    rows = [dict(SUPPLIERS[2], legacyJson={"other": True, "a": 1, "b": 2, "c": 3})]
    reconcile(rows, store, include_legacy=False)
    assert store.find_location(dayton).legacy_json == stored

    reconcile(rows, store)
    assert store.find_location(dayton).legacy_json["other"] is True


def test_location_failures_are_counted():
    class FailingStore(MemoryStore):
        def save_location(self, record):
            if "dayton" in record.external_id:
                raise RuntimeError("constraint violation")
            return super().save_location(record)

    summary = reconcile(SUPPLIERS, FailingStore(), batch_size=1, max_workers=2)

    assert summary.rows_failed == 1
    assert summary.locations_created == 2


def test_rows_of_failed_company_are_counted():
    class FailingStore(MemoryStore):
        def save_company(self, record):
            if record.external_id == "cmp:acme.com":
                raise RuntimeError("db down")
            return super().save_company(record)

    summary = reconcile(SUPPLIERS, FailingStore())

    assert summary.companies_created == 1
    assert summary.rows_failed == 2
    assert summary.locations_created == 1


@pytest.mark.parametrize("batch_size", [1, 2, 50])
def test_batching_does_not_change_counts(batch_size):
    summary = reconcile(SUPPLIERS, MemoryStore(), batch_size=batch_size, max_workers=3)

    assert summary.companies_created == 2
    assert summary.locations_created == 3
    assert summary.parent_links_set == 1


def test_placeholder_ids_in_dry_run():
    assert reconcile_module.DRY_RUN_PREFIX == "dry-run:"
    reconciler = reconcile_module._Reconciler(MemoryStore(), dry_run=True, include_legacy=True)
    row = reconcile_module.to_supplier_row({"company": "Acme", "website": "acme.com", "address": "1 Main St"})

    outcome = reconciler.upsert_company(("cmp:acme.com", row))

    assert outcome.status == reconcile_module.CREATED
    assert outcome.record.id == "dry-run:cmp:acme.com"
