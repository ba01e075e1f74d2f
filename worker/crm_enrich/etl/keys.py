"""Natural keys for companies and locations.

Every function here is pure: the same row always yields the same keys, which
is what lets repeated imports of overlapping files land on the same records.
Company ids prefer an explicit id, then the website domain, then the slugged
base name. Location ids prefer an explicit id, then company id + slugged address.
"""

import re
from typing import Any, Dict, Optional

from crm_enrich.models import SupplierRow

ADDRESS_KEY_LENGTH = 120

_SLUG_REGEX = re.compile(r"[^a-z0-9]+")
_LOCATION_QUALIFIER_REGEX = re.compile(r"\s*\([^)]*,\s*[A-Z]{2}\)\s*$")
_TRAILING_PARENS_REGEX = re.compile(r"\s*\([^)]*\)\s*$")


def slug(value: str) -> str:
    return _SLUG_REGEX.sub("-", (value or "").lower()).strip("-")


def normalized_domain(url: str) -> str:
    value = (url or "").strip().lower()
    value = re.sub(r"^https?://", "", value)
    if value.startswith("www."):
        value = value[4:]
    return re.split(r"[/?#]", value, maxsplit=1)[0]


def normalize_address_for_dedup(raw: Optional[str]) -> str:
    return " ".join((raw or "").lower().split())


def _legacy_supplier_name(legacy: Any) -> Optional[str]:
    if not isinstance(legacy, dict):
        return None
    supplier = legacy.get("supplier")
    if not isinstance(supplier, dict):
        return None
    name = supplier.get("supplier_name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def company_base_name(row: SupplierRow) -> str:
    """Display name without a trailing "(City, ST)" qualifier.

    A canonical name inside the legacy payload wins over the row's own name.
    """

    legacy_name = _legacy_supplier_name(row.legacy_json)
    if legacy_name:
        return legacy_name
    name = (row.company or "").strip()
    return _LOCATION_QUALIFIER_REGEX.sub("", name).strip() or name


def company_external_id(row: SupplierRow) -> str:
    if row.company_id and row.company_id.strip():
        return row.company_id.strip()
    if row.website and row.website.strip():
        return "cmp:" + normalized_domain(row.website)
    return "cmp:name:" + slug(company_base_name(row))


def company_key(row: SupplierRow) -> str:
    if row.website and row.website.strip():
        return normalized_domain(row.website)
    return slug(company_base_name(row))


def parent_external_id(row: SupplierRow) -> Optional[str]:
    if row.parent_company_id and row.parent_company_id.strip():
        return row.parent_company_id.strip()
    parent = (row.parent_company or "").strip()
    if parent:
        parent_slug = slug(_TRAILING_PARENS_REGEX.sub("", parent).strip())
        if parent_slug:
            return "cmp:name:" + parent_slug
    return None


def location_external_id(row: SupplierRow, company_ext_id: str) -> str:
    if row.location_id and row.location_id.strip():
        return row.location_id.strip()
    return "loc:" + company_ext_id + ":" + slug((row.address_raw or "")[:ADDRESS_KEY_LENGTH])


def dedupe_key(row: SupplierRow) -> str:
    """Batch dedup key: explicit location id, else company key + normalized address."""

    if row.location_id and row.location_id.strip():
        return row.location_id.strip()
    key = (row.company_key or "").strip() or company_key(row)
    return key + "|" + normalize_address_for_dedup(row.address_raw)


def has_company_identity(row: SupplierRow) -> bool:
    return bool(
        (row.company_id and row.company_id.strip())
        or (row.website and normalized_domain(row.website))
        or slug(company_base_name(row))
    )


def import_payload(row: SupplierRow) -> Dict[str, Any]:
    """The input row minus its address fields, kept on the company as provenance."""

    address_fields = {"addressRaw", "address_raw", "address", "addressComponents", "address_components", "addressConfidence", "address_confidence"}
    return {key: value for key, value in row.raw_snapshot.items() if key not in address_fields}


def merge_legacy_payload(existing: Any, incoming: Any) -> Any:
    """Shallow key-by-key merge of two legacy payloads.

    The side with more top-level keys is applied last, so its values win;
    on a tie the incoming payload wins. Non-dict payloads are replaced by
    the incoming one. Re-merging the result with the same incoming payload is
    a no-op.
    """

    if incoming is None:
        return existing
    if existing is None:
        return incoming
    if not isinstance(existing, dict) or not isinstance(incoming, dict):
        return incoming
    if len(incoming) >= len(existing):
        return {**existing, **incoming}
    return {**incoming, **existing}
