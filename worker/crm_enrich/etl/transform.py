"""Utilities for turning heterogeneous supplier entries into ``SupplierRow`` objects."""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from crm_enrich.etl.keys import has_company_identity
from crm_enrich.models import SupplierRow

logger = logging.getLogger(__name__)

_ALIASES = {
    "company": ("company", "companyName", "company_name", "name"),
    "address_raw": ("addressRaw", "address_raw", "address"),
    "website": ("website", "url", "domain"),
    "company_id": ("companyId", "company_id"),
    "location_id": ("locationId", "location_id"),
    "parent_company": ("parentCompany", "parent_company"),
    "parent_company_id": ("parentCompanyId", "parent_company_id"),
    "company_key": ("companyKey", "company_key"),
    "tier": ("tier",),
    "segment": ("segment",),
    "category": ("supplyChainCategory", "supply_chain_category", "category"),
    "subtype_group": ("supplyChainSubtypeGroup", "subtypeGroup", "subtype_group"),
    "subtype": ("supplyChainSubtype", "subtype"),
    "address_components": ("addressComponents", "address_components"),
    "address_confidence": ("addressConfidence", "address_confidence"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lng", "lon"),
    "capability_tags": ("capabilityTags", "capability_tags"),
    "packaging_signals": ("packagingSignals", "packaging_signals"),
    "industry_keywords": ("industryKeywords", "industry_keywords"),
    "legacy_json": ("legacyJson", "legacy_json", "legacy"),
}


def _pick(entry: Dict[str, Any], field_name: str) -> Any:
    for alias in _ALIASES[field_name]:
        if alias in entry and entry[alias] is not None:
            return entry[alias]
    return None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def safe_float(value: Any) -> Optional[float]:
    """Float value when finite, otherwise ``None``."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return []


def to_supplier_row(entry: Any) -> Optional[SupplierRow]:
    """Map one raw entry onto ``SupplierRow``; ``None`` when no identity is derivable."""

    if not isinstance(entry, dict):
        return None

    address_value = _pick(entry, "address_raw")
    location_id = _text(_pick(entry, "location_id"))
    if not isinstance(address_value, str) and not location_id:
        return None

    components = _pick(entry, "address_components")
    row = SupplierRow(
        company=_text(_pick(entry, "company")) or "",
        address_raw=address_value.strip() if isinstance(address_value, str) else "",
        website=_text(_pick(entry, "website")),
        company_id=_text(_pick(entry, "company_id")),
        location_id=location_id,
        parent_company=_text(_pick(entry, "parent_company")),
        parent_company_id=_text(_pick(entry, "parent_company_id")),
        company_key=_text(_pick(entry, "company_key")),
        tier=_text(_pick(entry, "tier")),
        segment=_text(_pick(entry, "segment")),
        category=_text(_pick(entry, "category")),
        subtype_group=_text(_pick(entry, "subtype_group")),
        subtype=_text(_pick(entry, "subtype")),
        address_components=components if isinstance(components, dict) else None,
        address_confidence=safe_float(_pick(entry, "address_confidence")),
        latitude=safe_float(_pick(entry, "latitude")),
        longitude=safe_float(_pick(entry, "longitude")),
        capability_tags=_string_list(_pick(entry, "capability_tags")),
        packaging_signals=_string_list(_pick(entry, "packaging_signals")),
        industry_keywords=_string_list(_pick(entry, "industry_keywords")),
        legacy_json=_pick(entry, "legacy_json"),
        raw_snapshot=dict(entry),
    )

    if not has_company_identity(row):
        return None
    return row


def load_supplier_files(paths: Iterable[str]) -> List[Any]:
    """Read supplier JSON files: top-level arrays or objects with a ``suppliers`` array."""

    entries: List[Any] = []
    for raw_path in paths:
        path = Path(raw_path)
        if not path.exists():
            logger.warning("Skipping missing supplier file %s", path)
            continue

        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)

        if isinstance(data, list):
            items = data
        elif isinstance(data, dict) and isinstance(data.get("suppliers"), list):
            items = data["suppliers"]
        else:
            logger.warning("Supplier file %s has no entry array; skipping", path)
            continue

        logger.info("Loaded %d entries from %s", len(items), path)
        entries.extend(items)
    return entries
