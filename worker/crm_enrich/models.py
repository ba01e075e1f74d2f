"""Core data models shared by the crawl, matching, geocoding and import pipelines."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

STRUCTURED = "structured"
HEURISTIC = "heuristic"


@dataclass(slots=True)
class ExtractedAddress:
    """Address candidate found on one crawled page."""

    raw: str
    source_url: str
    provenance: str = HEURISTIC
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_structured(self) -> bool:
        return self.provenance == STRUCTURED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CrawlResult:
    addresses: List[ExtractedAddress] = field(default_factory=list)
    # Reserved for subsidiary discovery; nothing populates it yet.
    subsidiary_links: List[Dict[str, str]] = field(default_factory=list)
    pages_visited: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addresses": [address.to_dict() for address in self.addresses],
            "subsidiary_links": list(self.subsidiary_links),
            "pages_visited": list(self.pages_visited),
        }


@dataclass(slots=True)
class MatchTarget:
    """A stored location that still lacks a street-level address."""

    external_id: str
    address_raw: str = ""
    address_components: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class GeocodeResult:
    latitude: float
    longitude: float
    address_normalized: Optional[str] = None
    address_components: Optional[Dict[str, str]] = None
    provider: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SupplierRow:
    """Normalized snapshot of one company+location entry from a supplier file."""

    company: str
    address_raw: str = ""
    website: Optional[str] = None
    company_id: Optional[str] = None
    location_id: Optional[str] = None
    parent_company: Optional[str] = None
    parent_company_id: Optional[str] = None
    company_key: Optional[str] = None
    tier: Optional[str] = None
    segment: Optional[str] = None
    category: Optional[str] = None
    subtype_group: Optional[str] = None
    subtype: Optional[str] = None
    address_components: Optional[Dict[str, Any]] = None
    address_confidence: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capability_tags: List[str] = field(default_factory=list)
    packaging_signals: List[str] = field(default_factory=list)
    industry_keywords: List[str] = field(default_factory=list)
    legacy_json: Any = None
    raw_snapshot: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class CompanyRecord:
    external_id: str
    name: str
    website: Optional[str] = None
    company_key: Optional[str] = None
    tier: Optional[str] = None
    segment: Optional[str] = None
    category: Optional[str] = None
    subtype_group: Optional[str] = None
    subtype: Optional[str] = None
    parent_external_id: Optional[str] = None
    parent_id: Optional[str] = None
    legacy_json: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class LocationRecord:
    external_id: str
    company_id: str
    address_raw: str = ""
    address_components: Optional[Dict[str, Any]] = None
    address_confidence: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    legacy_json: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class ReconcileSummary:
    rows_total: int = 0
    rows_skipped: int = 0
    rows_duplicate: int = 0
    rows_failed: int = 0
    companies_created: int = 0
    companies_updated: int = 0
    companies_unchanged: int = 0
    parent_links_set: int = 0
    parent_links_unresolved: int = 0
    locations_created: int = 0
    locations_updated: int = 0
    locations_unchanged: int = 0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnrichSummary:
    companies_total: int = 0
    companies_crawled: int = 0
    companies_skipped: int = 0
    crawl_failures: int = 0
    locations_filled: int = 0
    locations_still_missing: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["locations_still_missing"] = len(self.locations_still_missing)
        return data


@dataclass
class GeocodeSummary:
    locations_total: int = 0
    geocoded: int = 0
    failed: int = 0
    still_missing: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["still_missing"] = len(self.still_missing)
        return data
