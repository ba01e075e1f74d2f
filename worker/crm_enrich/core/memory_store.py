"""In-process store with the same interface as ``PostgresStore``.

Used for dry runs without a database and in tests. Records are copied on the
way in and out so callers never mutate stored state by accident.
"""

import copy
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional

from crm_enrich.models import CompanyRecord, LocationRecord


class MemoryStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._companies: Dict[str, CompanyRecord] = {}
        self._locations: Dict[str, LocationRecord] = {}
        self.writes = 0

    @property
    def companies(self) -> List[CompanyRecord]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._companies.values()]

    @property
    def locations(self) -> List[LocationRecord]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._locations.values()]

    def find_company(self, external_id: str) -> Optional[CompanyRecord]:
        with self._lock:
            record = self._companies.get(external_id)
            return copy.deepcopy(record) if record else None

    def save_company(self, record: CompanyRecord) -> str:
        if not record.external_id or not record.name:
            raise ValueError("external_id and name are required for company upsert")
        with self._lock:
            existing = self._companies.get(record.external_id)
            stored = copy.deepcopy(record)
            stored.id = existing.id if existing else (record.id or str(uuid.uuid4()))
            if existing and not stored.website:
                stored.website = existing.website
            self._companies[record.external_id] = stored
            self.writes += 1
            return stored.id

    def find_location(self, external_id: str) -> Optional[LocationRecord]:
        with self._lock:
            record = self._locations.get(external_id)
            return copy.deepcopy(record) if record else None

    def save_location(self, record: LocationRecord) -> str:
        if not record.external_id or not record.company_id:
            raise ValueError("external_id and company_id are required for location upsert")
        with self._lock:
            existing = self._locations.get(record.external_id)
            stored = copy.deepcopy(record)
            stored.id = existing.id if existing else (record.id or str(uuid.uuid4()))
            self._locations[record.external_id] = stored
            self.writes += 1
            return stored.id

    def list_companies_with_website(
        self, limit: Optional[int] = None, external_ids: Optional[Iterable[str]] = None
    ) -> List[CompanyRecord]:
        wanted = set(external_ids) if external_ids is not None else None
        with self._lock:
            matches = [
                copy.deepcopy(record)
                for record in self._companies.values()
                if record.website and record.website.strip()
                and (wanted is None or record.external_id in wanted)
            ]
        return matches[:limit] if limit else matches

    def list_child_company_ids(self, company_id: str) -> List[str]:
        with self._lock:
            return [record.id for record in self._companies.values() if record.parent_id == company_id]

    def list_company_locations(self, company_ids: Iterable[str]) -> List[LocationRecord]:
        ids = set(company_ids)
        with self._lock:
            return [copy.deepcopy(record) for record in self._locations.values() if record.company_id in ids]

    def _location_by_id(self, location_id: str) -> LocationRecord:
        for record in self._locations.values():
            if record.id == location_id:
                return record
        raise KeyError(location_id)

    def update_location_address(self, location_id: str, address_raw: str, metadata: Dict[str, Any]) -> None:
        with self._lock:
            record = self._location_by_id(location_id)
            record.address_raw = address_raw
            record.metadata = dict(metadata or {})
            self.writes += 1

    def list_locations_missing_coordinates(self, limit: Optional[int] = None) -> List[LocationRecord]:
        with self._lock:
            matches = [
                copy.deepcopy(record)
                for record in self._locations.values()
                if (record.latitude is None or record.longitude is None) and (record.address_raw or "").strip()
            ]
        return matches[:limit] if limit else matches

    def update_location_coordinates(
        self,
        location_id: str,
        latitude: float,
        longitude: float,
        address_components: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            record = self._location_by_id(location_id)
            record.latitude = latitude
            record.longitude = longitude
            if record.address_components is None and address_components is not None:
                record.address_components = dict(address_components)
            self.writes += 1
