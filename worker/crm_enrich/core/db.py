"""Database helpers: connection pool and the PostgreSQL company/location store."""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Protocol

from psycopg2 import extras, pool

from crm_enrich.core.config import get_settings, require_database_url
from crm_enrich.core.memory_store import MemoryStore
from crm_enrich.models import CompanyRecord, LocationRecord

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


class Store(Protocol):
    """Persistence boundary used by the reconciler and the enrichment jobs."""

    def find_company(self, external_id: str) -> Optional[CompanyRecord]: ...

    def save_company(self, record: CompanyRecord) -> str: ...

    def find_location(self, external_id: str) -> Optional[LocationRecord]: ...

    def save_location(self, record: LocationRecord) -> str: ...

    def list_companies_with_website(
        self, limit: Optional[int] = None, external_ids: Optional[Iterable[str]] = None
    ) -> List[CompanyRecord]: ...

    def list_child_company_ids(self, company_id: str) -> List[str]: ...

    def list_company_locations(self, company_ids: Iterable[str]) -> List[LocationRecord]: ...

    def update_location_address(self, location_id: str, address_raw: str, metadata: Dict[str, Any]) -> None: ...

    def list_locations_missing_coordinates(self, limit: Optional[int] = None) -> List[LocationRecord]: ...

    def update_location_coordinates(
        self,
        location_id: str,
        latitude: float,
        longitude: float,
        address_components: Optional[Dict[str, Any]] = None,
    ) -> None: ...


def init_pool(minconn: int = 1, maxconn: int = 8) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        dsn = require_database_url(settings)
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            max(maxconn, settings.import_max_workers + 1),
            dsn=dsn,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS companies (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    website TEXT,
    company_key TEXT,
    tier TEXT,
    segment TEXT,
    category TEXT,
    subtype_group TEXT,
    subtype TEXT,
    parent_external_id TEXT,
    parent_id TEXT REFERENCES companies (id),
    legacy_json JSONB,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS locations (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    company_id TEXT NOT NULL REFERENCES companies (id),
    address_raw TEXT NOT NULL DEFAULT '',
    address_components JSONB,
    address_confidence DOUBLE PRECISION,
    latitude DOUBLE PRECISION,
    longitude DOUBLE PRECISION,
    legacy_json JSONB,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS locations_company_id_idx ON locations (company_id);
CREATE INDEX IF NOT EXISTS companies_parent_id_idx ON companies (parent_id);
"""

_COMPANY_COLUMNS = (
    "id, external_id, name, website, company_key, tier, segment, category, subtype_group, subtype, "
    "parent_external_id, parent_id, legacy_json, metadata"
)
_LOCATION_COLUMNS = (
    "id, external_id, company_id, address_raw, address_components, address_confidence, "
    "latitude, longitude, legacy_json, metadata"
)

_UPSERT_COMPANY = """
INSERT INTO companies (
    id,
    external_id,
    name,
    website,
    company_key,
    tier,
    segment,
    category,
    subtype_group,
    subtype,
    parent_external_id,
    parent_id,
    legacy_json,
    metadata,
    updated_at
) VALUES (
    %(id)s,
    %(external_id)s,
    %(name)s,
    %(website)s,
    %(company_key)s,
    %(tier)s,
    %(segment)s,
    %(category)s,
    %(subtype_group)s,
    %(subtype)s,
    %(parent_external_id)s,
    %(parent_id)s,
    %(legacy_json)s,
    %(metadata)s,
    NOW()
)
ON CONFLICT (external_id) DO UPDATE SET
    name = EXCLUDED.name,
    website = COALESCE(EXCLUDED.website, companies.website),
    company_key = EXCLUDED.company_key,
    tier = EXCLUDED.tier,
    segment = EXCLUDED.segment,
    category = EXCLUDED.category,
    subtype_group = EXCLUDED.subtype_group,
    subtype = EXCLUDED.subtype,
    parent_external_id = EXCLUDED.parent_external_id,
    parent_id = EXCLUDED.parent_id,
    legacy_json = EXCLUDED.legacy_json,
    metadata = EXCLUDED.metadata,
    updated_at = NOW()
RETURNING id;
"""

_UPSERT_LOCATION = """
INSERT INTO locations (
    id,
    external_id,
    company_id,
    address_raw,
    address_components,
    address_confidence,
    latitude,
    longitude,
    legacy_json,
    metadata,
    updated_at
) VALUES (
    %(id)s,
    %(external_id)s,
    %(company_id)s,
    %(address_raw)s,
    %(address_components)s,
    %(address_confidence)s,
    %(latitude)s,
    %(longitude)s,
    %(legacy_json)s,
    %(metadata)s,
    NOW()
)
ON CONFLICT (external_id) DO UPDATE SET
    company_id = EXCLUDED.company_id,
    address_raw = EXCLUDED.address_raw,
    address_components = EXCLUDED.address_components,
    address_confidence = EXCLUDED.address_confidence,
    latitude = EXCLUDED.latitude,
    longitude = EXCLUDED.longitude,
    legacy_json = EXCLUDED.legacy_json,
    metadata = EXCLUDED.metadata,
    updated_at = NOW()
RETURNING id;
"""


def _json_or_none(value: Any) -> Optional[extras.Json]:
    return extras.Json(value) if value is not None else None


def _prepare_company_params(record: CompanyRecord) -> Dict[str, Any]:
    return {
        "id": record.id or str(uuid.uuid4()),
        "external_id": record.external_id,
        "name": record.name,
        "website": record.website,
        "company_key": record.company_key,
        "tier": record.tier,
        "segment": record.segment,
        "category": record.category,
        "subtype_group": record.subtype_group,
        "subtype": record.subtype,
        "parent_external_id": record.parent_external_id,
        "parent_id": record.parent_id,
        "legacy_json": _json_or_none(record.legacy_json),
        "metadata": extras.Json(record.metadata or {}),
    }


def _prepare_location_params(record: LocationRecord) -> Dict[str, Any]:
    return {
        "id": record.id or str(uuid.uuid4()),
        "external_id": record.external_id,
        "company_id": record.company_id,
        "address_raw": record.address_raw or "",
        "address_components": _json_or_none(record.address_components),
        "address_confidence": record.address_confidence,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "legacy_json": _json_or_none(record.legacy_json),
        "metadata": extras.Json(record.metadata or {}),
    }


def _to_company(row: Dict[str, Any]) -> CompanyRecord:
    return CompanyRecord(
        id=row["id"],
        external_id=row["external_id"],
        name=row["name"],
        website=row.get("website"),
        company_key=row.get("company_key"),
        tier=row.get("tier"),
        segment=row.get("segment"),
        category=row.get("category"),
        subtype_group=row.get("subtype_group"),
        subtype=row.get("subtype"),
        parent_external_id=row.get("parent_external_id"),
        parent_id=row.get("parent_id"),
        legacy_json=row.get("legacy_json"),
        metadata=row.get("metadata") or {},
    )


def _to_location(row: Dict[str, Any]) -> LocationRecord:
    return LocationRecord(
        id=row["id"],
        external_id=row["external_id"],
        company_id=row["company_id"],
        address_raw=row.get("address_raw") or "",
        address_components=row.get("address_components"),
        address_confidence=row.get("address_confidence"),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        legacy_json=row.get("legacy_json"),
        metadata=row.get("metadata") or {},
    )


class PostgresStore:
    """Company/location store keyed by ``external_id`` unique constraints."""

    def _fetch_all(self, sql: str, params: Any = None) -> List[Dict[str, Any]]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
        return [dict(row) for row in rows]

    def _execute(self, sql: str, params: Any) -> Optional[Any]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                result = cur.fetchone() if cur.description else None
            conn.commit()
        return result

    def ensure_schema(self) -> None:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("Ensured companies/locations tables exist")

    def find_company(self, external_id: str) -> Optional[CompanyRecord]:
        rows = self._fetch_all(f"SELECT {_COMPANY_COLUMNS} FROM companies WHERE external_id = %s", (external_id,))
        return _to_company(rows[0]) if rows else None

    def save_company(self, record: CompanyRecord) -> str:
        params = _prepare_company_params(record)
        if not params["external_id"] or not params["name"]:
            raise ValueError("external_id and name are required for company upsert")
        result = self._execute(_UPSERT_COMPANY, params)
        logger.debug("Upserted company %s", params["external_id"])
        return result[0] if result else params["id"]

    def find_location(self, external_id: str) -> Optional[LocationRecord]:
        rows = self._fetch_all(f"SELECT {_LOCATION_COLUMNS} FROM locations WHERE external_id = %s", (external_id,))
        return _to_location(rows[0]) if rows else None

    def save_location(self, record: LocationRecord) -> str:
        params = _prepare_location_params(record)
        if not params["external_id"] or not params["company_id"]:
            raise ValueError("external_id and company_id are required for location upsert")
        result = self._execute(_UPSERT_LOCATION, params)
        logger.debug("Upserted location %s", params["external_id"])
        return result[0] if result else params["id"]

    def list_companies_with_website(
        self, limit: Optional[int] = None, external_ids: Optional[Iterable[str]] = None
    ) -> List[CompanyRecord]:
        sql = f"SELECT {_COMPANY_COLUMNS} FROM companies WHERE website IS NOT NULL AND trim(website) <> ''"
        params: List[Any] = []
        if external_ids is not None:
            sql += " AND external_id = ANY(%s)"
            params.append(list(external_ids))
        sql += " ORDER BY created_at ASC"
        if limit:
            sql += " LIMIT %s"
            params.append(int(limit))
        return [_to_company(row) for row in self._fetch_all(sql, params)]

    def list_child_company_ids(self, company_id: str) -> List[str]:
        rows = self._fetch_all("SELECT id FROM companies WHERE parent_id = %s ORDER BY created_at ASC", (company_id,))
        return [row["id"] for row in rows]

    def list_company_locations(self, company_ids: Iterable[str]) -> List[LocationRecord]:
        ids = list(company_ids)
        if not ids:
            return []
        rows = self._fetch_all(
            f"SELECT {_LOCATION_COLUMNS} FROM locations WHERE company_id = ANY(%s) ORDER BY created_at ASC",
            (ids,),
        )
        return [_to_location(row) for row in rows]

    def update_location_address(self, location_id: str, address_raw: str, metadata: Dict[str, Any]) -> None:
        self._execute(
            "UPDATE locations SET address_raw = %s, metadata = %s, updated_at = NOW() WHERE id = %s",
            (address_raw, extras.Json(metadata or {}), location_id),
        )

    def list_locations_missing_coordinates(self, limit: Optional[int] = None) -> List[LocationRecord]:
        sql = (
            f"SELECT {_LOCATION_COLUMNS} FROM locations "
            "WHERE (latitude IS NULL OR longitude IS NULL) AND trim(address_raw) <> '' "
            "ORDER BY created_at ASC"
        )
        params: List[Any] = []
        if limit:
            sql += " LIMIT %s"
            params.append(int(limit))
        return [_to_location(row) for row in self._fetch_all(sql, params)]

    def update_location_coordinates(
        self,
        location_id: str,
        latitude: float,
        longitude: float,
        address_components: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._execute(
            "UPDATE locations SET latitude = %s, longitude = %s, "
            "address_components = COALESCE(address_components, %s), updated_at = NOW() WHERE id = %s",
            (latitude, longitude, _json_or_none(address_components), location_id),
        )


def open_store(dry_run: bool = False) -> Store:
    """PostgreSQL store when configured; an empty in-memory one for DB-less dry runs."""

    settings = get_settings()
    if dry_run and not settings.database_url:
        logger.info("DATABASE_URL not set; dry run against an empty in-memory store")
        return MemoryStore()

    require_database_url(settings)
    init_pool()
    return PostgresStore()
