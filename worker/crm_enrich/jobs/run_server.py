"""HTTP entrypoint that runs crawls synchronously and queues batch jobs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Flask, jsonify, request

from crm_enrich.core.config import ConfigError, get_settings, require_database_url
from crm_enrich.core.crawler import crawl_official_site
from crm_enrich.core.db import open_store
from crm_enrich.core.fetcher import is_directory_domain
from crm_enrich.core.geocoder import geocode
from crm_enrich.etl.reconcile import reconcile
from crm_enrich.jobs.run_enrich import ENRICH_MAX_DEPTH, ENRICH_MAX_PAGES, run_enrich_job
from crm_enrich.jobs.run_geocode import run_geocode_job
from crm_enrich.jobs.run_import import run_import_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=4)


class _BadRequest(ValueError):
    pass


def _positive_int(payload: Dict[str, Any], name: str, *, minimum: int = 1) -> Optional[int]:
    raw = payload.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise _BadRequest(f"{name} must be numeric") from None
    if value < minimum:
        raise _BadRequest(f"{name} must be positive" if minimum == 1 else f"{name} must be at least {minimum}")
    return value


def _crawl_limits(payload: Dict[str, Any]) -> Tuple[int, int]:
    max_pages = _positive_int(payload, "max_pages")
    max_depth = _positive_int(payload, "max_depth", minimum=0)
    return (
        ENRICH_MAX_PAGES if max_pages is None else max_pages,
        ENRICH_MAX_DEPTH if max_depth is None else max_depth,
    )


def _string_list(payload: Dict[str, Any], name: str) -> List[str]:
    raw = payload.get(name)
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return [item.strip() for item in raw if item.strip()]
    raise _BadRequest(f"{name} must be a list of strings")


def _error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({"error": message}), status


def _queue(job: Callable[..., Any], job_args: Dict[str, Any]) -> Tuple[Any, int]:
    logger.info("Queueing %s: %s", job.__name__, job_args)
    _executor.submit(_run_job_safe, job, job_args)
    return jsonify({"data": {"status": "queued"}}), 202


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "database_configured": bool(settings.database_url),
                "revision": os.getenv("K_REVISION", "unknown"),
                "region": os.getenv("X_GOOGLE_RUNTIMEREGION", "unknown"),
            }
        ),
        200,
    )


@app.post("/crawl")
def crawl_website() -> Any:
    """Crawl one official website and return the addresses found on it."""

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    website = payload.get("website")
    if not website or not isinstance(website, str):
        return _error("website is required", 400)

    try:
        max_pages, max_depth = _crawl_limits(payload)
    except _BadRequest as exc:
        return _error(str(exc), 400)

    if is_directory_domain(website):
        return _error("website is a directory or social listing, not an official site", 400)

    try:
        result = crawl_official_site(website, max_pages=max_pages, max_depth=max_depth)
    except ValueError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Crawl failed for %s: %s", website, exc)
        return _error("crawl failed", 500)

    return jsonify({"data": {"website": website, **result.to_dict()}}), 200


@app.post("/enrich")
def enqueue_enrich() -> Any:
    """Queue an enrichment run. Optional: company_ids (list), limit, max_pages, max_depth, dry_run."""

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    try:
        max_pages, max_depth = _crawl_limits(payload)
        job_args = dict(
            company_ids=_string_list(payload, "company_ids") or None,
            limit=_positive_int(payload, "limit"),
            max_pages=max_pages,
            max_depth=max_depth,
            dry_run=bool(payload.get("dry_run", False)),
        )
        require_database_url(get_settings())
    except _BadRequest as exc:
        return _error(str(exc), 400)
    except ConfigError as exc:
        return _error(str(exc), 503)

    return _queue(run_enrich_job, job_args)


@app.post("/geocode")
def geocode_endpoint() -> Any:
    """Geocode one ``address`` synchronously, or queue the batch job when no address is given."""

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    address = payload.get("address")
    if address is not None:
        if not isinstance(address, str) or not address.strip():
            return _error("address must be a non-empty string", 400)
        result = geocode(address)
        return jsonify({"data": result.to_dict() if result else None}), 200

    try:
        job_args = dict(limit=_positive_int(payload, "limit"), dry_run=bool(payload.get("dry_run", False)))
        require_database_url(get_settings())
    except _BadRequest as exc:
        return _error(str(exc), 400)
    except ConfigError as exc:
        return _error(str(exc), 503)

    return _queue(run_geocode_job, job_args)


@app.post("/import")
def import_suppliers() -> Any:
    """Import supplier entries.

    Either ``files`` (paths readable by the worker) or inline ``suppliers``.
    Dry runs answer synchronously with counts; real imports are queued.
    """

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    suppliers = payload.get("suppliers")
    dry_run = bool(payload.get("dry_run", False))
    include_legacy = not bool(payload.get("no_legacy", False))

    try:
        files = _string_list(payload, "files")
    except _BadRequest as exc:
        return _error(str(exc), 400)
    if suppliers is not None and not isinstance(suppliers, list):
        return _error("suppliers must be a list", 400)
    if not files and not suppliers:
        return _error("files or suppliers are required", 400)

    if dry_run:
        try:
            if suppliers:
                summary = reconcile(suppliers, open_store(dry_run=True), dry_run=True, include_legacy=include_legacy)
            else:
                summary = run_import_job(files=files, dry_run=True, include_legacy=include_legacy)
        except ConfigError as exc:
            return _error(str(exc), 503)
        return jsonify({"data": summary.to_dict()}), 200

    try:
        require_database_url(get_settings())
    except ConfigError as exc:
        return _error(str(exc), 503)

    if suppliers:
        return _queue(_import_inline, dict(suppliers=suppliers, include_legacy=include_legacy))
    return _queue(run_import_job, dict(files=files, include_legacy=include_legacy))


# ---------- Internals ----------


def _import_inline(*, suppliers: List[Any], include_legacy: bool) -> None:
    reconcile(suppliers, open_store(dry_run=False), include_legacy=include_legacy)


def _run_job_safe(job: Callable[..., Any], job_args: Dict[str, Any]) -> None:
    try:
        job(**job_args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Job %s failed: %s", getattr(job, "__name__", job), exc)


def main() -> None:
    """Cloud Run injects PORT; WORKER_PORT is the local fallback."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
