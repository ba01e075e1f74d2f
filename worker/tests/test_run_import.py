import argparse
import json

import pytest

from crm_enrich.core.config import ConfigError
from crm_enrich.core.memory_store import MemoryStore
from crm_enrich.jobs import run_import


def _write(tmp_path, name, payload):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_run_import_job_requires_files():
    with pytest.raises(ValueError):
        run_import.run_import_job(files=[], store=MemoryStore())


def test_run_import_job_reconciles_all_files(tmp_path):
    first = _write(tmp_path, "a.json", [{"company": "Acme", "website": "acme.com", "address": "1 Main St, Erie, PA"}])
    second = _write(
        tmp_path,
        "b.json",
        {"suppliers": [{"company": "Acme", "website": "acme.com", "address": "9 Dock St, Erie, PA"}]},
    )
    store = MemoryStore()

    summary = run_import.run_import_job(files=[first, second], store=store)

    assert summary.rows_total == 2
    assert summary.companies_created == 1
    assert summary.locations_created == 2
    assert len(store.locations) == 2


def test_run_import_job_dry_run_without_database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "")
    path = _write(tmp_path, "a.json", [{"company": "Acme", "address": "1 Main St, Erie, PA"}])

    summary = run_import.run_import_job(files=[path], dry_run=True)

    assert summary.dry_run is True
    assert summary.companies_created == 1


def test_build_parser_splits_files():
    parser = run_import.build_parser()
    args = parser.parse_args(["--files", "a.json, b.json,", "--dry-run", "--no-legacy"])

    assert isinstance(parser, argparse.ArgumentParser)
    assert args.files == ["a.json", "b.json"]
    assert args.dry_run is True
    assert args.include_legacy is False
    assert args.ensure_schema is False


def test_main_exits_with_status_2_on_config_error(monkeypatch):
    def fail(**kwargs):
        raise ConfigError("DATABASE_URL must be set")

    monkeypatch.setattr(run_import, "run_import_job", fail)

    with pytest.raises(SystemExit) as excinfo:
        run_import.main(["--files", "a.json"])

    assert excinfo.value.code == 2


def test_main_real_run_without_database_exits(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "")
    path = _write(tmp_path, "a.json", [])

    with pytest.raises(SystemExit) as excinfo:
        run_import.main(["--files", path])

    assert excinfo.value.code == 2
