from __future__ import annotations

import json
import os
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from bulk_import.cli.__main__ import (
    EXIT_FATAL,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS_ALL,
    _parse_map_args,
    main,
)

SCENARIO_CSV = (
    "Raison sociale,SIRET,Region\n"
    "Acme SARL,12345678901234,Bretagne\n"
    ",98765432109876,Corse\n"
)

CLEAN_CSV = (
    "Raison sociale,SIRET,Ville\n"
    "Acme SARL,73282932000074,Paris\n"
    "Beta SAS,44306184100047,Lyon\n"
)


@pytest.fixture(autouse=True)
def _no_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest.fixture()
def mock_config(temp_workdir: Path) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text("delay_between_rows_ms: 0\nbatch_size: 5\n", encoding="utf-8")
    return cfg


def _write(workdir: Path, name: str, text: str) -> Path:
    p = workdir / "data" / name
    p.write_text(text, encoding="utf-8")
    return p


def test_mock_mode_all_rows_imported(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    code = main([str(src), "--user-id", "u1"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert "mode=mock" in out
    assert "SUMMARY rows=2 successful=2 skipped=0 failed=0 not_attempted=0" in out
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_mock_mode_failed_row_exit_2_and_error_log(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "scenario.csv", SCENARIO_CSV)
    code = main([str(src), "--user-id", "u1"])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "SUMMARY rows=2 successful=1 skipped=0 failed=1" in out

    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    records = [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]
    assert len(records) == 1
    assert records[0]["row"] == 2
    assert records[0]["user_id"] == "u1"
    assert records[0]["error_type"] == "MISSING_REQUIRED_FIELD"
    assert records[0]["message"] == "company_name required"


def test_missing_file_is_fatal(temp_workdir, capsys):
    code = main([str(temp_workdir / "data" / "nope.csv"), "--user-id", "u1"])
    assert code == EXIT_FATAL
    assert "ERROR cannot read" in capsys.readouterr().out


def test_invalid_config_is_fatal(temp_workdir, capsys):
    (temp_workdir / "config" / "import.yml").write_text("batch_size: 0\n", encoding="utf-8")
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    code = main([str(src), "--user-id", "u1"])
    assert code == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_explicit_missing_config_is_fatal(temp_workdir, capsys):
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    code = main([str(src), "--user-id", "u1", "--config", "config/missing.yml"])
    assert code == EXIT_FATAL
    assert "config file not found" in capsys.readouterr().out


def test_empty_file_is_fatal(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "empty.csv", "")
    assert main([str(src), "--user-id", "u1"]) == EXIT_FATAL
    assert "ERROR parse:" in capsys.readouterr().out


def test_unknown_map_target_is_fatal(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    code = main([str(src), "--user-id", "u1", "--map", "Ville=not_a_field"])
    assert code == EXIT_FATAL
    assert "ERROR mapping:" in capsys.readouterr().out


def test_map_override_skips_column(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "scenario.csv", SCENARIO_CSV)
    code = main([str(src), "--user-id", "u1", "--map", "Region=_skip", "--debug"])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "DEBUG [bulk_import" in out
    assert "'Region': 'region'" not in out


def test_multi_sheet_workbook_requires_sheet(temp_workdir, mock_config, make_xlsx, capsys):
    content = make_xlsx({
        "Clients": [["Raison sociale", "SIRET"], ["Acme SARL", "73282932000074"]],
        "Notes": [["Texte"], ["rien"]],
    })
    src = temp_workdir / "data" / "book.xlsx"
    src.write_bytes(content)

    assert main([str(src), "--user-id", "u1"]) == EXIT_FATAL
    assert "choose one with --sheet" in capsys.readouterr().out

    assert main([str(src), "--user-id", "u1", "--sheet", "Clients"]) == EXIT_SUCCESS_ALL
    assert "SUMMARY rows=1 successful=1" in capsys.readouterr().out


def test_inspect_data_prints_mapping(temp_workdir, mock_config, capsys):
    src = _write(temp_workdir, "scenario.csv", SCENARIO_CSV)
    code = main([str(src), "--user-id", "u1", "--inspect-data"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS_ALL
    assert "ROWS: 2" in out
    assert "'Raison sociale' -> company_name" in out
    assert "MAPPING: mapped=3" in out
    assert "DETECTED: auto=" in out
    assert "SUMMARY" not in out


def test_enrichment_enabled_is_disabled_with_warning(temp_workdir, capsys):
    (temp_workdir / "config" / "import.yml").write_text(
        "delay_between_rows_ms: 0\nenable_registry_enrichment: true\n", encoding="utf-8"
    )
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    assert main([str(src), "--user-id", "u1"]) == EXIT_SUCCESS_ALL
    assert "WARN registry enrichment has no client" in capsys.readouterr().out


def test_live_mode_uses_postgres_store(temp_workdir, mock_config, monkeypatch, capsys):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/db")
    cursor = MagicMock()
    # exists() -> no duplicate, create() -> new id
    cursor.fetchone.side_effect = [None, ("p-1",)]

    @contextmanager
    def fake_connection(dsn):
        assert dsn == "postgresql://u:p@localhost/db"
        yield cursor

    src = _write(temp_workdir, "scenario.csv", SCENARIO_CSV)
    with patch("bulk_import.cli.__main__._db_connection", fake_connection):
        code = main([str(src), "--user-id", "u1"])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "mode=live" in out
    statements = [c.args[0] for c in cursor.execute.call_args_list]
    assert "SAVEPOINT import_row" in statements
    assert "RELEASE SAVEPOINT import_row" in statements


def test_live_mode_connection_failure_is_fatal(temp_workdir, mock_config, monkeypatch, capsys):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/db")
    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    with patch("bulk_import.cli.__main__.psycopg2.connect", side_effect=psycopg2.OperationalError("refused")):
        code = main([str(src), "--user-id", "u1"])
    assert code == EXIT_FATAL
    assert "ERROR database: refused" in capsys.readouterr().out


def test_env_file_provides_database_url(temp_workdir, mock_config):
    (temp_workdir / ".env").write_text("DATABASE_URL=postgresql://env/db\n", encoding="utf-8")
    seen: list[str] = []

    @contextmanager
    def fake_connection(dsn):
        seen.append(dsn)
        cursor = MagicMock()
        cursor.fetchone.side_effect = [None, ("p-1",), None, ("p-2",)]
        yield cursor

    src = _write(temp_workdir, "clean.csv", CLEAN_CSV)
    try:
        with patch("bulk_import.cli.__main__._db_connection", fake_connection):
            assert main([str(src), "--user-id", "u1"]) == EXIT_SUCCESS_ALL
    finally:
        os.environ.pop("DATABASE_URL", None)
    assert seen == ["postgresql://env/db"]


def test_parse_map_args():
    assert _parse_map_args(["SIRET = siret", "Notes=_skip"]) == {"SIRET": "siret", "Notes": "_skip"}
    with pytest.raises(ValueError):
        _parse_map_args(["no-separator"])
    with pytest.raises(ValueError):
        _parse_map_args(["Col=unknown_field"])
