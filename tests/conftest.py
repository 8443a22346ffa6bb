# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest

from bulk_import.logging.init import reset_logging
from bulk_import.models import RawImportRow
from bulk_import.store.profile_store import InMemoryProfileStore


@pytest.fixture(autouse=True)
def _reset_app_logger():
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """batch_size: 5
delay_between_rows_ms: 0
duplicate_strategy: skip
enable_registry_enrichment: false
skip_enrichment_on_error: true
sample_size: 20
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def build_xlsx(sheets: dict[str, list[list[object]]]) -> bytes:
    """Workbook bytes; first row of every sheet is the header row."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, grid in sheets.items():
            pd.DataFrame(grid).to_excel(writer, sheet_name=name, header=False, index=False)
    return buf.getvalue()


@pytest.fixture()
def make_xlsx() -> Callable[[dict[str, list[list[object]]]], bytes]:
    return build_xlsx


@pytest.fixture()
def raw_row() -> Callable[..., RawImportRow]:
    def factory(row_number: int = 1, **cells: str) -> RawImportRow:
        return RawImportRow(row_number=row_number, raw_data=dict(cells))
    return factory


@pytest.fixture()
def memory_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture()
def no_sleep() -> list[float]:
    """Recorded delays; pass ``sleeps.append`` as the importer sleep function."""
    return []
