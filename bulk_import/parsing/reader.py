from __future__ import annotations

import io
import logging
import math
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.raw_row import ParseResult, RawImportRow, SheetInfo

"""Tabular file reader (CSV / XLS / XLSX).

- 1行目をヘッダ行として扱い、2行目以降をデータ行とする。
- All cells are rendered as trimmed strings; semantics are left to the mapping stage.
- Multi-sheet workbooks use a two-phase contract: without a sheet selection only
  the sheet list is returned so the caller can ask which sheet to import.
"""

__all__ = [
    "FileParseError",
    "UnreadableFileError",
    "SheetNotFoundError",
    "EmptyFileError",
    "UnsupportedFormatError",
    "SUPPORTED_FORMATS",
    "detect_format",
    "decode_text",
    "detect_delimiter",
    "normalize_sheet",
    "parse_file",
    "parse_path",
]

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "xls", "xlsx")
CSV_DELIMITERS = (",", ";", "\t")
PREVIEW_ROWS = 3

_XLSX_MAGIC = b"PK\x03\x04"
_XLS_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
# 表形式でないことが明らかな先頭シグネチャ (pdf, png, gif, jpeg, gzip)
_NON_TABULAR_MAGIC: tuple[bytes, ...] = (b"%PDF", b"\x89PNG", b"GIF8", b"\xff\xd8\xff", b"\x1f\x8b")
_SNIFF_BYTES = 1024
_MAX_CONTROL_RATIO = 0.1


class FileParseError(Exception):
    """Base class for errors that abort the whole import before any row is processed."""


class UnreadableFileError(FileParseError):
    """Raised when the file bytes cannot be decoded as the declared format."""


class SheetNotFoundError(UnreadableFileError):
    """Raised when the requested sheet does not exist in the workbook."""


class EmptyFileError(FileParseError):
    """Raised when the file (or selected sheet) has no data rows."""


class UnsupportedFormatError(FileParseError):
    """Raised for extensions other than csv / xls / xlsx, or sniffed non-tabular content."""


def detect_format(content: bytes, filename: str | None = None) -> str:
    """Return one of SUPPORTED_FORMATS.

    The extension wins when a filename is given; otherwise the format is sniffed
    from the leading magic bytes (zip -> xlsx, OLE2 -> xls). Content that starts
    with a known non-tabular signature, or whose head is mostly control bytes,
    is rejected; anything else is read as csv.
    """
    if filename:
        suffix = Path(filename).suffix.lower().lstrip(".")
        if suffix not in SUPPORTED_FORMATS:
            raise UnsupportedFormatError(
                f"unsupported file format '{suffix or filename}' (expected csv, xls or xlsx)"
            )
        return suffix
    if content.startswith(_XLSX_MAGIC):
        return "xlsx"
    if content.startswith(_XLS_MAGIC):
        return "xls"
    if content.startswith(_NON_TABULAR_MAGIC):
        raise UnsupportedFormatError("content is not a csv, xls or xlsx file")
    if _looks_binary(content[:_SNIFF_BYTES]):
        raise UnsupportedFormatError("content looks binary, expected csv, xls or xlsx")
    return "csv"


def _looks_binary(head: bytes) -> bool:
    if not head:
        return False
    control = sum(1 for b in head if (b < 0x20 and b not in b"\t\n\r") or b == 0x7F)
    return control / len(head) > _MAX_CONTROL_RATIO


def decode_text(content: bytes) -> str:
    """Decode CSV bytes as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("utf-8 decode failed, falling back to latin-1")
        return content.decode("latin-1")


def detect_delimiter(first_line: str) -> str:
    """Pick the delimiter occurring most often in the header line.

    Ties (including a single-column file) resolve to the first candidate, ','.
    """
    counts = {d: first_line.count(d) for d in CSV_DELIMITERS}
    return max(CSV_DELIMITERS, key=lambda d: counts[d])


def _cell_to_str(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        # Excel は整数も float で返すことがある (SIRET 等の桁落ち防止)
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, datetime):
        if value.hour == value.minute == value.second == 0 and value.microsecond == 0:
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _unique_headers(raw_headers: list[str]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for index, name in enumerate(raw_headers, start=1):
        base = name or f"column_{index}"
        count = seen.get(base, 0) + 1
        seen[base] = count
        headers.append(base if count == 1 else f"{base}_{count}")
    return headers


def normalize_sheet(df: pd.DataFrame, sheet_name: str) -> tuple[list[str], list[RawImportRow]]:
    """Normalize a raw (header=None) DataFrame using the first row as header.

    Steps:
    1. Render every cell as a trimmed string
    2. Drop columns that have neither a header nor any value
    3. Make headers unique (blank -> column_N, duplicates -> name_2 ...)
    4. Skip fully blank data rows and number the remaining ones from 1

    Returns:
        (headers, rows). rows may be empty; callers decide whether that is an error.
    """
    if df.shape[0] < 1:
        return [], []
    grid = [[_cell_to_str(v) for v in raw] for raw in df.itertuples(index=False, name=None)]
    header_cells, data = grid[0], grid[1:]
    keep = [
        i for i, header in enumerate(header_cells)
        if header or any(i < len(r) and r[i] for r in data)
    ]
    headers = _unique_headers([header_cells[i] for i in keep])

    rows: list[RawImportRow] = []
    for raw in data:
        values = [raw[i] if i < len(raw) else "" for i in keep]
        if not any(values):
            continue
        rows.append(RawImportRow(row_number=len(rows) + 1, raw_data=dict(zip(headers, values, strict=True))))
    logger.debug("sheet '%s': %d columns, %d data rows", sheet_name, len(headers), len(rows))
    return headers, rows


def _read_csv_frame(content: bytes) -> pd.DataFrame:
    text = decode_text(content)
    if "\x00" in text:
        raise UnreadableFileError("file contains binary data (NUL bytes); not a CSV file")
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise EmptyFileError("the CSV file is empty")
    delimiter = detect_delimiter(lines[0])
    logger.debug("csv delimiter detected: %r", delimiter)
    try:
        return pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise EmptyFileError("the CSV file is empty") from e
    except pd.errors.ParserError as e:
        raise UnreadableFileError(f"malformed CSV: {e}") from e


def _parse_csv(content: bytes, selected_sheet: str | None) -> ParseResult:
    if selected_sheet:
        logger.debug("sheet selection '%s' ignored for CSV input", selected_sheet)
    headers, rows = normalize_sheet(_read_csv_frame(content), "csv")
    if not rows:
        raise EmptyFileError("the CSV file contains no data rows")
    return ParseResult(rows=rows, is_spreadsheet=False, headers=headers)


def _open_workbook(content: bytes, fmt: str) -> pd.ExcelFile:
    engine = "openpyxl" if fmt == "xlsx" else "xlrd"
    try:
        return pd.ExcelFile(io.BytesIO(content), engine=engine)
    except Exception as e:
        raise UnreadableFileError(f"cannot open {fmt} workbook: {e}") from e


def _parse_spreadsheet(content: bytes, fmt: str, selected_sheet: str | None) -> ParseResult:
    xls = _open_workbook(content, fmt)
    sheet_names = [str(name) for name in xls.sheet_names]
    if not sheet_names:
        raise EmptyFileError("the workbook has no sheets")

    sheets: dict[str, tuple[list[str], list[RawImportRow]]] = {}
    for name in sheet_names:
        try:
            df = xls.parse(name, header=None, dtype=object)
        except Exception as e:
            raise UnreadableFileError(f"cannot read sheet '{name}': {e}") from e
        sheets[name] = normalize_sheet(df, name)

    available = [
        SheetInfo(
            name=name,
            row_count=len(rows),
            column_count=len(headers),
            preview_rows=[r.raw_data for r in rows[:PREVIEW_ROWS]],
        )
        for name, (headers, rows) in sheets.items()
    ]

    if selected_sheet is None and len(sheet_names) > 1:
        # 2段階方式: シート選択を呼び出し側に委ねる
        return ParseResult(rows=[], is_spreadsheet=True, available_sheets=available)

    sheet_name = selected_sheet if selected_sheet is not None else sheet_names[0]
    if sheet_name not in sheets:
        raise SheetNotFoundError(f"sheet '{sheet_name}' not found (available: {sheet_names})")
    headers, rows = sheets[sheet_name]
    if not rows:
        raise EmptyFileError(f"sheet '{sheet_name}' contains no data rows")
    return ParseResult(
        rows=rows,
        is_spreadsheet=True,
        available_sheets=available,
        selected_sheet=sheet_name,
        headers=headers,
    )


def parse_file(content: bytes, filename: str | None = None, selected_sheet: str | None = None) -> ParseResult:
    """Parse CSV / Excel bytes into raw rows.

    Parameters
    ----------
    content: file bytes
    filename: original file name; its extension selects the format
    selected_sheet: sheet to import (spreadsheets only)

    Raises
    ------
    UnsupportedFormatError, UnreadableFileError, EmptyFileError
    """
    fmt = detect_format(content, filename)
    if not content:
        raise EmptyFileError("the file is empty")
    if fmt == "csv":
        return _parse_csv(content, selected_sheet)
    return _parse_spreadsheet(content, fmt, selected_sheet)


def parse_path(path: Path, selected_sheet: str | None = None) -> ParseResult:
    try:
        content = path.read_bytes()
    except OSError as e:
        raise UnreadableFileError(f"cannot read {path}: {e}") from e
    return parse_file(content, path.name, selected_sheet)
