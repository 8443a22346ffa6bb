from __future__ import annotations

from dataclasses import dataclass, field

"""Raw parser output models.

RawImportRow represents one data row exactly as read from the file (all cells
rendered as strings). SheetInfo is only produced for spreadsheet inputs.
"""

__all__ = [
    "RawImportRow",
    "SheetInfo",
    "ParseResult",
]


@dataclass(frozen=True)
class RawImportRow:
    """One data row of the selected sheet.

    row_number is 1-based and counts data rows only (the header row is excluded).
    """
    row_number: int
    raw_data: dict[str, str]  # header -> cell text (ファイル上の列順を保持)


@dataclass(frozen=True)
class SheetInfo:
    """Sheet metadata used to let the caller pick a sheet."""
    name: str
    row_count: int
    column_count: int
    preview_rows: list[dict[str, str]] = field(default_factory=list)  # 先頭3行


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one parser call.

    When a multi-sheet workbook is parsed without a sheet selection, ``rows`` is
    empty and ``available_sheets`` lists the choices (two-phase contract).
    """
    rows: list[RawImportRow]
    is_spreadsheet: bool
    available_sheets: list[SheetInfo] = field(default_factory=list)
    selected_sheet: str | None = None
    headers: list[str] = field(default_factory=list)

    @property
    def needs_sheet_selection(self) -> bool:
        return self.is_spreadsheet and self.selected_sheet is None and len(self.available_sheets) > 1
