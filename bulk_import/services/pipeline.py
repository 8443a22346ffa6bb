from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..mapping.content_classifier import DEFAULT_SAMPLE_SIZE, analyze_columns
from ..mapping.header_mapper import detect_from_headers
from ..mapping.reconciler import apply_overrides, finalize_mapping, reconcile
from ..models.column_mapping import ColumnMappingItem, ContentAnalysis
from ..models.fields import FieldKey
from ..models.processed_row import ProcessedImportRow
from ..models.raw_row import ParseResult
from ..parsing.reader import parse_file
from ..transform.row_transformer import transform_all

"""Glue between the pipeline stages.

1. prepare_import: parse -> header mapping -> content analysis -> reconcile
2. (caller reviews mappings, optionally overriding columns)
3. build_rows: overrides -> finalize -> transform every row
"""

__all__ = [
    "PreparedImport",
    "prepare_import",
    "build_rows",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedImport:
    """Parsed file plus the proposed column mapping, ready for review."""
    parse: ParseResult
    mappings: list[ColumnMappingItem] = field(default_factory=list)
    analyses: list[ContentAnalysis] = field(default_factory=list)

    @property
    def needs_sheet_selection(self) -> bool:
        return self.parse.needs_sheet_selection


def prepare_import(
    content: bytes,
    filename: str | None,
    selected_sheet: str | None = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> PreparedImport:
    """Parse ``content`` and propose a mapping for every column.

    When a multi-sheet workbook still needs a sheet choice, only the sheet
    list is returned (no mappings); call again with ``selected_sheet``.

    Raises:
        FileParseError: (and subclasses) from the parser
    """
    parsed = parse_file(content, filename, selected_sheet)
    if parsed.needs_sheet_selection:
        logger.info(
            "workbook has %d sheets; a sheet must be selected: %s",
            len(parsed.available_sheets), [s.name for s in parsed.available_sheets],
        )
        return PreparedImport(parse=parsed)

    header_mappings = detect_from_headers(parsed.headers, parsed.rows)
    analyses = analyze_columns(parsed.rows, sample_size)
    mappings = reconcile(header_mappings, analyses)
    return PreparedImport(parse=parsed, mappings=mappings, analyses=analyses)


def build_rows(
    prepared: PreparedImport, overrides: Mapping[str, str | FieldKey] | None = None
) -> list[ProcessedImportRow]:
    """Apply user overrides, finalize the mapping and transform all rows.

    Raises:
        ValueError: override names an unknown column or field
        MappingConflictError: several HIGH confidence columns share a field
    """
    mappings = apply_overrides(prepared.mappings, overrides) if overrides else list(prepared.mappings)
    final = finalize_mapping(mappings)
    logger.debug("final mapping: %s", {c: f.value for c, f in final.items()})
    return transform_all(prepared.parse.rows, final)
