"""Domain models for the business-profile bulk import pipeline.

Parser output, column mapping guesses, transformed rows and batch import
results all live here so every pipeline stage shares the same types.
"""

from .column_mapping import ColumnMappingItem, ContentAnalysis
from .error_record import ErrorRecord
from .fields import (
    FIELD_LABELS,
    NUMERIC_FIELDS,
    RECOMMENDED_FIELDS,
    REQUIRED_FIELDS,
    SKIP,
    Confidence,
    FieldKey,
    parse_target,
)
from .import_models import (
    DuplicateStrategy,
    ImportBatchStatus,
    ImportOptions,
    ImportResult,
    ImportStats,
)
from .processed_row import EnrichmentStatus, ProcessedImportRow, RowStatus
from .raw_row import ParseResult, RawImportRow, SheetInfo

__all__ = [
    # Fields
    "FieldKey",
    "Confidence",
    "SKIP",
    "REQUIRED_FIELDS",
    "RECOMMENDED_FIELDS",
    "NUMERIC_FIELDS",
    "FIELD_LABELS",
    "parse_target",
    # Parsing
    "RawImportRow",
    "SheetInfo",
    "ParseResult",
    # Mapping
    "ColumnMappingItem",
    "ContentAnalysis",
    # Rows
    "RowStatus",
    "EnrichmentStatus",
    "ProcessedImportRow",
    # Import
    "DuplicateStrategy",
    "ImportOptions",
    "ImportBatchStatus",
    "ImportStats",
    "ImportResult",
    "ErrorRecord",
]
