from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""ProcessedImportRow model and row lifecycle enums.

State transitions during import:
    pending/valid -> (skipped | imported | failed)
    invalid       -> failed (never persisted)

Transitions produce new instances via dataclasses.replace; a row handed to the
importer is never mutated.
"""

__all__ = [
    "RowStatus",
    "EnrichmentStatus",
    "ProcessedImportRow",
]


class RowStatus(Enum):
    """Status of a transformed row.

    - PENDING: importable, but a recommended field (SIRET) is missing
    - VALID: importable, nothing missing
    - INVALID: required field missing; never persisted
    - IMPORTED / SKIPPED / FAILED: terminal states set by the importer
    """
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    IMPORTED = "imported"
    SKIPPED = "skipped"
    FAILED = "failed"


class EnrichmentStatus(Enum):
    NONE = "none"
    ENRICHED = "enriched"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessedImportRow:
    """Normalized, validated record built from one RawImportRow."""
    row_number: int
    profile_data: dict[str, Any]
    status: RowStatus
    validation_errors: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)
    enrichment_status: EnrichmentStatus = EnrichmentStatus.NONE
    import_error: str | None = None  # 失敗理由 (failedRows 表示用)
    error_type: str | None = None  # UPPER_SNAKE
    imported_profile_id: str | None = None
