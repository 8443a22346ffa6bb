from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum

from .processed_row import ProcessedImportRow

"""Batch import option / status / result models.

ImportBatchStatus is owned by the importer and mutated monotonically during a
run. Callers only ever receive copies (``snapshot()``), so every progress
notification is a full replacement of the previous one.
"""

__all__ = [
    "DuplicateStrategy",
    "ImportOptions",
    "ImportBatchStatus",
    "ImportStats",
    "ImportResult",
]


class DuplicateStrategy(Enum):
    SKIP = "skip"
    CREATE = "create"


@dataclass(frozen=True)
class ImportOptions:
    """Options for one BatchImporter.run call.

    delay_between_rows is in seconds and is applied between every pair of rows,
    including rows that never reach the registry or the store.
    """
    user_id: str
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    enable_registry_enrichment: bool = False
    skip_enrichment_on_error: bool = True
    batch_size: int = 10
    delay_between_rows: float = 0.1
    on_progress: Callable[[ImportBatchStatus], None] | None = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {self.batch_size})")
        if self.delay_between_rows < 0:
            raise ValueError(f"delay_between_rows must be >= 0 (got {self.delay_between_rows})")


@dataclass
class ImportBatchStatus:
    """Running counters of an import.

    Invariant: processed == successful + skipped + failed.
    """
    total_rows: int
    processed: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    enriched: int = 0
    current_row: int | None = None
    current_action: str = ""

    def snapshot(self) -> ImportBatchStatus:
        return replace(self)


@dataclass(frozen=True)
class ImportStats:
    enrichment_rate: float  # % of successful rows enriched via the registry
    avg_fields_per_profile: int = 0
    avg_completion_percentage: int = 0
    total_api_calls: int = 0
    total_processing_time_ms: int = 0


@dataclass(frozen=True)
class ImportResult:
    """Terminal outcome of one run.

    successful_rows, skipped_rows and failed_rows partition the attempted rows.
    not_attempted is only non-empty when the run was cancelled.
    """
    successful_rows: list[ProcessedImportRow]
    skipped_rows: list[ProcessedImportRow]
    failed_rows: list[ProcessedImportRow]
    stats: ImportStats
    batch_status: ImportBatchStatus
    not_attempted: list[ProcessedImportRow] = field(default_factory=list)
    cancelled: bool = False
