from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from ..enrichment.registry import (
    EnrichmentError,
    RegistryClient,
    lookup_identifier,
    merge_enrichment,
)
from ..logging.error_log import ErrorLogBuffer
from ..models.fields import FieldKey
from ..models.import_models import (
    DuplicateStrategy,
    ImportBatchStatus,
    ImportOptions,
    ImportResult,
    ImportStats,
)
from ..models.processed_row import EnrichmentStatus, ProcessedImportRow, RowStatus
from ..store.profile_store import PersistenceError, ProfileStore, match_key_for

"""Batch import service: rows -> duplicate check -> enrichment -> persistence.

Per row:
    pending -> duplicate-check -> {skipped | enriching -> persisting -> {imported | failed}}

Rows are processed strictly one after another. A failure is recorded on its
row and never stops the batch. Cancellation is checked before every row; rows
not reached are returned untouched in ``ImportResult.not_attempted``.
"""

__all__ = [
    "ImportRunError",
    "CancellationToken",
    "ProgressChannel",
    "BatchImporter",
    "MISSING_REQUIRED_FIELD",
    "ENRICHMENT_ERROR",
    "PERSISTENCE_ERROR",
    "COMPLETION_FIELDS",
]

logger = logging.getLogger(__name__)

# error_type 値 (ErrorRecord.error_type と共通)
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
ENRICHMENT_ERROR = "ENRICHMENT_ERROR"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"

# 完成度 (avg_completion_percentage) の対象フィールド
COMPLETION_FIELDS: tuple[FieldKey, ...] = (
    FieldKey.COMPANY_NAME,
    FieldKey.SIRET,
    FieldKey.NAF_CODE,
    FieldKey.SECTOR,
    FieldKey.REGION,
    FieldKey.EMPLOYEES,
    FieldKey.LEGAL_FORM,
    FieldKey.WEBSITE_URL,
    FieldKey.ADDRESS,
    FieldKey.POSTAL_CODE,
)


class ImportRunError(Exception):
    """Fatal error preventing a run from starting."""


class CancellationToken:
    """Thread-safe cancel flag shared between the caller and a running import."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True early when cancelled."""
        return self._event.wait(timeout)


class ProgressChannel:
    """Bounded progress sink usable as ``ImportOptions.on_progress``.

    Snapshots are full replacements, so when the queue is full the oldest
    snapshot is dropped instead of blocking the importer.
    """

    def __init__(self, maxsize: int = 100) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1 (got {maxsize})")
        self._queue: queue.Queue[ImportBatchStatus] = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped = 0

    def __call__(self, status: ImportBatchStatus) -> None:
        with self._lock:
            while True:
                try:
                    self._queue.put_nowait(status)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: float | None = None) -> ImportBatchStatus:
        """Block until a snapshot is available (raises queue.Empty on timeout)."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[ImportBatchStatus]:
        items: list[ImportBatchStatus] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def latest(self) -> ImportBatchStatus | None:
        items = self.drain()
        return items[-1] if items else None


@dataclass
class _RunState:
    options: ImportOptions
    status: ImportBatchStatus
    api_calls: int = 0


def _chunks(rows: Sequence[ProcessedImportRow], size: int) -> list[Sequence[ProcessedImportRow]]:
    return [rows[i:i + size] for i in range(0, len(rows), size)]


def _filled_fields(profile: dict[str, Any]) -> int:
    return sum(1 for v in profile.values() if v is not None and v != "")


def _build_stats(
    successful: Sequence[ProcessedImportRow], api_calls: int, elapsed_ms: int
) -> ImportStats:
    if not successful:
        return ImportStats(enrichment_rate=0.0, total_api_calls=api_calls, total_processing_time_ms=elapsed_ms)
    enriched = sum(1 for r in successful if r.enrichment_status is EnrichmentStatus.ENRICHED)
    avg_fields = sum(_filled_fields(r.profile_data) for r in successful) / len(successful)
    completion = sum(
        sum(1 for f in COMPLETION_FIELDS if r.profile_data.get(f.value) not in (None, "")) / len(COMPLETION_FIELDS)
        for r in successful
    ) / len(successful) * 100
    return ImportStats(
        enrichment_rate=enriched / len(successful) * 100,
        avg_fields_per_profile=round(avg_fields),
        avg_completion_percentage=round(completion),
        total_api_calls=api_calls,
        total_processing_time_ms=elapsed_ms,
    )


class BatchImporter:
    """Sequential importer of transformed rows.

    Args:
        store: ProfileStore used for duplicate lookup and creation
        registry: Optional RegistryClient; required when enrichment is enabled
        sleep: Delay function used between rows when no cancellation token is given
        error_log: Optional ErrorLogBuffer receiving one record per failed row
    """

    def __init__(
        self,
        store: ProfileStore,
        registry: RegistryClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self._sleep = sleep
        self.error_log = error_log

    def run(
        self,
        rows: Sequence[ProcessedImportRow],
        options: ImportOptions,
        cancel_token: CancellationToken | None = None,
    ) -> ImportResult:
        """Import ``rows`` in order and return the partitioned outcome.

        Raises:
            ImportRunError: enrichment enabled without a registry client
        """
        if options.enable_registry_enrichment and self.registry is None:
            raise ImportRunError("registry enrichment enabled but no registry client configured")

        started = time.monotonic()
        state = _RunState(options=options, status=ImportBatchStatus(total_rows=len(rows)))
        successful: list[ProcessedImportRow] = []
        skipped: list[ProcessedImportRow] = []
        failed: list[ProcessedImportRow] = []
        not_attempted: list[ProcessedImportRow] = []
        cancelled = False

        logger.info("import started: %d rows (user=%s)", len(rows), options.user_id)
        index = 0
        batches = _chunks(rows, options.batch_size)
        for batch_no, batch in enumerate(batches, start=1):
            logger.debug("batch %d/%d (%d rows)", batch_no, len(batches), len(batch))
            for row in batch:
                if cancel_token is not None and cancel_token.cancelled:
                    cancelled = True
                    break
                state.status.current_row = row.row_number
                outcome = self._process_row(row, state)
                index += 1

                if outcome.status is RowStatus.IMPORTED:
                    successful.append(outcome)
                    state.status.successful += 1
                elif outcome.status is RowStatus.SKIPPED:
                    skipped.append(outcome)
                    state.status.skipped += 1
                else:
                    failed.append(outcome)
                    state.status.failed += 1
                    logger.warning("row %d failed: %s", outcome.row_number, outcome.import_error)
                    if self.error_log is not None:
                        self.error_log.record_row(options.user_id, outcome)
                state.status.processed += 1
                state.status.current_action = f"row {outcome.row_number}: {outcome.status.value}"
                self._notify(state)

                if index < len(rows):
                    if self._wait(options.delay_between_rows, cancel_token):
                        cancelled = True
                        break
            if cancelled:
                break

        if cancelled:
            not_attempted = list(rows[index:])
            state.status.current_action = "cancelled"
            logger.warning("import cancelled: %d row(s) not attempted", len(not_attempted))
            self._notify(state)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        stats = _build_stats(successful, state.api_calls, elapsed_ms)
        logger.info(
            "import finished: successful=%d skipped=%d failed=%d not_attempted=%d",
            len(successful), len(skipped), len(failed), len(not_attempted),
        )
        return ImportResult(
            successful_rows=successful,
            skipped_rows=skipped,
            failed_rows=failed,
            stats=stats,
            batch_status=state.status.snapshot(),
            not_attempted=not_attempted,
            cancelled=cancelled,
        )

    def _wait(self, delay: float, cancel_token: CancellationToken | None) -> bool:
        """Inter-row delay; returns True when cancellation was requested meanwhile."""
        if cancel_token is not None:
            if delay > 0:
                return cancel_token.wait(delay)
            return cancel_token.cancelled
        if delay > 0:
            self._sleep(delay)
        return False

    def _notify(self, state: _RunState) -> None:
        if state.options.on_progress is not None:
            state.options.on_progress(state.status.snapshot())

    def _process_row(self, row: ProcessedImportRow, state: _RunState) -> ProcessedImportRow:
        options = state.options
        # 再実行 (failed_rows を渡し直す) でも status は FAILED になっているため検証結果で判定
        if row.status is RowStatus.INVALID or row.validation_errors:
            return replace(
                row,
                status=RowStatus.FAILED,
                import_error="; ".join(row.validation_errors) or "row failed validation",
                error_type=MISSING_REQUIRED_FIELD,
            )

        profile = dict(row.profile_data)
        warnings = list(row.validation_warnings)

        # 重複チェック
        match_key = match_key_for(profile)
        if match_key is not None:
            try:
                duplicate = self._exists(options.user_id, match_key)
            except PersistenceError as e:
                return self._failed(row, warnings, str(e), PERSISTENCE_ERROR)
            if duplicate:
                if options.duplicate_strategy is DuplicateStrategy.SKIP:
                    warnings.append(f"duplicate of an existing profile ({match_key.kind}={match_key.value})")
                    return replace(row, status=RowStatus.SKIPPED, validation_warnings=warnings)
                logger.debug("row %d: duplicate kept (strategy=create)", row.row_number)

        # 企業登録簿による補完
        enrichment_status = EnrichmentStatus.NONE
        identifier = lookup_identifier(profile) if options.enable_registry_enrichment else None
        if identifier is not None and self.registry is not None:
            state.api_calls += 1
            try:
                result = self.registry.lookup(identifier)
            except Exception as cause:
                error = EnrichmentError(identifier, cause)
                logger.warning("row %d: %s", row.row_number, error)
                if not options.skip_enrichment_on_error:
                    return replace(
                        self._failed(row, warnings, str(error), ENRICHMENT_ERROR),
                        enrichment_status=EnrichmentStatus.FAILED,
                    )
                warnings.append(f"enrichment failed, imported without registry data: {cause}")
                enrichment_status = EnrichmentStatus.FAILED
            else:
                if result is None:
                    warnings.append(f"{identifier} not found in the company registry")
                    enrichment_status = EnrichmentStatus.NOT_FOUND
                else:
                    profile, filled = merge_enrichment(profile, result)
                    enrichment_status = EnrichmentStatus.ENRICHED
                    state.status.enriched += 1
                    if filled:
                        warnings.append(f"enriched from registry: {', '.join(filled)}")

        # 永続化
        try:
            profile_id = self._create(options.user_id, profile)
        except PersistenceError as e:
            return replace(
                self._failed(row, warnings, str(e), PERSISTENCE_ERROR),
                profile_data=profile,
                enrichment_status=enrichment_status,
            )
        return replace(
            row,
            profile_data=profile,
            status=RowStatus.IMPORTED,
            validation_warnings=warnings,
            enrichment_status=enrichment_status,
            imported_profile_id=profile_id,
            import_error=None,
            error_type=None,
        )

    def _exists(self, user_id: str, match_key: Any) -> bool:
        try:
            return self.store.exists(user_id, match_key)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"duplicate lookup failed: {e}") from e

    def _create(self, user_id: str, profile: dict[str, Any]) -> str:
        try:
            return self.store.create(user_id, profile)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _failed(row: ProcessedImportRow, warnings: list[str], message: str, error_type: str) -> ProcessedImportRow:
        return replace(
            row,
            status=RowStatus.FAILED,
            validation_warnings=warnings,
            import_error=message,
            error_type=error_type,
        )
