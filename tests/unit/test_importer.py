from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from bulk_import.enrichment.registry import EnrichmentResult, TransientRegistryError
from bulk_import.logging.error_log import ErrorLogBuffer
from bulk_import.models import (
    DuplicateStrategy,
    EnrichmentStatus,
    ImportOptions,
    ProcessedImportRow,
    RowStatus,
)
from bulk_import.services.importer import (
    ENRICHMENT_ERROR,
    MISSING_REQUIRED_FIELD,
    PERSISTENCE_ERROR,
    BatchImporter,
    CancellationToken,
    ImportRunError,
    ProgressChannel,
)
from bulk_import.store.profile_store import InMemoryProfileStore, PersistenceError

SIRETS = ["73282932000074", "44306184100047"]


def _row(n: int, name: str = "", siret: str | None = None, status: RowStatus = RowStatus.VALID) -> ProcessedImportRow:
    data = {"company_name": name or f"Société {n}"}
    if siret:
        data["siret"] = siret
    return ProcessedImportRow(row_number=n, profile_data=data, status=status)


def _invalid(n: int) -> ProcessedImportRow:
    return ProcessedImportRow(
        row_number=n, profile_data={}, status=RowStatus.INVALID, validation_errors=["company_name required"]
    )


def _options(**kwargs) -> ImportOptions:
    kwargs.setdefault("delay_between_rows", 0)
    return ImportOptions(user_id="u1", **kwargs)


def test_all_rows_imported(memory_store):
    rows = [_row(1, siret=SIRETS[0]), _row(2)]
    result = BatchImporter(memory_store).run(rows, _options())
    assert [r.row_number for r in result.successful_rows] == [1, 2]
    assert all(r.status is RowStatus.IMPORTED and r.imported_profile_id for r in result.successful_rows)
    assert result.failed_rows == []
    assert result.skipped_rows == []
    assert result.batch_status.processed == 2
    assert result.cancelled is False
    assert len(memory_store) == 2


def test_invalid_rows_fail_without_store_calls():
    store = MagicMock()
    result = BatchImporter(store).run([_invalid(1)], _options())
    assert result.failed_rows[0].error_type == MISSING_REQUIRED_FIELD
    assert result.failed_rows[0].import_error == "company_name required"
    store.exists.assert_not_called()
    store.create.assert_not_called()


def test_conservation_and_disjoint_row_numbers(memory_store):
    memory_store.create("u1", {"company_name": "Déjà là", "siret": SIRETS[1]})
    rows = [_row(1), _invalid(2), _row(3, siret=SIRETS[1]), _row(4, siret=SIRETS[0])]
    result = BatchImporter(memory_store).run(rows, _options())
    groups = [result.successful_rows, result.skipped_rows, result.failed_rows]
    numbers = [r.row_number for g in groups for r in g]
    assert sorted(numbers) == [1, 2, 3, 4]
    assert len(numbers) == len(set(numbers))
    assert [r.row_number for r in result.skipped_rows] == [3]


def test_duplicate_strategy_create_imports_again(memory_store):
    memory_store.create("u1", {"company_name": "Acme", "siret": SIRETS[0]})
    result = BatchImporter(memory_store).run(
        [_row(1, siret=SIRETS[0])], _options(duplicate_strategy=DuplicateStrategy.CREATE)
    )
    assert len(result.successful_rows) == 1
    assert len(memory_store) == 2


def test_rerun_skips_previously_imported_rows(memory_store):
    rows = [_row(1, siret=SIRETS[0]), _row(2, name="Boulangerie Martin"), _invalid(3)]
    importer = BatchImporter(memory_store)
    first = importer.run(rows, _options())
    second = importer.run(rows, _options())
    assert len(second.skipped_rows) == len(first.successful_rows) == 2
    assert second.successful_rows == []


def test_duplicates_are_scoped_per_user(memory_store):
    memory_store.create("other-user", {"company_name": "Acme", "siret": SIRETS[0]})
    result = BatchImporter(memory_store).run([_row(1, siret=SIRETS[0])], _options())
    assert len(result.successful_rows) == 1


def test_persistence_failure_is_isolated():
    store = InMemoryProfileStore()
    original_create = store.create

    def flaky_create(user_id, profile):
        if profile["company_name"] == "Société 2":
            raise RuntimeError("disk full")
        return original_create(user_id, profile)

    store.create = flaky_create  # type: ignore[method-assign]
    result = BatchImporter(store).run([_row(1), _row(2), _row(3)], _options())
    assert [r.row_number for r in result.successful_rows] == [1, 3]
    failed = result.failed_rows[0]
    assert failed.row_number == 2
    assert failed.error_type == PERSISTENCE_ERROR
    assert "disk full" in failed.import_error


def test_enrichment_merges_registry_data(memory_store):
    registry = MagicMock()
    registry.lookup.return_value = EnrichmentResult(siren="732829320", city="Rennes", naf_code="6201Z")
    result = BatchImporter(memory_store, registry=registry).run(
        [_row(1, siret=SIRETS[0]), _row(2)], _options(enable_registry_enrichment=True)
    )
    registry.lookup.assert_called_once_with(SIRETS[0])
    enriched = result.successful_rows[0]
    assert enriched.enrichment_status is EnrichmentStatus.ENRICHED
    assert enriched.profile_data["city"] == "Rennes"
    assert result.successful_rows[1].enrichment_status is EnrichmentStatus.NONE
    assert result.batch_status.enriched == 1
    assert result.stats.enrichment_rate == pytest.approx(50.0)
    assert result.stats.total_api_calls == 1


def test_enrichment_not_found_still_imports(memory_store):
    registry = MagicMock()
    registry.lookup.return_value = None
    result = BatchImporter(memory_store, registry=registry).run(
        [_row(1, siret=SIRETS[0])], _options(enable_registry_enrichment=True)
    )
    row = result.successful_rows[0]
    assert row.enrichment_status is EnrichmentStatus.NOT_FOUND
    assert any("not found" in w for w in row.validation_warnings)


def test_enrichment_failure_skipped_when_allowed(memory_store):
    registry = MagicMock()
    registry.lookup.side_effect = TransientRegistryError("503")
    result = BatchImporter(memory_store, registry=registry).run(
        [_row(1, siret=SIRETS[0])], _options(enable_registry_enrichment=True, skip_enrichment_on_error=True)
    )
    row = result.successful_rows[0]
    assert row.enrichment_status is EnrichmentStatus.FAILED
    assert any("enrichment failed" in w for w in row.validation_warnings)


def test_enrichment_failure_fails_row_when_not_allowed(memory_store):
    registry = MagicMock()
    registry.lookup.side_effect = TransientRegistryError("503")
    result = BatchImporter(memory_store, registry=registry).run(
        [_row(1, siret=SIRETS[0]), _row(2)],
        _options(enable_registry_enrichment=True, skip_enrichment_on_error=False),
    )
    failed = result.failed_rows[0]
    assert failed.row_number == 1
    assert failed.error_type == ENRICHMENT_ERROR
    assert failed.enrichment_status is EnrichmentStatus.FAILED
    assert [r.row_number for r in result.successful_rows] == [2]
    assert len(memory_store) == 1


def test_enrichment_enabled_without_registry_is_fatal(memory_store):
    with pytest.raises(ImportRunError):
        BatchImporter(memory_store).run([_row(1)], _options(enable_registry_enrichment=True))


def test_delay_between_rows_never_after_last(memory_store, no_sleep):
    importer = BatchImporter(memory_store, sleep=no_sleep.append)
    importer.run([_row(1), _invalid(2), _row(3)], _options(delay_between_rows=0.25))
    assert no_sleep == [0.25, 0.25]


def test_progress_receives_copies(memory_store):
    snapshots = []
    result = BatchImporter(memory_store).run([_row(1), _row(2)], _options(on_progress=snapshots.append))
    assert [s.processed for s in snapshots] == [1, 2]
    assert snapshots[0] is not snapshots[1]
    assert snapshots[-1] is not result.batch_status
    assert snapshots[0].current_action == "row 1: imported"


def test_cancellation_before_start(memory_store):
    token = CancellationToken()
    token.cancel()
    rows = [_row(1), _row(2)]
    result = BatchImporter(memory_store).run(rows, _options(), cancel_token=token)
    assert result.cancelled is True
    assert result.not_attempted == rows
    assert result.successful_rows == []
    assert len(memory_store) == 0


def test_cancellation_between_rows(memory_store):
    token = CancellationToken()

    def on_progress(status):
        if status.processed == 2:
            token.cancel()

    rows = [_row(i) for i in range(1, 6)]
    result = BatchImporter(memory_store).run(rows, _options(on_progress=on_progress), cancel_token=token)
    assert result.cancelled is True
    assert [r.row_number for r in result.successful_rows] == [1, 2]
    assert [r.row_number for r in result.not_attempted] == [3, 4, 5]
    total = len(result.successful_rows) + len(result.skipped_rows) + len(result.failed_rows) + len(result.not_attempted)
    assert total == len(rows)


def test_cancellation_wakes_inter_row_wait(memory_store):
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        result = BatchImporter(memory_store).run(
            [_row(1), _row(2)], _options(delay_between_rows=30), cancel_token=token
        )
    finally:
        timer.cancel()
    assert result.cancelled is True
    assert [r.row_number for r in result.not_attempted] == [2]


def test_failed_rows_written_to_error_log(memory_store, tmp_path):
    error_log = ErrorLogBuffer(tmp_path / "logs")
    BatchImporter(memory_store, error_log=error_log).run([_row(1), _invalid(2)], _options())
    assert len(error_log) == 1


def test_stats_for_successful_rows(memory_store):
    rows = [_row(1, siret=SIRETS[0]), _row(2)]
    result = BatchImporter(memory_store).run(rows, _options())
    assert result.stats.enrichment_rate == 0
    assert result.stats.avg_fields_per_profile == 2  # (2 + 1) / 2 -> round
    assert result.stats.avg_completion_percentage == 15  # (20% + 10%) / 2
    assert result.stats.total_processing_time_ms >= 0


def test_progress_channel_drops_oldest_when_full():
    channel = ProgressChannel(maxsize=2)
    for status in ("a", "b", "c"):
        channel(status)  # type: ignore[arg-type]
    assert channel.dropped == 1
    assert channel.drain() == ["b", "c"]
    assert channel.latest() is None


def test_progress_channel_as_progress_sink(memory_store):
    channel = ProgressChannel(maxsize=10)
    BatchImporter(memory_store).run([_row(1), _row(2)], _options(on_progress=channel))
    latest = channel.latest()
    assert latest is not None
    assert latest.processed == 2


def test_rerun_recognizes_row_whose_siret_came_from_enrichment(memory_store):
    row = ProcessedImportRow(
        row_number=1, profile_data={"company_name": "Acme", "siren": "732829320"}, status=RowStatus.PENDING
    )
    registry = MagicMock()
    registry.lookup.return_value = EnrichmentResult(siren="732829320", siret=SIRETS[0])
    importer = BatchImporter(memory_store, registry=registry)
    options = _options(enable_registry_enrichment=True, duplicate_strategy=DuplicateStrategy.SKIP)

    first = importer.run([row], options)
    assert first.successful_rows[0].profile_data["siret"] == SIRETS[0]
    second = importer.run([row], options)
    assert len(second.skipped_rows) == len(first.successful_rows) == 1
    assert len(memory_store) == 1


def test_retrying_failed_rows_never_persists_invalid_ones(memory_store):
    store = MagicMock(wraps=memory_store)
    store.create.side_effect = [PersistenceError("timeout"), "p-2"]
    first = BatchImporter(store).run([_row(1), _invalid(2)], _options())
    assert [r.row_number for r in first.failed_rows] == [1, 2]
    assert all(r.status is RowStatus.FAILED for r in first.failed_rows)

    retry = BatchImporter(store).run(first.failed_rows, _options())
    assert [r.row_number for r in retry.successful_rows] == [1]
    (failed,) = retry.failed_rows
    assert failed.row_number == 2
    assert failed.error_type == MISSING_REQUIRED_FIELD
    assert store.create.call_count == 2
