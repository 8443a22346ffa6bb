from __future__ import annotations

import argparse
import sys
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import ConfigError, ImportConfig, load_config, resolve_dsn
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..mapping.content_classifier import detection_summary
from ..mapping.reconciler import MappingConflictError, summarize_mapping
from ..models.fields import FIELD_LABELS, FieldKey, parse_target
from ..models.import_models import ImportOptions, ImportResult
from ..models.processed_row import ProcessedImportRow
from ..parsing.reader import FileParseError
from ..services.importer import BatchImporter, CancellationToken, ImportRunError
from ..services.pipeline import PreparedImport, build_rows, prepare_import
from ..services.progress import RowProgressTracker
from ..services.summary import render_summary_line
from ..store.profile_store import InMemoryProfileStore, PostgresProfileStore, ProfileStore

"""CLI entrypoint: python -m bulk_import.cli FILE --user-id USER [options]

Exit codes:
    0  every row imported or skipped as duplicate
    2  some rows failed (or the run was interrupted)
    1  fatal: config / parse / mapping error, sheet selection required,
       database connection failure
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")


@contextmanager
def _db_connection(dsn: str) -> Iterator[Any]:  # pragma: no cover (thin wrapper; tested via mocks)
    """Provide a psycopg2 cursor; commit on success, rollback on error."""
    conn = psycopg2.connect(dsn)
    conn.autocommit = False  # 行単位 SAVEPOINT + 最後に COMMIT
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = False) -> None:
    """Load .env using python-dotenv (existing variables win unless override)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m bulk_import.cli",
        description="Import business profiles from a CSV / Excel file",
    )
    p.add_argument("file", type=Path, help="CSV, .xlsx or .xls file")
    p.add_argument("--user-id", required=True, help="Owner of the imported profiles")
    p.add_argument("--sheet", help="Sheet to import (required for multi-sheet workbooks)")
    p.add_argument("--config", type=Path, help=f"YAML config (default: {DEFAULT_CONFIG_PATH} if present)")
    p.add_argument(
        "--map", action="append", default=[], metavar="COLUMN=FIELD",
        help="Override a column mapping (FIELD may be _skip); repeatable",
    )
    p.add_argument("--env-file", type=Path, default=Path(".env"), help="dotenv file to load")
    p.add_argument("--inspect-data", action="store_true", help="Print sheets and proposed mapping then exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _parse_map_args(values: list[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for value in values:
        column, sep, target = value.partition("=")
        if not sep or not column.strip():
            raise ValueError(f"--map expects COLUMN=FIELD (got '{value}')")
        parse_target(target.strip())
        overrides[column.strip()] = target.strip()
    return overrides


def _print_sheets(prepared: PreparedImport) -> None:
    for sheet in prepared.parse.available_sheets:
        print(f"SHEET: {sheet.name} rows={sheet.row_count} cols={sheet.column_count}")
        for preview in sheet.preview_rows:
            print(f"    {preview}")


def _inspect_data(prepared: PreparedImport) -> int:
    """Print sheet list, headers and the proposed mapping."""
    _print_sheets(prepared)
    if prepared.needs_sheet_selection:
        print("select a sheet with --sheet to see the column mapping")
        return EXIT_SUCCESS_ALL
    print(f"ROWS: {len(prepared.parse.rows)}")
    for m in prepared.mappings:
        if isinstance(m.target_field, FieldKey):
            target = f"{m.target_field.value} ({FIELD_LABELS[m.target_field]})"
        else:
            target = m.target_field
        print(f"  {m.source_column!r} -> {target} [{m.confidence.value}] samples={m.sample_values}")
    summary = summarize_mapping(prepared.mappings)
    print(
        f"MAPPING: mapped={summary.mapped_columns} confidence={summary.confidence:.2f} "
        f"enrichment_available={summary.auto_enrichment_available} "
        f"missing_required={[f.value for f in summary.missing_required]}"
    )
    detected = detection_summary(prepared.analyses)
    print(
        f"DETECTED: auto={detected.auto_detected} emails={detected.emails} "
        f"websites={detected.websites} sirets={detected.sirets} phones={detected.phones}"
    )
    return EXIT_SUCCESS_ALL


def _run_import(
    store: ProfileStore,
    rows: list[ProcessedImportRow],
    options: ImportOptions,
    error_log: ErrorLogBuffer,
    logger: Any,
) -> ImportResult:
    """Run the importer on a worker thread so Ctrl-C cancels between rows."""
    importer = BatchImporter(store, error_log=error_log)
    token = CancellationToken()
    with RowProgressTracker(len(rows)) as progress:
        options = replace(options, on_progress=progress)
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(importer.run, rows, options, token)
            try:
                return future.result()
            except KeyboardInterrupt:
                logger.warning("interrupted: finishing the current row then stopping")
                token.cancel()
                return future.result()


def _exit_code(result: ImportResult) -> int:
    if result.failed_rows or result.cancelled:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # 空リスト [] はそのまま使う (None のときのみ sys.argv を読む)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    _load_env_file(args.env_file)

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    try:
        cfg: ImportConfig = load_config(config_path)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        content = args.file.read_bytes()
    except OSError as e:
        logger.error(f"cannot read {args.file}: {e}")
        return EXIT_FATAL

    try:
        prepared = prepare_import(content, args.file.name, args.sheet, cfg.sample_size)
    except FileParseError as e:
        logger.error(f"parse: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(prepared)

    if prepared.needs_sheet_selection:
        names = [s.name for s in prepared.parse.available_sheets]
        logger.error(f"workbook has several sheets, choose one with --sheet: {names}")
        return EXIT_FATAL

    try:
        overrides = {**cfg.column_overrides, **_parse_map_args(args.map)}
        rows = build_rows(prepared, overrides)
    except (ValueError, MappingConflictError) as e:
        logger.error(f"mapping: {e}")
        return EXIT_FATAL

    options = cfg.to_options(args.user_id)
    if options.enable_registry_enrichment:
        logger.warning("registry enrichment has no client configured in the CLI; importing without it")
        options = replace(options, enable_registry_enrichment=False)

    error_log = ErrorLogBuffer(Path(cfg.error_log_dir))
    dsn = resolve_dsn(cfg)
    try:
        if dsn:
            logger.info(f"importing {len(rows)} rows from {args.file.name} (mode=live)")
            with _db_connection(dsn) as cur:
                store = PostgresProfileStore(cur, cfg.database.table)
                result = _run_import(store, rows, options, error_log, logger)
        else:
            logger.info(f"importing {len(rows)} rows from {args.file.name} (mode=mock)")
            result = _run_import(InMemoryProfileStore(), rows, options, error_log, logger)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except ImportRunError as e:
        logger.error(f"import: {e}")
        return EXIT_FATAL
    finally:
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"row errors written to {log_path}")

    # log_summary が "SUMMARY " を付与するため先頭を除去
    summary_line = render_summary_line(result)
    log_summary(summary_line[len("SUMMARY "):])
    return _exit_code(result)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
