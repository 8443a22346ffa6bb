from __future__ import annotations

from ..models.import_models import ImportResult

"""SUMMARY line rendering.

Format:
SUMMARY rows={total} successful={n} skipped={n} failed={n} not_attempted={n}
enrichment_rate={pct} elapsed_sec={sec}
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Render without scientific notation; integral values without decimals."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.2f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line of one import run.

    Examples:
        >>> from bulk_import.models import ImportBatchStatus, ImportResult, ImportStats
        >>> result = ImportResult(
        ...     successful_rows=[], skipped_rows=[], failed_rows=[],
        ...     stats=ImportStats(enrichment_rate=0.0, total_processing_time_ms=1500),
        ...     batch_status=ImportBatchStatus(total_rows=0),
        ... )
        >>> render_summary_line(result)
        'SUMMARY rows=0 successful=0 skipped=0 failed=0 not_attempted=0 enrichment_rate=0 elapsed_sec=1.5'
    """
    elapsed_sec = result.stats.total_processing_time_ms / 1000
    return (
        f"SUMMARY rows={result.batch_status.total_rows} "
        f"successful={len(result.successful_rows)} "
        f"skipped={len(result.skipped_rows)} "
        f"failed={len(result.failed_rows)} "
        f"not_attempted={len(result.not_attempted)} "
        f"enrichment_rate={format_number(result.stats.enrichment_rate)} "
        f"elapsed_sec={format_number(elapsed_sec)}"
    )
