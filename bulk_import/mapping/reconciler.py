from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace

from ..models.column_mapping import ColumnMappingItem, ContentAnalysis
from ..models.fields import REQUIRED_FIELDS, Confidence, FieldKey, parse_target

"""Merge header-based and content-based guesses into one mapping per column.

Precedence, per column:
1. header confidence HIGH -> header mapping kept as is
2. content type detected and content confidence strictly greater than header
   confidence -> content type and content confidence adopted
3. otherwise -> header mapping kept (ties go to the header: it is text the
   user wrote on purpose)

All functions return new lists; the inputs are never mutated.
"""

__all__ = [
    "MappingConflictError",
    "content_confidence",
    "reconcile",
    "apply_overrides",
    "finalize_mapping",
    "MappingSummary",
    "summarize_mapping",
]

logger = logging.getLogger(__name__)

HIGH_RATIO = 0.8
MEDIUM_RATIO = 0.5


class MappingConflictError(Exception):
    """Raised when several high-confidence columns target the same field."""

    def __init__(self, field: FieldKey, columns: Sequence[str]) -> None:
        self.field = field
        self.columns = list(columns)
        super().__init__(
            f"columns {self.columns} are all mapped to '{field.value}' with high confidence; "
            f"choose one of them"
        )


def content_confidence(match_ratio: float) -> Confidence:
    if match_ratio >= HIGH_RATIO:
        return Confidence.HIGH
    if match_ratio >= MEDIUM_RATIO:
        return Confidence.MEDIUM
    return Confidence.LOW


def _reconcile_one(header: ColumnMappingItem, analysis: ContentAnalysis | None) -> ColumnMappingItem:
    if header.confidence is Confidence.HIGH:
        return header
    if analysis is None or analysis.detected_type is None:
        return header
    confidence = content_confidence(analysis.match_ratio)
    if confidence > header.confidence:
        logger.debug(
            "column '%s': content %s (%s) overrides header %s (%s)",
            header.source_column, analysis.detected_type.value, confidence.value,
            header.target_field, header.confidence.value,
        )
        return replace(
            header,
            target_field=analysis.detected_type,
            confidence=confidence,
            is_required=analysis.detected_type in REQUIRED_FIELDS,
        )
    return header


def reconcile(
    header_mappings: Sequence[ColumnMappingItem], content_analyses: Sequence[ContentAnalysis]
) -> list[ColumnMappingItem]:
    """Apply the precedence rule to every header mapping (order preserved)."""
    by_column = {a.source_column: a for a in content_analyses}
    return [_reconcile_one(m, by_column.get(m.source_column)) for m in header_mappings]


def apply_overrides(
    mappings: Sequence[ColumnMappingItem], overrides: Mapping[str, str | FieldKey]
) -> list[ColumnMappingItem]:
    """Apply user choices (source column -> field or "_skip").

    Overridden columns become HIGH confidence: the choice is explicit.

    Raises:
        ValueError: unknown source column or unknown target field
    """
    known = {m.source_column for m in mappings}
    unknown = [c for c in overrides if c not in known]
    if unknown:
        raise ValueError(f"override for unknown column(s): {unknown}")
    result: list[ColumnMappingItem] = []
    for m in mappings:
        if m.source_column not in overrides:
            result.append(m)
            continue
        target = parse_target(overrides[m.source_column])
        result.append(
            replace(m, target_field=target, confidence=Confidence.HIGH, is_required=target in REQUIRED_FIELDS)
        )
    return result


def finalize_mapping(mappings: Sequence[ColumnMappingItem]) -> dict[str, FieldKey]:
    """Turn a reviewed mapping list into ``source column -> field``.

    Each field keeps a single source column. When several columns target one
    field, two or more HIGH ones is a conflict the user must resolve; otherwise
    the first column in file order wins and the others are dropped.

    Raises:
        MappingConflictError
    """
    per_field: dict[FieldKey, list[ColumnMappingItem]] = {}
    for m in mappings:
        if m.is_skipped:
            continue
        per_field.setdefault(m.target_field, []).append(m)  # type: ignore[arg-type]

    chosen: set[str] = set()
    for field, candidates in per_field.items():
        high = [c.source_column for c in candidates if c.confidence is Confidence.HIGH]
        if len(high) > 1:
            raise MappingConflictError(field, high)
        winner = candidates[0]
        if len(candidates) > 1:
            logger.warning(
                "field '%s' mapped from %d columns; using '%s', ignoring %s",
                field.value, len(candidates), winner.source_column,
                [c.source_column for c in candidates[1:]],
            )
        chosen.add(winner.source_column)

    # ファイル列順を維持
    return {m.source_column: m.target_field for m in mappings if m.source_column in chosen}  # type: ignore[misc]


@dataclass(frozen=True)
class MappingSummary:
    mapped_columns: int
    confidence: float  # 0.0 - 1.0, mean confidence rank of mapped columns
    auto_enrichment_available: bool
    missing_required: list[FieldKey]


def summarize_mapping(mappings: Sequence[ColumnMappingItem]) -> MappingSummary:
    mapped = [m for m in mappings if not m.is_skipped]
    total = sum(m.confidence.rank for m in mapped)
    targets = {m.target_field for m in mapped}
    return MappingSummary(
        mapped_columns=len(mapped),
        confidence=total / (len(mapped) * Confidence.HIGH.rank) if mapped else 0.0,
        auto_enrichment_available=bool(targets & {FieldKey.SIRET, FieldKey.SIREN}),
        missing_required=sorted((f for f in REQUIRED_FIELDS if f not in targets), key=lambda f: f.value),
    )
