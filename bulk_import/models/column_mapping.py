from __future__ import annotations

from dataclasses import dataclass, field

from .fields import Confidence, FieldKey

"""Column mapping models shared by the header mapper, content classifier and reconciler."""

__all__ = [
    "ColumnMappingItem",
    "ContentAnalysis",
]


@dataclass(frozen=True)
class ColumnMappingItem:
    """Guess (or user choice) of the target field for one source column.

    target_field is a FieldKey or the ``SKIP`` marker. source_column is unique
    within one mapping list.
    """
    source_column: str
    target_field: FieldKey | str
    confidence: Confidence
    sample_values: list[str] = field(default_factory=list)  # 最大3件
    is_required: bool = False

    @property
    def is_skipped(self) -> bool:
        return not isinstance(self.target_field, FieldKey)


@dataclass(frozen=True)
class ContentAnalysis:
    """Content-only type inference for one column (header text is not used)."""
    source_column: str
    detected_type: FieldKey | None
    match_ratio: float  # 0.0 - 1.0
    sample_count: int
