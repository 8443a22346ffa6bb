from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models.column_mapping import ColumnMappingItem
from ..models.fields import REQUIRED_FIELDS, SKIP, Confidence, FieldKey
from ..models.raw_row import RawImportRow
from .aliases import ALIAS_INDEX, normalize_header

"""Header-based column mapping.

Confidence policy:
- exact alias match after normalization      -> HIGH
- partial match (containment either way)     -> MEDIUM
- no match                                   -> SKIP / LOW

Aliases of at most SHORT_ALIAS_CHARS characters ("ca", "cp", "tel") only match
whole words, so they never match inside unrelated words ("localisation",
"cpu"). Longer aliases also match as plain substrings, which catches plural
or suffixed headers such as "Emails" or "SIRETs".
"""

__all__ = [
    "detect_from_headers",
    "match_header",
    "get_sample_values",
]

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 3
SAMPLE_MAX_CHARS = 50
# header -> alias 方向の部分一致で使う最小文字数 ("n", "no" 等の誤検出防止)
MIN_REVERSE_MATCH_CHARS = 3
# これ以下の長さの alias は単語単位でのみ一致
SHORT_ALIAS_CHARS = 3


def _contains_run(haystack: Sequence[str], needle: Sequence[str]) -> bool:
    n = len(needle)
    if n == 0 or n > len(haystack):
        return False
    return any(list(haystack[i:i + n]) == list(needle) for i in range(len(haystack) - n + 1))


def _alias_in_header(alias: str, header: str) -> bool:
    if len(alias) > SHORT_ALIAS_CHARS and alias in header:
        return True
    return _contains_run(header.split(), alias.split())


def _fields_containing(header: str) -> set[FieldKey]:
    """Fields with an alias containing ``header`` (whole words first, then substrings)."""
    tokens = header.split()
    fields = {field for alias, field in ALIAS_INDEX.items() if _contains_run(alias.split(), tokens)}
    if fields or len(header) <= SHORT_ALIAS_CHARS:
        return fields
    return {field for alias, field in ALIAS_INDEX.items() if header in alias}


def match_header(header: str) -> tuple[FieldKey | str, Confidence]:
    """Return (target field, confidence) for one header text.

    Partial matches prefer aliases found inside the header, longest alias first
    (ties keep registration order). A header found inside aliases only counts
    when all such aliases belong to a single field; otherwise the header is
    ambiguous and skipped.
    """
    normalized = normalize_header(header)
    if not normalized:
        return SKIP, Confidence.LOW
    exact = ALIAS_INDEX.get(normalized)
    if exact is not None:
        return exact, Confidence.HIGH

    best: tuple[int, FieldKey] | None = None
    for alias, field in ALIAS_INDEX.items():  # 登録順 = 同点時の優先順
        if _alias_in_header(alias, normalized):
            if best is None or len(alias) > best[0]:
                best = (len(alias), field)
    if best is not None:
        return best[1], Confidence.MEDIUM

    if len(normalized) >= MIN_REVERSE_MATCH_CHARS:
        fields = _fields_containing(normalized)
        if len(fields) == 1:
            return fields.pop(), Confidence.MEDIUM
        if fields:
            logger.debug("header '%s' is ambiguous between %s", header, sorted(f.value for f in fields))
    return SKIP, Confidence.LOW


def get_sample_values(rows: Sequence[RawImportRow], column: str, limit: int = SAMPLE_LIMIT) -> list[str]:
    """First ``limit`` non-empty values of ``column``, truncated for display."""
    values: list[str] = []
    for row in rows:
        value = row.raw_data.get(column, "")
        if value:
            values.append(value[:SAMPLE_MAX_CHARS])
            if len(values) >= limit:
                break
    return values


def detect_from_headers(
    headers: Sequence[str], rows: Sequence[RawImportRow] | None = None
) -> list[ColumnMappingItem]:
    """Guess the target field of every column from its header text.

    Args:
        headers: Source column names in file order
        rows: Optional parsed rows used to attach sample values

    Returns:
        One ColumnMappingItem per header, in the same order
    """
    mappings: list[ColumnMappingItem] = []
    for header in headers:
        target, confidence = match_header(header)
        mappings.append(
            ColumnMappingItem(
                source_column=header,
                target_field=target,
                confidence=confidence,
                sample_values=get_sample_values(rows, header) if rows else [],
                is_required=target in REQUIRED_FIELDS,
            )
        )
    matched = sum(1 for m in mappings if not m.is_skipped)
    logger.info("header mapping: %d/%d columns matched", matched, len(mappings))
    return mappings
