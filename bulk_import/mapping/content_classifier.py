from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..models.column_mapping import ContentAnalysis
from ..models.fields import FieldKey
from ..models.raw_row import RawImportRow

"""Content-based column type inference.

Each column is sampled independently of its header text. Every sampled value
is tested against detectors in a fixed priority order and receives at most
one type; the column type is the plurality type when it covers at least
DETECTION_THRESHOLD of the sample and the sample is large enough.
"""

__all__ = [
    "DEFAULT_SAMPLE_SIZE",
    "DETECTION_THRESHOLD",
    "MIN_SAMPLE_COUNT",
    "DETECTORS",
    "classify_value",
    "analyze_column",
    "analyze_columns",
    "DetectionSummary",
    "detection_summary",
]

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50
DETECTION_THRESHOLD = 0.8
MIN_SAMPLE_COUNT = 3

_ID_SEPARATORS = re.compile(r"[\s.\-]")
_EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")
_WEBSITE = re.compile(
    r"^(?:https?://)?(?:www\.)?[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?"
    r"(?:\.[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?)*\.[a-z]{2,}(?::\d+)?(?:[/?#]\S*)?$",
    re.IGNORECASE,
)
# 0X XX XX XX XX / +33 X XX XX XX XX / 0033 ... (区切り: 空白 . -)
_FR_PHONE = re.compile(r"^(?:(?:\+|00)33[\s.\-]?(?:\(0\)[\s.\-]?)?|0)[1-9](?:[\s.\-]?\d{2}){4}$")


def _digits_only(value: str) -> str:
    return _ID_SEPARATORS.sub("", value)


def _is_siret(value: str) -> bool:
    compact = _digits_only(value)
    return len(compact) == 14 and compact.isdigit()


def _is_siren(value: str) -> bool:
    compact = _digits_only(value)
    return len(compact) == 9 and compact.isdigit()


def _is_email(value: str) -> bool:
    return bool(_EMAIL.match(value))


def _is_website(value: str) -> bool:
    return "@" not in value and bool(_WEBSITE.match(value))


def _is_phone(value: str) -> bool:
    return bool(_FR_PHONE.match(value))


# 優先順位順 (先勝ち)
DETECTORS: tuple[tuple[FieldKey, Callable[[str], bool]], ...] = (
    (FieldKey.SIRET, _is_siret),
    (FieldKey.SIREN, _is_siren),
    (FieldKey.EMAIL, _is_email),
    (FieldKey.WEBSITE_URL, _is_website),
    (FieldKey.PHONE, _is_phone),
)
_PRIORITY = {field: i for i, (field, _) in enumerate(DETECTORS)}


def classify_value(value: str) -> FieldKey | None:
    """Return the first detector type matching ``value`` (already stripped)."""
    for field, detector in DETECTORS:
        if detector(value):
            return field
    return None


def analyze_column(
    column: str, values: Sequence[str], sample_size: int = DEFAULT_SAMPLE_SIZE
) -> ContentAnalysis:
    """Infer the type of one column from its cell values."""
    sample = [v.strip() for v in values if v and v.strip()][:sample_size]
    if not sample:
        return ContentAnalysis(source_column=column, detected_type=None, match_ratio=0.0, sample_count=0)

    counts = Counter(t for t in (classify_value(v) for v in sample) if t is not None)
    if not counts:
        return ContentAnalysis(source_column=column, detected_type=None, match_ratio=0.0, sample_count=len(sample))

    # plurality; ties resolved by detector priority
    plurality = min(counts, key=lambda t: (-counts[t], _PRIORITY[t]))
    ratio = counts[plurality] / len(sample)
    detected = plurality if ratio >= DETECTION_THRESHOLD and len(sample) >= MIN_SAMPLE_COUNT else None
    return ContentAnalysis(
        source_column=column,
        detected_type=detected,
        match_ratio=ratio,
        sample_count=len(sample),
    )


def analyze_columns(
    rows: Sequence[RawImportRow], sample_size: int = DEFAULT_SAMPLE_SIZE
) -> list[ContentAnalysis]:
    """Analyze every column seen in ``rows`` (first-seen column order)."""
    columns: dict[str, list[str]] = {}
    for row in rows:
        for column, value in row.raw_data.items():
            bucket = columns.setdefault(column, [])
            if len(bucket) < sample_size and value and value.strip():
                bucket.append(value)
    analyses = [analyze_column(column, values, sample_size) for column, values in columns.items()]
    for a in analyses:
        if a.detected_type is not None:
            logger.debug(
                "content detection: column '%s' -> %s (ratio=%.2f, n=%d)",
                a.source_column, a.detected_type.value, a.match_ratio, a.sample_count,
            )
    return analyses


@dataclass(frozen=True)
class DetectionSummary:
    """Counts of content-detected columns, for display next to the mapping table."""
    auto_detected: int
    emails: int
    websites: int
    sirets: int  # SIRET + SIREN
    phones: int


def detection_summary(analyses: Sequence[ContentAnalysis]) -> DetectionSummary:
    detected = Counter(a.detected_type for a in analyses if a.detected_type is not None)
    return DetectionSummary(
        auto_detected=sum(detected.values()),
        emails=detected[FieldKey.EMAIL],
        websites=detected[FieldKey.WEBSITE_URL],
        sirets=detected[FieldKey.SIRET] + detected[FieldKey.SIREN],
        phones=detected[FieldKey.PHONE],
    )
