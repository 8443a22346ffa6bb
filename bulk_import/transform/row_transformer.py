from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ..models.fields import NUMERIC_FIELDS, RECOMMENDED_FIELDS, REQUIRED_FIELDS, FieldKey, parse_target
from ..models.processed_row import ProcessedImportRow, RowStatus
from ..models.raw_row import RawImportRow
from . import normalizers as norm

"""Row transformation: raw cells + finalized mapping -> normalized profile record.

Blank cells never overwrite anything. When two columns target the same field
the column processed last wins (mapping order); ``finalize_mapping`` normally
guarantees a single column per field before rows reach this module.
"""

__all__ = [
    "MissingRequiredFieldError",
    "transform",
    "transform_all",
]

logger = logging.getLogger(__name__)


class MissingRequiredFieldError(Exception):
    """A required profile field is absent or blank after coercion."""

    def __init__(self, field: FieldKey) -> None:
        self.field = field
        super().__init__(f"{field.value} required")


def _text(raw: str) -> str:
    return " ".join(raw.split())


_COERCERS: dict[FieldKey, Callable[[str], Any]] = {
    FieldKey.COMPANY_NAME: _text,
    FieldKey.SIRET: norm.normalize_siret,
    FieldKey.SIREN: norm.normalize_siren,
    FieldKey.NAF_CODE: norm.normalize_naf,
    FieldKey.WEBSITE_URL: norm.normalize_website,
    FieldKey.EMAIL: norm.normalize_email,
    FieldKey.PHONE: _text,
    FieldKey.ADDRESS: _text,
    FieldKey.POSTAL_CODE: norm.normalize_postal_code,
    FieldKey.CITY: _text,
    FieldKey.SECTOR: _text,
    FieldKey.EMPLOYEES: norm.parse_employees,
    FieldKey.ANNUAL_TURNOVER: norm.parse_turnover,
    FieldKey.YEAR_CREATED: norm.parse_year,
    FieldKey.DESCRIPTION: str.strip,
    FieldKey.RNA_NUMBER: lambda raw: _text(raw).upper(),
}


def _coerce(field: FieldKey, raw: str, warnings: list[str]) -> Any:
    if field is FieldKey.REGION:
        region = norm.standardize_region(raw)
        if region is None:
            warnings.append(f"region: '{raw}' is not a known French region")
            return _text(raw)
        return region
    if field is FieldKey.LEGAL_FORM:
        return norm.standardize_legal_form(raw) or _text(raw)
    value = _COERCERS[field](raw)
    if value is None or value == "":
        expected = " as a number" if field in NUMERIC_FIELDS else ""
        warnings.append(f"{field.value}: could not interpret '{raw}'{expected}")
        return None
    return value


def _derive(profile: dict[str, Any], warnings: list[str]) -> None:
    siret = profile.get(FieldKey.SIRET.value)
    if siret:
        if not norm.is_valid_siret(siret):
            warnings.append(f"siret: '{siret}' fails the checksum")
        profile.setdefault(FieldKey.SIREN.value, norm.siren_from_siret(siret))
    siren = profile.get(FieldKey.SIREN.value)
    if siren and not siret and not norm.is_valid_siren(siren):
        warnings.append(f"siren: '{siren}' fails the checksum")

    postal_code = profile.get(FieldKey.POSTAL_CODE.value)
    if postal_code:
        department = norm.department_from_postal_code(postal_code)
        if department:
            profile["department"] = department
            region = norm.region_from_department(department)
            if region:
                profile.setdefault(FieldKey.REGION.value, region)

    naf_code = profile.get(FieldKey.NAF_CODE.value)
    if naf_code and FieldKey.SECTOR.value not in profile:
        sector = norm.sector_from_naf(naf_code)
        if sector:
            profile[FieldKey.SECTOR.value] = sector

    if profile.get(FieldKey.LEGAL_FORM.value) in norm.ASSOCIATION_FORMS:
        profile["is_association"] = True


def _check_required(profile: Mapping[str, Any]) -> None:
    for field in sorted(REQUIRED_FIELDS, key=lambda f: f.value):
        value = profile.get(field.value)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingRequiredFieldError(field)


def transform(row: RawImportRow, mapping: Mapping[str, FieldKey | str]) -> ProcessedImportRow:
    """Build a validated ProcessedImportRow from one raw row.

    ``mapping`` values may be FieldKey members or their string values; an
    unknown target raises ValueError.

    Status:
        INVALID  required field missing (error recorded)
        PENDING  a recommended field (SIRET) is missing (warning recorded)
        VALID    otherwise
    """
    profile: dict[str, Any] = {}
    errors: list[str] = []
    warnings: list[str] = []

    for column, target_value in mapping.items():
        target = parse_target(target_value)
        if not isinstance(target, FieldKey):
            continue
        raw = row.raw_data.get(column, "").strip()
        if not raw:
            continue
        value = _coerce(target, raw, warnings)
        if value is not None:
            profile[target.value] = value  # 後勝ち

    _derive(profile, warnings)

    try:
        _check_required(profile)
    except MissingRequiredFieldError as e:
        errors.append(str(e))

    missing_recommended = [f for f in RECOMMENDED_FIELDS if not profile.get(f.value)]
    for field in missing_recommended:
        warnings.append(f"{field.value} missing: profile will be minimal and cannot be enriched")

    if errors:
        status = RowStatus.INVALID
    elif missing_recommended:
        status = RowStatus.PENDING
    else:
        status = RowStatus.VALID

    return ProcessedImportRow(
        row_number=row.row_number,
        profile_data=profile,
        status=status,
        validation_errors=errors,
        validation_warnings=warnings,
    )


def transform_all(
    rows: Sequence[RawImportRow], mapping: Mapping[str, FieldKey | str]
) -> list[ProcessedImportRow]:
    processed = [transform(row, mapping) for row in rows]
    invalid = sum(1 for r in processed if r.status is RowStatus.INVALID)
    logger.info("transformed %d rows (%d invalid)", len(processed), invalid)
    return processed
