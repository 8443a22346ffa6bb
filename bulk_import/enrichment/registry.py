from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any, Protocol

from ..models.fields import FieldKey
from ..transform import normalizers as norm

"""Company-registry enrichment: collaborator interface and merge rules.

The registry lookup itself lives outside this package; an importer receives
any object with a ``lookup(identifier)`` method. Enrichment only fills
profile fields that are still blank: values from the file always win.
"""

__all__ = [
    "EnrichmentResult",
    "RegistryClient",
    "TransientRegistryError",
    "EnrichmentError",
    "lookup_identifier",
    "merge_enrichment",
]

logger = logging.getLogger(__name__)


class TransientRegistryError(Exception):
    """Registry temporarily unavailable (timeout, 5xx, rate limit)."""


class EnrichmentError(Exception):
    """Wraps any failure raised while enriching one row."""

    def __init__(self, identifier: str, cause: BaseException) -> None:
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"enrichment failed for {identifier}: {cause}")


@dataclass(frozen=True)
class EnrichmentResult:
    """Official data for one company, keyed like profile fields."""
    siren: str
    siret: str | None = None
    company_name: str | None = None
    legal_form: str | None = None
    naf_code: str | None = None
    naf_label: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    region: str | None = None
    employees: int | None = None
    year_created: int | None = None


class RegistryClient(Protocol):
    def lookup(self, identifier: str) -> EnrichmentResult | None:
        """Return registry data, None when unknown; may raise TransientRegistryError."""
        ...


def lookup_identifier(profile: Mapping[str, Any]) -> str | None:
    """SIRET when present, else SIREN, else None (row cannot be enriched)."""
    return profile.get(FieldKey.SIRET.value) or profile.get(FieldKey.SIREN.value) or None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _normalized(result: EnrichmentResult) -> dict[str, Any]:
    data = {f.name: getattr(result, f.name) for f in fields(result)}
    data = {k: v for k, v in data.items() if not _blank(v)}
    if "naf_code" in data:
        data["naf_code"] = norm.normalize_naf(data["naf_code"]) or data["naf_code"]
    if "legal_form" in data:
        data["legal_form"] = norm.standardize_legal_form(data["legal_form"]) or data["legal_form"]
    if "postal_code" in data:
        postal_code = norm.normalize_postal_code(data["postal_code"])
        if postal_code:
            data["postal_code"] = postal_code
            department = norm.department_from_postal_code(postal_code)
            if department:
                data["department"] = department
                data.setdefault("region", norm.region_from_department(department))
    if "region" in data and data["region"]:
        data["region"] = norm.standardize_region(data["region"]) or data["region"]
    if "naf_code" in data:
        sector = norm.sector_from_naf(data["naf_code"])
        if sector:
            data["sector"] = sector
    if data.get("legal_form") in norm.ASSOCIATION_FORMS:
        data["is_association"] = True
    return {k: v for k, v in data.items() if not _blank(v)}


def merge_enrichment(
    profile: Mapping[str, Any], result: EnrichmentResult
) -> tuple[dict[str, Any], list[str]]:
    """Fill blank profile fields from ``result``.

    Returns:
        (merged profile copy, names of the fields that were filled)
    """
    merged = dict(profile)
    filled: list[str] = []
    for key, value in _normalized(result).items():
        if _blank(merged.get(key)):
            merged[key] = value
            filled.append(key)
    logger.debug("enrichment filled %d field(s): %s", len(filled), filled)
    return merged, filled
