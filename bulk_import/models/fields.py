from __future__ import annotations

from enum import Enum

"""Canonical business-profile fields and mapping confidence levels.

FieldKey values match the column names of the business profile store, so a
finalized mapping can be written to the store without any further renaming.
"""

__all__ = [
    "FieldKey",
    "Confidence",
    "SKIP",
    "REQUIRED_FIELDS",
    "RECOMMENDED_FIELDS",
    "NUMERIC_FIELDS",
    "FIELD_LABELS",
    "parse_target",
]


class FieldKey(str, Enum):
    """Canonical business-profile attribute names."""
    COMPANY_NAME = "company_name"
    SIRET = "siret"
    SIREN = "siren"
    NAF_CODE = "naf_code"
    LEGAL_FORM = "legal_form"
    WEBSITE_URL = "website_url"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    POSTAL_CODE = "postal_code"
    CITY = "city"
    REGION = "region"
    SECTOR = "sector"
    EMPLOYEES = "employees"
    ANNUAL_TURNOVER = "annual_turnover"
    YEAR_CREATED = "year_created"
    DESCRIPTION = "description"
    RNA_NUMBER = "rna_number"


# 対象外カラム (マッピングしない)
SKIP = "_skip"


class Confidence(Enum):
    """Qualitative certainty of a column -> field guess.

    Members compare by rank so reconciliation can ask "strictly greater".
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank < other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank <= other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank >= other.rank


_CONFIDENCE_RANK = {Confidence.LOW: 1, Confidence.MEDIUM: 2, Confidence.HIGH: 3}

REQUIRED_FIELDS: frozenset[FieldKey] = frozenset({FieldKey.COMPANY_NAME})

# Missing recommended fields leave a row importable but "pending"
RECOMMENDED_FIELDS: tuple[FieldKey, ...] = (FieldKey.SIRET,)

NUMERIC_FIELDS: frozenset[FieldKey] = frozenset(
    {FieldKey.EMPLOYEES, FieldKey.ANNUAL_TURNOVER, FieldKey.YEAR_CREATED}
)

FIELD_LABELS: dict[FieldKey, str] = {
    FieldKey.COMPANY_NAME: "Nom de l'entreprise",
    FieldKey.SIRET: "SIRET",
    FieldKey.SIREN: "SIREN",
    FieldKey.NAF_CODE: "Code NAF/APE",
    FieldKey.LEGAL_FORM: "Forme juridique",
    FieldKey.WEBSITE_URL: "Site web",
    FieldKey.EMAIL: "Email",
    FieldKey.PHONE: "Téléphone",
    FieldKey.ADDRESS: "Adresse",
    FieldKey.POSTAL_CODE: "Code postal",
    FieldKey.CITY: "Ville",
    FieldKey.REGION: "Région",
    FieldKey.SECTOR: "Secteur d'activité",
    FieldKey.EMPLOYEES: "Effectif",
    FieldKey.ANNUAL_TURNOVER: "Chiffre d'affaires",
    FieldKey.YEAR_CREATED: "Année de création",
    FieldKey.DESCRIPTION: "Description",
    FieldKey.RNA_NUMBER: "Numéro RNA (associations)",
}


def parse_target(value: str | FieldKey) -> FieldKey | str:
    """Return the FieldKey for ``value`` or ``SKIP``.

    Raises:
        ValueError: if ``value`` is neither a known field nor ``SKIP``
    """
    if isinstance(value, FieldKey):
        return value
    if value == SKIP:
        return SKIP
    try:
        return FieldKey(value)
    except ValueError as e:
        raise ValueError(f"unknown target field: {value!r}") from e
