from __future__ import annotations

import logging
import re
import unicodedata

from ..models.fields import FieldKey

"""Header alias dictionary.

Aliases are stored already normalized (see ``normalize_header``). Every alias
belongs to exactly one field; if the same alias is ever registered twice the
first registration is kept and the duplicate is reported at DEBUG level.
"""

__all__ = [
    "FIELD_ALIASES",
    "ALIAS_INDEX",
    "normalize_header",
    "build_alias_index",
]

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

FIELD_ALIASES: dict[FieldKey, tuple[str, ...]] = {
    FieldKey.COMPANY_NAME: (
        "raison sociale", "nom entreprise", "nom de l entreprise", "nom de la societe",
        "nom societe", "denomination", "denomination sociale", "entreprise", "societe",
        "company", "company name", "business name", "organisation", "organization",
        "name", "nom", "structure",
    ),
    FieldKey.SIRET: (
        "siret", "n siret", "no siret", "numero siret", "siret number", "code siret",
    ),
    FieldKey.SIREN: (
        "siren", "n siren", "no siren", "numero siren", "siren number", "code siren",
    ),
    FieldKey.NAF_CODE: (
        "naf", "ape", "code naf", "code ape", "naf ape", "code naf ape", "naf code",
        "activity code",
    ),
    FieldKey.LEGAL_FORM: (
        "forme juridique", "legal form", "statut juridique", "statut", "type de societe",
        "type societe", "forme",
    ),
    FieldKey.WEBSITE_URL: (
        "site web", "site internet", "site", "website", "web", "url", "www", "site url",
    ),
    FieldKey.EMAIL: (
        "email", "e mail", "mail", "courriel", "adresse email", "adresse mail",
        "email address",
    ),
    FieldKey.PHONE: (
        "tel", "telephone", "phone", "mobile", "portable", "numero de telephone",
        "phone number", "tel fixe",
    ),
    FieldKey.ADDRESS: (
        "adresse", "address", "rue", "voie", "adresse postale", "street", "siege",
    ),
    FieldKey.POSTAL_CODE: (
        "code postal", "cp", "postal code", "zip", "zip code", "postcode",
    ),
    FieldKey.CITY: (
        "ville", "city", "commune", "localite", "town",
    ),
    FieldKey.REGION: (
        "region", "region administrative",
    ),
    FieldKey.SECTOR: (
        "secteur", "secteur d activite", "sector", "activite", "activity", "domaine",
        "industry", "branche",
    ),
    FieldKey.EMPLOYEES: (
        "effectif", "effectifs", "employees", "salaries", "nb salaries",
        "nombre de salaries", "nombre d employes", "headcount",
    ),
    FieldKey.ANNUAL_TURNOVER: (
        "ca", "ca annuel", "chiffre d affaires", "chiffre d affaires annuel", "turnover",
        "annual turnover", "revenue",
    ),
    FieldKey.YEAR_CREATED: (
        "annee de creation", "date de creation", "date creation", "creation",
        "year created", "year founded", "founded", "annee",
    ),
    FieldKey.DESCRIPTION: (
        "description", "descriptif", "presentation", "about", "objet social",
    ),
    FieldKey.RNA_NUMBER: (
        "rna", "n rna", "numero rna", "numero association", "numero d association",
    ),
}


def normalize_header(header: str) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace.

    >>> normalize_header("  N° SIRET ")
    'n siret'
    >>> normalize_header("Chiffre d'affaires (€)")
    'chiffre d affaires'
    """
    decomposed = unicodedata.normalize("NFKD", header)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", stripped.lower()).strip()


def build_alias_index(aliases: dict[FieldKey, tuple[str, ...]]) -> dict[str, FieldKey]:
    """Flatten the alias table to alias -> field, first registration winning."""
    index: dict[str, FieldKey] = {}
    for field, names in aliases.items():
        for name in names:
            key = normalize_header(name)
            owner = index.setdefault(key, field)
            if owner is not field:
                logger.debug("alias '%s' already registered for %s; ignored for %s", key, owner.value, field.value)
    return index


ALIAS_INDEX: dict[str, FieldKey] = build_alias_index(FIELD_ALIASES)
