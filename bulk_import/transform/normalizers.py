from __future__ import annotations

import re

from ..mapping.aliases import normalize_header

"""Per-field value normalization for French business data.

Every normalizer takes the raw cell text and returns the normalized value or
None when the value cannot be used. Callers decide whether None is worth a
warning.
"""

__all__ = [
    "normalize_siret",
    "normalize_siren",
    "is_valid_siret",
    "is_valid_siren",
    "siren_from_siret",
    "normalize_naf",
    "sector_from_naf",
    "normalize_postal_code",
    "department_from_postal_code",
    "region_from_department",
    "standardize_region",
    "standardize_legal_form",
    "ASSOCIATION_FORMS",
    "normalize_email",
    "normalize_website",
    "parse_int",
    "parse_employees",
    "parse_turnover",
    "parse_year",
]

_ID_SEPARATORS = re.compile(r"[\s.\-]")
_NAF = re.compile(r"^(\d{2})[.\s]?(\d)[.\s]?(\d)\s?([A-Z])$")
_POSTAL = re.compile(r"^\d{5}$")
_EMAIL = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}$")
_HOST = re.compile(r"^(?:[a-z0-9](?:[a-z0-9\-]*[a-z0-9])?\.)+[a-z]{2,}(?::\d+)?$")
_YEAR = re.compile(r"(?<!\d)(1[89]\d{2}|20\d{2})(?!\d)")
_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")
_RANGE = re.compile(r"^(\d+)\s*(?:-|a|à|to)\s*(\d+)$")
_SPACES = re.compile(r"\s")

# La Poste: tous les établissements partagent ce SIREN, contrôle spécifique
_LA_POSTE_SIREN = "356000000"


def _compact(value: str) -> str:
    return _ID_SEPARATORS.sub("", value.strip())


def _luhn_ok(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def normalize_siret(value: str) -> str | None:
    """Strip spaces/dots/dashes; None unless exactly 14 digits remain."""
    compact = _compact(value)
    return compact if len(compact) == 14 and compact.isdigit() else None


def normalize_siren(value: str) -> str | None:
    compact = _compact(value)
    return compact if len(compact) == 9 and compact.isdigit() else None


def is_valid_siret(siret: str) -> bool:
    if len(siret) != 14 or not siret.isdigit():
        return False
    if siret.startswith(_LA_POSTE_SIREN):
        return sum(int(c) for c in siret) % 5 == 0
    return _luhn_ok(siret)


def is_valid_siren(siren: str) -> bool:
    return len(siren) == 9 and siren.isdigit() and _luhn_ok(siren)


def siren_from_siret(siret: str) -> str:
    return siret[:9]


def normalize_naf(value: str) -> str | None:
    """'6201Z', '62.01z', '62 01 Z' -> '62.01Z'."""
    match = _NAF.match(value.strip().upper())
    if match is None:
        return None
    division, d3, d4, letter = match.groups()
    return f"{division}.{d3}{d4}{letter}"


# (last division of the section, label); divisions are contiguous ranges
_NAF_SECTIONS: tuple[tuple[int, str], ...] = (
    (3, "Agriculture, sylviculture et pêche"),
    (9, "Industries extractives"),
    (33, "Industrie manufacturière"),
    (35, "Énergie"),
    (39, "Eau, assainissement et gestion des déchets"),
    (43, "Construction"),
    (47, "Commerce"),
    (53, "Transports et entreposage"),
    (56, "Hébergement et restauration"),
    (63, "Information et communication"),
    (66, "Activités financières et d'assurance"),
    (68, "Activités immobilières"),
    (75, "Activités spécialisées, scientifiques et techniques"),
    (82, "Activités de services administratifs et de soutien"),
    (84, "Administration publique"),
    (85, "Enseignement"),
    (88, "Santé humaine et action sociale"),
    (93, "Arts, spectacles et activités récréatives"),
    (96, "Autres activités de services"),
    (98, "Activités des ménages"),
    (99, "Activités extra-territoriales"),
)


def sector_from_naf(naf_code: str) -> str | None:
    normalized = normalize_naf(naf_code)
    if normalized is None:
        return None
    division = int(normalized[:2])
    for last, label in _NAF_SECTIONS:
        if division <= last:
            return label
    return None


def normalize_postal_code(value: str) -> str | None:
    compact = _SPACES.sub("", value)
    # Excel が先頭ゼロを落とした 4 桁コード (例: 1000 -> 01000)
    if len(compact) == 4 and compact.isdigit():
        compact = "0" + compact
    return compact if _POSTAL.match(compact) else None


def department_from_postal_code(postal_code: str) -> str | None:
    """'35000' -> '35', '20090' -> '2A', '97400' -> '974'."""
    if not _POSTAL.match(postal_code):
        return None
    if postal_code.startswith("20"):
        return "2A" if int(postal_code) < 20200 else "2B"
    if postal_code.startswith(("97", "98")):
        return postal_code[:3]
    return postal_code[:2]


_REGION_DEPARTMENTS: dict[str, tuple[str, ...]] = {
    "Auvergne-Rhône-Alpes": ("01", "03", "07", "15", "26", "38", "42", "43", "63", "69", "73", "74"),
    "Bourgogne-Franche-Comté": ("21", "25", "39", "58", "70", "71", "89", "90"),
    "Bretagne": ("22", "29", "35", "56"),
    "Centre-Val de Loire": ("18", "28", "36", "37", "41", "45"),
    "Corse": ("2A", "2B"),
    "Grand Est": ("08", "10", "51", "52", "54", "55", "57", "67", "68", "88"),
    "Hauts-de-France": ("02", "59", "60", "62", "80"),
    "Île-de-France": ("75", "77", "78", "91", "92", "93", "94", "95"),
    "Normandie": ("14", "27", "50", "61", "76"),
    "Nouvelle-Aquitaine": ("16", "17", "19", "23", "24", "33", "40", "47", "64", "79", "86", "87"),
    "Occitanie": ("09", "11", "12", "30", "31", "32", "34", "46", "48", "65", "66", "81", "82"),
    "Pays de la Loire": ("44", "49", "53", "72", "85"),
    "Provence-Alpes-Côte d'Azur": ("04", "05", "06", "13", "83", "84"),
    "Guadeloupe": ("971",),
    "Martinique": ("972",),
    "Guyane": ("973",),
    "La Réunion": ("974",),
    "Mayotte": ("976",),
}
_DEPARTMENT_REGION = {d: region for region, depts in _REGION_DEPARTMENTS.items() for d in depts}

# anciennes régions et abréviations usuelles
_REGION_ALIASES: dict[str, str] = {
    "aura": "Auvergne-Rhône-Alpes",
    "auvergne": "Auvergne-Rhône-Alpes",
    "rhone alpes": "Auvergne-Rhône-Alpes",
    "bfc": "Bourgogne-Franche-Comté",
    "bourgogne": "Bourgogne-Franche-Comté",
    "franche comte": "Bourgogne-Franche-Comté",
    "centre": "Centre-Val de Loire",
    "cvl": "Centre-Val de Loire",
    "alsace": "Grand Est",
    "lorraine": "Grand Est",
    "champagne ardenne": "Grand Est",
    "hdf": "Hauts-de-France",
    "nord pas de calais": "Hauts-de-France",
    "picardie": "Hauts-de-France",
    "idf": "Île-de-France",
    "basse normandie": "Normandie",
    "haute normandie": "Normandie",
    "aquitaine": "Nouvelle-Aquitaine",
    "limousin": "Nouvelle-Aquitaine",
    "poitou charentes": "Nouvelle-Aquitaine",
    "languedoc roussillon": "Occitanie",
    "midi pyrenees": "Occitanie",
    "pdl": "Pays de la Loire",
    "paca": "Provence-Alpes-Côte d'Azur",
    "reunion": "La Réunion",
    "corse du sud": "Corse",
    "haute corse": "Corse",
}
_REGION_INDEX: dict[str, str] = {
    **{normalize_header(name): name for name in _REGION_DEPARTMENTS},
    **_REGION_ALIASES,
}


def region_from_department(department: str) -> str | None:
    return _DEPARTMENT_REGION.get(department)


def standardize_region(value: str) -> str | None:
    """Map free-text region names (accents, old regions, abbreviations) to the official name."""
    return _REGION_INDEX.get(normalize_header(value))


_LEGAL_FORMS: dict[str, str] = {
    "sarl": "SARL",
    "societe a responsabilite limitee": "SARL",
    "eurl": "EURL",
    "sas": "SAS",
    "societe par actions simplifiee": "SAS",
    "sasu": "SASU",
    "societe par actions simplifiee unipersonnelle": "SASU",
    "sa": "SA",
    "societe anonyme": "SA",
    "sci": "SCI",
    "societe civile immobiliere": "SCI",
    "snc": "SNC",
    "scop": "SCOP",
    "scic": "SCIC",
    "gie": "GIE",
    "ei": "EI",
    "entreprise individuelle": "EI",
    "micro entreprise": "EI",
    "micro entrepreneur": "EI",
    "auto entrepreneur": "EI",
    "auto entreprise": "EI",
    "eirl": "EIRL",
    "asso": "ASSO",
    "association": "ASSO",
    "association loi 1901": "ASSO",
    "association declaree": "ASSO",
    "cooperative": "COOP",
    "coop": "COOP",
    "fondation": "FONDATION",
    # catégories juridiques INSEE renvoyées par le registre
    "1000": "EI",
    "5499": "SARL",
    "5498": "EURL",
    "5710": "SAS",
    "5720": "SASU",
    "5599": "SA",
    "6540": "SCI",
    "9220": "ASSO",
    "9300": "FONDATION",
}

ASSOCIATION_FORMS = frozenset({"ASSO", "COOP", "FONDATION"})


def standardize_legal_form(value: str) -> str | None:
    normalized = normalize_header(value)
    if not normalized:
        return None
    if normalized in _LEGAL_FORMS:
        return _LEGAL_FORMS[normalized]
    # "SARL unipersonnelle", "SAS au capital de ..." -> premier mot
    return _LEGAL_FORMS.get(normalized.split()[0])


def normalize_email(value: str) -> str | None:
    candidate = value.strip().lower()
    if candidate.startswith("mailto:"):
        candidate = candidate[len("mailto:"):]
    return candidate if _EMAIL.match(candidate) else None


def normalize_website(value: str) -> str | None:
    """Return an absolute http(s) URL; a missing scheme defaults to https."""
    candidate = value.strip()
    if not candidate or "@" in candidate or " " in candidate:
        return None
    lower = candidate.lower()
    if not lower.startswith(("http://", "https://")):
        candidate = "https://" + candidate
    scheme, rest = candidate.split("://", 1)
    host, sep, path = rest.partition("/")
    host = host.lower()
    if not _HOST.match(host):
        return None
    return f"{scheme.lower()}://{host}{sep}{path}"


def _clean_number(value: str) -> str:
    return _SPACES.sub("", value).replace(",", ".")


def parse_int(value: str) -> int | None:
    """'1 200' -> 1200, '12.0' -> 12; None for anything non-numeric."""
    cleaned = _clean_number(value)
    if not _NUMBER.match(cleaned):
        return None
    number = float(cleaned)
    return int(number) if number.is_integer() else round(number)


def parse_employees(value: str) -> int | None:
    """Head count; a range such as '10-19' or '10 à 19' yields its lower bound."""
    match = _RANGE.match(value.strip().lower())
    if match is not None:
        return int(match.group(1))
    return parse_int(value)


def parse_turnover(value: str) -> int | None:
    """'1 200 000 €' -> 1200000, '1,5 M€' -> 1500000, '250k' -> 250000."""
    cleaned = _clean_number(value).lower()
    for suffix in ("euros", "euro", "eur", "€"):
        cleaned = cleaned.removesuffix(suffix)
    multiplier = 1
    if cleaned.endswith("k"):
        multiplier, cleaned = 1_000, cleaned[:-1]
    elif cleaned.endswith("m"):
        multiplier, cleaned = 1_000_000, cleaned[:-1]
    if not _NUMBER.match(cleaned):
        return None
    return round(float(cleaned) * multiplier)


def parse_year(value: str) -> int | None:
    """First plausible 4-digit year inside the value ('15/03/2012' -> 2012)."""
    match = _YEAR.search(value)
    return int(match.group(1)) if match else None
