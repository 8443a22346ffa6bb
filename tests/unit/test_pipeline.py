from __future__ import annotations

import pytest

from bulk_import.mapping.reconciler import MappingConflictError
from bulk_import.models import Confidence, FieldKey, RowStatus
from bulk_import.parsing.reader import EmptyFileError, UnsupportedFormatError
from bulk_import.services.pipeline import build_rows, prepare_import


def test_prepare_import_proposes_mapping_with_analyses():
    content = b"Nom,Contact\nAcme,a@acme.fr\nBeta,b@beta.fr\nGamma,c@gamma.fr\n"
    prepared = prepare_import(content, "list.csv")
    assert [a.source_column for a in prepared.analyses] == ["Nom", "Contact"]
    contact = prepared.mappings[1]
    assert contact.target_field is FieldKey.EMAIL
    assert contact.confidence is Confidence.HIGH
    assert contact.sample_values == ["a@acme.fr", "b@beta.fr", "c@gamma.fr"]


def test_sample_size_limits_content_analysis():
    content = b"Contact\n" + b"\n".join(f"x{i}@acme.fr".encode() for i in range(10)) + b"\n"
    prepared = prepare_import(content, "list.csv", sample_size=4)
    assert prepared.analyses[0].sample_count == 4


def test_build_rows_without_overrides():
    rows = build_rows(prepare_import(b"Raison sociale,SIRET\nAcme,73282932000074\n", "a.csv"))
    assert [r.status for r in rows] == [RowStatus.VALID]
    assert rows[0].profile_data["siren"] == "732829320"


def test_build_rows_conflicting_high_columns():
    prepared = prepare_import(b"Raison sociale,Entreprise\nAcme,Acme SARL\n", "a.csv")
    with pytest.raises(MappingConflictError):
        build_rows(prepared)
    rows = build_rows(prepared, {"Entreprise": "_skip"})
    assert rows[0].profile_data["company_name"] == "Acme"


def test_parser_errors_propagate():
    with pytest.raises(UnsupportedFormatError):
        prepare_import(b"x", "a.pdf")
    with pytest.raises(EmptyFileError):
        prepare_import(b"Raison sociale\n", "a.csv")
