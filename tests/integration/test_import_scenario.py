from __future__ import annotations

from unittest.mock import MagicMock

from bulk_import.models import Confidence, DuplicateStrategy, FieldKey, ImportOptions, RowStatus
from bulk_import.services.importer import BatchImporter
from bulk_import.services.pipeline import build_rows, prepare_import
from bulk_import.store.profile_store import InMemoryProfileStore

"""End-to-end flow: CSV bytes -> mapping -> transformed rows -> import."""

CSV = (
    b"Raison sociale,SIRET,Region\n"
    b"Acme SARL,12345678901234,Bretagne\n"
    b",98765432109876,Corse\n"
)


def test_raison_sociale_scenario():
    prepared = prepare_import(CSV, "companies.csv")
    assert not prepared.needs_sheet_selection
    assert [(m.source_column, m.target_field, m.confidence) for m in prepared.mappings] == [
        ("Raison sociale", FieldKey.COMPANY_NAME, Confidence.HIGH),
        ("SIRET", FieldKey.SIRET, Confidence.HIGH),
        ("Region", FieldKey.REGION, Confidence.HIGH),
    ]

    rows = build_rows(prepared)
    row1, row2 = rows
    assert row1.status is RowStatus.VALID
    assert row1.validation_errors == []
    assert row1.profile_data["company_name"] == "Acme SARL"
    assert row1.profile_data["region"] == "Bretagne"
    assert any("fails the checksum" in w for w in row1.validation_warnings)
    assert row2.status is RowStatus.INVALID
    assert row2.validation_errors == ["company_name required"]

    store = MagicMock(wraps=InMemoryProfileStore())
    options = ImportOptions(user_id="u1", duplicate_strategy=DuplicateStrategy.SKIP, delay_between_rows=0)
    result = BatchImporter(store).run(rows, options)

    assert [r.row_number for r in result.successful_rows] == [1]
    assert [r.row_number for r in result.failed_rows] == [2]
    assert result.skipped_rows == []
    # the invalid row never reaches the store
    assert store.exists.call_count == 1
    assert store.create.call_count == 1
    assert store.create.call_args.args[1]["siret"] == "12345678901234"


def test_semicolon_latin1_csv_with_derived_fields():
    content = (
        "Dénomination;N° SIRET;Code postal;Forme juridique;Effectif\n"
        "Les Amis du Quartier;73282932000074;35000;association loi 1901;12\n"
    ).encode("latin-1")
    prepared = prepare_import(content, "export.csv")
    rows = build_rows(prepared)
    (row,) = rows
    assert row.status is RowStatus.VALID
    profile = row.profile_data
    assert profile["postal_code"] == "35000"
    assert profile["department"] == "35"
    assert profile["region"] == "Bretagne"
    assert profile["siren"] == "732829320"
    assert profile["employees"] == 12
    assert profile.get("is_association") is True
