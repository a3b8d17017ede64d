import pytest

from flask_app.dedupe.normalize import normalize, normalize_email, normalize_identifier, normalize_phone


@pytest.mark.parametrize(
    "raw",
    [
        "Acme Ltd",
        "  ACME   Limited. ",
        "Foo Inc Ltd",
        "Ltd Ltd",
        "O'Brien-Smith",
        "בית הספר בע\"מ",
        "North Star Corp.",
        "",
        "llc",
    ],
)
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_normalize_strips_suffixes_and_case():
    assert normalize("Acme Ltd") == "acme"
    assert normalize("ACME LIMITED") == "acme"
    assert normalize("acme") == "acme"
    assert normalize("Globex Corporation") == "globex"


def test_normalize_strips_stacked_suffixes():
    assert normalize("Initech Inc. Ltd") == "initech"


def test_normalize_keeps_suffix_inside_words():
    assert normalize("Lincoln Partners") == "lincoln partners"
    assert normalize("Incubator Labs") == "incubator labs"


def test_normalize_dashes_and_quotes():
    assert normalize("Tel-Aviv  \"Tech\"  Hub") == "tel aviv tech hub"
    assert normalize("O'Connor") == "oconnor"


def test_normalize_hebrew_suffix():
    assert normalize("אלפא בעמ") == "אלפא"
    assert normalize('אלפא בע"מ') == "אלפא"


def test_normalize_none_is_empty():
    assert normalize(None) == ""


def test_normalize_phone_international_prefix():
    assert normalize_phone("+972-50-1234567") == "0501234567"
    assert normalize_phone("00972 50 123 4567") == "0501234567"
    assert normalize_phone("050-123-4567") == "0501234567"


def test_normalize_phone_without_marker_keeps_country_digits():
    assert normalize_phone("972-555-0100") == "9725550100"


def test_normalize_phone_empty_values():
    assert normalize_phone(None) == ""
    assert normalize_phone("n/a") == ""


def test_normalize_email_and_identifier():
    assert normalize_email("  Jane@Example.COM ") == "jane@example.com"
    assert normalize_identifier("51-234 567/8") == "512345678"
    assert normalize_identifier("ab.12.cd") == "AB12CD"
