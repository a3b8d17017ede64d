import pytest

from flask_app.dedupe.similarity import (
    email_key,
    email_match,
    identifier_key,
    identifier_match,
    normalized_similarity,
    phone_key,
    phone_match,
    similarity,
)

PAIRS = [
    ("Acme Ltd", "acme"),
    ("Acme", "Apex"),
    ("", "Something"),
    ("Jonathan Levi", "Yonatan Levy"),
    ("a", "b"),
    ("Northwind Traders", "Northwind Trading Inc"),
]


@pytest.mark.parametrize("left,right", PAIRS)
def test_similarity_is_bounded(left, right):
    assert 0.0 <= similarity(left, right) <= 1.0


@pytest.mark.parametrize("left,right", PAIRS)
def test_similarity_is_symmetric(left, right):
    assert similarity(left, right) == similarity(right, left)


def test_similarity_with_itself_is_one():
    assert similarity("Contoso", "Contoso") == 1.0


def test_suffix_variants_are_identical():
    assert similarity("Acme Ltd", "acme") == 1.0


def test_normalized_similarity_uses_edit_distance():
    assert normalized_similarity("dana levin", "dina levyn") == pytest.approx(0.8)
    assert normalized_similarity("", "") == 1.0
    assert normalized_similarity("abc", "") == 0.0


def test_phone_match_across_formats():
    assert phone_match("+972-50-1234567", "0501234567")


def test_phone_match_ignores_short_numbers():
    assert not phone_match("1234", "1234")
    assert not phone_match("", "")
    assert not phone_match(None, None)


def test_email_match_is_case_insensitive():
    assert email_match("Info@Acme.com ", "info@acme.com")
    assert not email_match("", "")
    assert not email_match("a@b.com", "c@b.com")


def test_identifier_match_ignores_separators():
    assert identifier_match("51-234567-8", "512345678")
    assert not identifier_match("123", "123")
    assert identifier_match("1234", "1234", min_length=4)


def test_keys_blank_out_values_too_short_to_match():
    assert phone_key("+972-50-1234567") == phone_key("050-1234567") == "0501234567"
    assert phone_key("1234") == ""
    assert identifier_key("51-234567-8") == "512345678"
    assert identifier_key("12-3") == ""
    assert email_key(" Info@Acme.com") == "info@acme.com"
    assert email_key(None) == ""
