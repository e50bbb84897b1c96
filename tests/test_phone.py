import pytest

from phone import format_phone_number, normalize_phone_number, validate_phone_number


@pytest.mark.parametrize("raw", ["847654321", "258 84 765 4321", "+258 87 123 4567", "85-123-4567", "00258861234567"])
def test_valid_numbers(raw):
    assert validate_phone_number(raw) is True


@pytest.mark.parametrize("raw", ["800000000", "821234567", "84123456", "", "abc", "+258 83 123 4567"])
def test_invalid_numbers(raw):
    assert validate_phone_number(raw) is False


def test_format_uses_last_nine_digits():
    assert format_phone_number("847654321") == "+258 84 765 4321"
    assert format_phone_number("258847654321") == "+258 84 765 4321"


def test_format_leaves_short_input_alone():
    assert format_phone_number("84 12") == "84 12"
    assert format_phone_number("") == ""


@pytest.mark.parametrize("raw", ["847654321", "(+258) 85 000 1111", "x8 6 1 2 3 4 5 6 7"])
def test_format_is_idempotent(raw):
    once = format_phone_number(raw)
    assert format_phone_number(once) == once


def test_normalize():
    assert normalize_phone_number("+258 84 123 4567") == "841234567"
    assert normalize_phone_number("12345") == ""
