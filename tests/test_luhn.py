import pytest

from loyalty.luhn import is_valid


@pytest.mark.parametrize("number", [
    "79927398713",
    "12345678903",
    "4561261212345467",
    "0000000000000000",
    "0",
    "18",
])
def test_valid_numbers(number):
    assert is_valid(number) is True


@pytest.mark.parametrize("number", [
    "79927398710",
    "12345678901",
    "4561261212345464",
    "1",
])
def test_bad_checksum(number):
    assert is_valid(number) is False


@pytest.mark.parametrize("number", [
    "",
    "abc123",
    "7992 7398 713",
    "-79927398713",
    "79927398713\n",
    "١٢٣",  # non-ASCII digits
    "²",
])
def test_non_digit_input_is_rejected(number):
    assert is_valid(number) is False


def test_is_deterministic():
    assert all(is_valid("79927398713") for _ in range(5))
