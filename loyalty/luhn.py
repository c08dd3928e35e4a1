# loyalty/luhn.py
"""Luhn mod-10 check used for order numbers and withdrawal receipt ids."""


def is_valid(number: str) -> bool:
    if not number:
        return False

    total = 0
    for distance, ch in enumerate(reversed(number)):
        # str.isdigit() also accepts things like "²", so compare against ASCII
        if ch < "0" or ch > "9":
            return False
        digit = ord(ch) - ord("0")
        if distance % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0
