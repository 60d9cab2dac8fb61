"""
shared/utils/references.py
Human-readable reference numbers: <PREFIX>-<base36 timestamp>-<random>.
"""

import random
import string
import time

_ALPHABET = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_reference(prefix: str, suffix_length: int = 5) -> str:
    """e.g. BK-LZ3K9QX2-7F4QA"""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_ALPHABET, k=suffix_length))
    return f"{prefix}-{stamp}-{suffix}"


def booking_number() -> str:
    return generate_reference("BK")


def trip_number() -> str:
    return generate_reference("TR")


def payment_number() -> str:
    return generate_reference("PAY")


def refund_number() -> str:
    return generate_reference("RF")


def ticket_number() -> str:
    return generate_reference("TKT")


def driver_code() -> str:
    return generate_reference("DRV", suffix_length=4)
