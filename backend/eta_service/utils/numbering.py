"""Reference number generation for submitted applications.

Format (kept stable, customers quote it to support):

    ETA-<base36 millisecond timestamp>-<4 char base36 random suffix>

e.g. ``ETA-MGXK3Q1Z-7F2A``, all uppercase.
"""

import secrets
import time

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
SUFFIX_LENGTH = 4


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_reference_number(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"ETA-{to_base36(now_ms)}-{suffix}"
