"""Random candidate shortcodes over a readable alphabet.

Look-alike characters (0/O/o, 1/I/i/l/L) are left out so codes survive being
read aloud or retyped from a printed QR label. A candidate always carries one to
three digits; draws outside that range are thrown away and redrawn.

Candidates are not unique. Uniqueness is the allocator's job.
"""

from nanoid import generate

from shortcodes.config import get_settings

__all__ = ["ALPHABET", "DIGITS", "MAX_DIGITS", "generate_short_code"]

settings = get_settings()

DIGITS = "23456789"
ALPHABET = "abcdefghjkmnpqrstuvwxyzABCDEFGHJKMNPQRSTUVWXYZ" + DIGITS
MAX_DIGITS = 3


def _has_balanced_digits(code: str) -> bool:
    digits = sum(1 for c in code if c in DIGITS)
    return 1 <= digits <= min(MAX_DIGITS, len(code))


def generate_short_code(length: int = settings.SHORT_CODE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    while True:
        code = generate(ALPHABET, length)
        if _has_balanced_digits(code):
            return code
