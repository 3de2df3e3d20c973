"""Unit tests for short-code generation utilities."""

from shortcodes.config import get_settings
from shortcodes.generator import ALPHABET, DIGITS, MAX_DIGITS, generate_short_code

settings = get_settings()


def test_generate_short_code_default_length() -> None:
    code = generate_short_code()
    assert len(code) == settings.SHORT_CODE_LENGTH == 8


def test_generate_short_code_escalated_length() -> None:
    code = generate_short_code(length=9)
    assert len(code) == 9


def test_generate_short_code_only_readable_characters() -> None:
    for _ in range(200):
        code = generate_short_code()
        assert all(c in ALPHABET for c in code)
        assert not set(code) & set("0O1lIio")


def test_generate_short_code_digit_balance() -> None:
    for _ in range(200):
        code = generate_short_code()
        digits = sum(1 for c in code if c in DIGITS)
        assert 1 <= digits <= MAX_DIGITS


def test_generate_short_code_uniqueness() -> None:
    codes = {generate_short_code() for _ in range(1000)}
    # 54 symbols over 8 positions leaves collisions vanishingly unlikely at this size
    assert len(codes) == 1000
