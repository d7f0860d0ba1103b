"""Card denominations accepted on a vote."""

from typing import Any, Tuple, Union

CardValue = Union[int, str]

NUMERIC_CARDS: Tuple[int, ...] = (1, 2, 3, 5, 8, 13, 20, 40, 100)
UNKNOWN = '?'
BREAK = 'coffee'
SENTINEL_CARDS: Tuple[str, ...] = (UNKNOWN, BREAK)


def is_numeric_card(value: Any) -> bool:
    # bool is an int subclass; True must not pass as 1
    return type(value) is int and value in NUMERIC_CARDS


def is_valid_card(value: Any) -> bool:
    """True for a ladder value or one of the two sentinels. Nothing is coerced."""
    if is_numeric_card(value):
        return True
    return isinstance(value, str) and value in SENTINEL_CARDS
