"""
Seat id helpers shared by the models, schemas and services.
"""

import re
from typing import Iterable, List

_NATURAL_CHUNK = re.compile(r"(\d+)")


def seat_sort_key(seat_id: str):
    """Sort "2" before "10" and "A2" before "A10"."""
    return [int(part) if part.isdecimal() else part for part in _NATURAL_CHUNK.split(seat_id)]


def sort_seats(seats: Iterable[str]) -> List[str]:
    return sorted(set(seats), key=seat_sort_key)


def is_seat_number(seat_id: str) -> bool:
    """True for canonical numbered seats such as "7"; named seats like "VIP" are not."""
    return seat_id.isascii() and seat_id.isdigit()
