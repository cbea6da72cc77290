import time
import uuid
from datetime import datetime, UTC
from typing import Callable, Optional

from .domain import ValidationError

ALPHABET = "0123456789abcdefghijklmnopqrstuv"
KEY_WIDTH = 9


def generate(seed: int) -> str:
    """Encode a non-negative integer seed as a fixed-width base-32 key.

    Same seed, same key. Keys of equal width sort in seed order and only use
    ``0-9a-v``, so they never need URL escaping.
    """
    if isinstance(seed, bool) or not isinstance(seed, int) or seed < 0:
        raise ValidationError(f"Key seed must be a non-negative integer, got {seed!r}")
    digits = []
    while seed:
        seed, rem = divmod(seed, 32)
        digits.append(ALPHABET[rem])
    return "".join(reversed(digits)).rjust(KEY_WIDTH, "0")


def decode(key: str) -> int:
    """Return the seed a key was generated from."""
    if not key:
        raise ValidationError("Key must not be empty")
    seed = 0
    for char in key:
        index = ALPHABET.find(char)
        if index < 0:
            raise ValidationError(f"Invalid key character {char!r} in {key!r}")
        seed = seed * 32 + index
    return seed


def new_key(clock: Optional[Callable[[], float]] = None) -> str:
    """Generate a key from the current time in milliseconds."""
    now = (clock or time.time)()
    return generate(int(now * 1000))


def make_id(prefix: str) -> str:
    """Generate a unique ID with a given prefix."""
    return f"{prefix}_{uuid.uuid4()}"


def time_now() -> str:
    """Return the current time in ISO format (UTC, no microseconds)."""
    return datetime.now(UTC).replace(microsecond=0).isoformat()
