from __future__ import annotations

import random
import re
from datetime import datetime

from .constants import (
    PLACEHOLDER_NAME_MAX,
    PLACEHOLDER_NAME_MIN,
    PLACEHOLDER_NAME_PREFIX,
    TIME_FORMAT,
)

_WHITESPACE_RUN = re.compile(r"\s+")

# Every code point str.splitlines() treats as a line boundary.
_LINE_BREAKS = re.compile("[\n\r\x0b\x0c\x1c\x1d\x1e\x85\u2028\u2029]")


def sanitize_line(text: str) -> str:
    """Replace embedded line boundaries with spaces.

    A client line must never turn into more than one wire line for the
    people it is delivered to.
    """
    return _LINE_BREAKS.sub(" ", text)


def normalize_name(value) -> str | None:
    """Trim a requested display name and collapse inner whitespace to "_".

    Returns None when nothing usable is left, so the caller can fall back to
    a placeholder.
    """
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    return _WHITESPACE_RUN.sub("_", s)


def placeholder_name(rng: random.Random | None = None) -> str:
    r = rng or random
    return f"{PLACEHOLDER_NAME_PREFIX}{r.randint(PLACEHOLDER_NAME_MIN, PLACEHOLDER_NAME_MAX)}"


def name_key(name: str) -> str:
    return name.casefold()


def format_timestamp(when: datetime) -> str:
    return when.strftime(TIME_FORMAT)


def local_now() -> datetime:
    return datetime.now()
