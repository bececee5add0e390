from __future__ import annotations

import os

from .constants import SHORT_ID_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def fmt_short(h, *, prefix: int = SHORT_ID_CHARS) -> str:
    if isinstance(h, (bytes, bytearray)) and h:
        s = bytes(h).hex()
        return s if prefix <= 0 else s[: min(prefix, len(s))]
    return "-"


def normalize_nick(value) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    # Embedded newlines or NUL break the one-line chat output.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s
