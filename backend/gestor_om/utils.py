from __future__ import annotations

import datetime as dt
import re
import secrets
import unicodedata
from typing import Any

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_key(value: Any) -> str:
    """Lowercase, accent-free, alphanumeric-only form of a column header."""
    if value is None:
        return ""
    text = str(value)
    if not text:
        return ""
    return _NON_ALNUM.sub("", strip_accents(text.lower()))


def _millis() -> int:
    return int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)


def new_id(prefix: str) -> str:
    """Ids in the ``<prefix>-<epoch ms>-<random>`` shape used by stored snapshots."""
    return f"{prefix}-{_millis()}-{secrets.token_hex(4)}"
