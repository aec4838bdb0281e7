from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def to_e164(number: str, default_country: str = "1") -> str:
    """Best-effort E.164 formatting for North American carrier APIs."""
    raw = (number or "").strip()
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return ""
    if raw.startswith("+"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+{default_country}{digits}"
    return f"+{digits}"


def same_number(a: str, b: str) -> bool:
    return bool(a) and bool(b) and to_e164(a) == to_e164(b)


def conversation_id(a: str, b: str) -> str:
    """Direction-independent thread id for a pair of numbers."""
    return "-".join(sorted([to_e164(a), to_e164(b)]))
