from __future__ import annotations

import re
from typing import Optional

_STRIP_RE = re.compile(r"[\s\-\(\)]")
_NON_DIGIT_RE = re.compile(r"\D")


def normalize_phone_e164(phone: Optional[str]) -> str:
    """Japanese mobile number to E.164, e.g. ``090-1234-5678`` -> ``+819012345678``."""
    normalized = _STRIP_RE.sub("", str(phone or "").strip())
    if not normalized:
        return ""
    if normalized.startswith("+"):
        return "+" + _NON_DIGIT_RE.sub("", normalized[1:])
    digits = _NON_DIGIT_RE.sub("", normalized)
    if digits.startswith("0"):
        return "+81" + digits[1:]
    if digits.startswith("81") and len(digits) >= 11:
        return "+" + digits
    return "+81" + digits


def normalize_phone_domestic(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    normalized = _STRIP_RE.sub("", str(phone).strip())
    if normalized.startswith("+81"):
        normalized = "0" + normalized[3:]
    elif normalized.startswith("81") and len(normalized) >= 11:
        normalized = "0" + normalized[2:]
    normalized = _NON_DIGIT_RE.sub("", normalized)
    return normalized or None


def phones_match(a: Optional[str], b: Optional[str]) -> bool:
    left = normalize_phone_domestic(a)
    right = normalize_phone_domestic(b)
    if not left or not right:
        return False
    return left == right


def mask_phone(phone: str) -> str:
    p = normalize_phone_e164(phone)
    if len(p) <= 4:
        return "*" * len(p)
    return p[:3] + "*" * (len(p) - 5) + p[-2:]
