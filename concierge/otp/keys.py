from __future__ import annotations

import re
from typing import Optional

from ..phone import normalize_phone_e164

APPROVAL_SCOPE = "approval"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_E164_RE = re.compile(r"^\+\d{8,15}$")


def normalize_email(email: Optional[str]) -> Optional[str]:
    e = (email or "").strip().lower()
    if not e or len(e) > 320 or not _EMAIL_RE.match(e):
        return None
    return e


def normalize_identity(email: Optional[str] = None, phone: Optional[str] = None) -> Optional[str]:
    """Canonical identity string: lower-cased email, or E.164 phone when no email is given."""
    if (email or "").strip():
        return normalize_email(email)
    if (phone or "").strip():
        p = normalize_phone_e164(phone)
        return p if _E164_RE.match(p) else None
    return None


def challenge_key(identity: str, approval_key: Optional[str] = None) -> str:
    """Key for a normalized identity, narrowed to one approval when given."""
    if approval_key:
        return f"{identity}::{APPROVAL_SCOPE}:{approval_key}"
    return identity
