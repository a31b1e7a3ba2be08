from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import CustomerProfile


class DispatchErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    UNREGISTERED_IDENTITY = "unregistered_identity"
    INVALID_FLOW_REFERENCE = "invalid_flow_reference"
    FLOW_REFERENCE_EXPIRED = "flow_reference_expired"
    NO_CONTACT_ADDRESS = "no_contact_address"
    DELIVERY_FAILED = "delivery_failed"
    SYSTEM_ERROR = "system_error"


class VerifyErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    EXPIRED = "expired"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    CODE_MISMATCH = "code_mismatch"
    SYSTEM_ERROR = "system_error"


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    error: Optional[DispatchErrorKind] = None
    message: str = ""
    challenge_key: Optional[str] = None
    delivery_method: Optional[str] = None

    @classmethod
    def sent(cls, challenge_key: str, method: str) -> "DispatchResult":
        return cls(ok=True, challenge_key=challenge_key, delivery_method=method)

    @classmethod
    def failed(cls, error: DispatchErrorKind, message: str, challenge_key: Optional[str] = None) -> "DispatchResult":
        return cls(ok=False, error=error, message=message, challenge_key=challenge_key)


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    error: Optional[VerifyErrorKind] = None
    message: str = ""
    token: Optional[str] = None
    scope: Optional[str] = None
    identity: Optional[CustomerProfile] = None
    remaining_attempts: Optional[int] = None

    @classmethod
    def failed(cls, error: VerifyErrorKind, message: str, remaining_attempts: Optional[int] = None) -> "VerifyResult":
        return cls(ok=False, error=error, message=message, remaining_attempts=remaining_attempts)
