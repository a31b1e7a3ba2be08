from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..config import AuthConfig
from ..security import SCOPE_APPROVAL, SCOPE_SESSION, create_access_token, identity_claims
from .codes import is_well_formed
from .keys import challenge_key, normalize_identity
from .results import VerifyErrorKind, VerifyResult
from .store import Challenge, ChallengeStore

logger = logging.getLogger("concierge.auth")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _not_found() -> VerifyResult:
    return VerifyResult.failed(
        VerifyErrorKind.CHALLENGE_NOT_FOUND,
        "Verification code not found or expired. Request a new code.",
    )


def _exceeded() -> VerifyResult:
    return VerifyResult.failed(
        VerifyErrorKind.ATTEMPTS_EXCEEDED,
        "Too many attempts. Request a new code.",
        remaining_attempts=0,
    )


class OtpVerifier:
    """Checks a submitted code against its challenge and mints a bearer token.

    ``verify_code`` never awaits, so on one event loop the attempt check and
    the comparison for a key run back to back. Across workers the store keeps
    the bound: failed attempts are counted with an atomic conditional
    increment and a challenge is consumed with a conditional delete, both
    keyed on the code that was compared.

    An exhausted challenge is kept until it expires and the sweep removes it,
    so repeated submissions keep getting ``ATTEMPTS_EXCEEDED``. Requesting a
    new code replaces it.
    """

    def __init__(
        self,
        cfg: AuthConfig,
        *,
        store: ChallengeStore,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._cfg = cfg
        self._store = store
        self._clock = clock

    def verify_code(
        self,
        *,
        otp: Optional[str],
        email: Optional[str] = None,
        phone: Optional[str] = None,
        approval_key: Optional[str] = None,
    ) -> VerifyResult:
        identity = normalize_identity(email, phone)
        if identity is None:
            return VerifyResult.failed(VerifyErrorKind.INVALID_INPUT, "A valid email or phone number is required")
        code = (otp or "").strip()
        if not code:
            return VerifyResult.failed(VerifyErrorKind.INVALID_INPUT, "Verification code is required")
        if not is_well_formed(code):
            return VerifyResult.failed(VerifyErrorKind.INVALID_INPUT, "Verification code must be 6 digits")

        key = challenge_key(identity, (approval_key or "").strip() or None)
        try:
            return self._verify(key, code)
        except Exception:
            logger.exception("[OTP] verify-otp failed")
            return VerifyResult.failed(VerifyErrorKind.SYSTEM_ERROR, "System error. Please try again later.")

    def _verify(self, key: str, code: str) -> VerifyResult:
        max_attempts = self._cfg.otp_max_attempts
        challenge = self._store.get(key)
        if challenge is None:
            return _not_found()

        if challenge.attempts >= max_attempts:
            logger.info("[OTP] challenge exhausted attempts=%s", challenge.attempts)
            return _exceeded()

        if challenge.is_expired(self._clock()):
            self._store.delete(key, challenge.code)
            return VerifyResult.failed(VerifyErrorKind.EXPIRED, "Verification code expired. Request a new code.")

        if not secrets.compare_digest(challenge.code.encode("utf-8"), code.encode("utf-8")):
            attempts = self._store.record_failed_attempt(key, challenge.code)
            if attempts is None:
                # replaced or consumed since it was read
                return VerifyResult.failed(VerifyErrorKind.CODE_MISMATCH, "Verification code is incorrect.")
            remaining = max(0, max_attempts - attempts)
            logger.info("[OTP] code mismatch attempts=%s remaining=%s", attempts, remaining)
            if remaining == 0:
                return _exceeded()
            return VerifyResult.failed(
                VerifyErrorKind.CODE_MISMATCH,
                "Verification code is incorrect.",
                remaining_attempts=remaining,
            )

        scope, extra = self._scope_for(challenge)
        token = create_access_token(
            self._cfg,
            claims=identity_claims(challenge.identity),
            scope=scope,
            extra=extra,
        )
        if not self._store.delete(key, challenge.code):
            # another request consumed or replaced it first
            return _not_found()
        logger.info("[OTP] verified customer_id=%s scope=%s", challenge.identity.id, scope)
        return VerifyResult(ok=True, token=token, scope=scope, identity=challenge.identity)

    @staticmethod
    def _scope_for(challenge: Challenge) -> tuple[str, Optional[Dict[str, Any]]]:
        ctx = challenge.flow_context or {}
        if ctx.get("approvalKey"):
            return SCOPE_APPROVAL, {"approvalKey": ctx["approvalKey"]}
        return SCOPE_SESSION, None
