from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..models import (
    AuthMeOut,
    AuthRefreshOut,
    AuthRequestOtpIn,
    AuthRequestOtpOut,
    AuthUserOut,
    AuthVerifyOtpIn,
    AuthVerifyOtpOut,
)
from ..otp.dispatcher import OtpDispatcher
from ..otp.results import DispatchErrorKind, VerifyErrorKind
from ..otp.verifier import OtpVerifier
from ..security import SCOPE_SESSION, refresh_session_token, require_bearer, require_session, token_ttl

logger = logging.getLogger("concierge.auth")

router = APIRouter(prefix="/api/auth", tags=["api_auth"])

_DISPATCH_STATUS = {
    DispatchErrorKind.INVALID_INPUT: 400,
    DispatchErrorKind.UNREGISTERED_IDENTITY: 404,
    DispatchErrorKind.INVALID_FLOW_REFERENCE: 404,
    DispatchErrorKind.FLOW_REFERENCE_EXPIRED: 400,
    DispatchErrorKind.NO_CONTACT_ADDRESS: 400,
    DispatchErrorKind.DELIVERY_FAILED: 500,
    DispatchErrorKind.SYSTEM_ERROR: 500,
}

_VERIFY_STATUS = {
    VerifyErrorKind.INVALID_INPUT: 400,
    VerifyErrorKind.CHALLENGE_NOT_FOUND: 400,
    VerifyErrorKind.EXPIRED: 400,
    VerifyErrorKind.CODE_MISMATCH: 401,
    VerifyErrorKind.ATTEMPTS_EXCEEDED: 429,
    VerifyErrorKind.SYSTEM_ERROR: 500,
}


def get_dispatcher(request: Request) -> OtpDispatcher:
    return request.app.state.dispatcher


def get_verifier(request: Request) -> OtpVerifier:
    return request.app.state.verifier


def _fail(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)


@router.post("/request-otp", response_model=AuthRequestOtpOut)
async def request_otp(
    req: AuthRequestOtpIn,
    request: Request,
    dispatcher: OtpDispatcher = Depends(get_dispatcher),
):
    result = await dispatcher.request_code(
        email=req.email,
        phone=req.phone,
        approval_key=req.approval_key,
    )
    if not result.ok:
        kind = result.error or DispatchErrorKind.SYSTEM_ERROR
        return _fail(_DISPATCH_STATUS[kind], kind.value, result.message)

    return AuthRequestOtpOut(
        message="Verification code sent. Please check your email.",
        expires_in_seconds=request.app.state.settings.auth.otp_ttl_seconds,
    )


@router.post("/verify-otp", response_model=AuthVerifyOtpOut)
async def verify_otp(
    req: AuthVerifyOtpIn,
    request: Request,
    verifier: OtpVerifier = Depends(get_verifier),
):
    # verify_code is synchronous so the challenge update cannot interleave
    result = verifier.verify_code(
        otp=req.otp,
        email=req.email,
        phone=req.phone,
        approval_key=req.approval_key,
    )
    if not result.ok or result.identity is None or result.token is None:
        kind = result.error or VerifyErrorKind.SYSTEM_ERROR
        return _fail(
            _VERIFY_STATUS[kind],
            kind.value,
            result.message,
            remainingAttempts=result.remaining_attempts,
        )

    profile = result.identity
    scope = result.scope or SCOPE_SESSION
    return AuthVerifyOtpOut(
        token=result.token,
        user=AuthUserOut(
            customer_id=profile.id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            phone=profile.phone,
        ),
        scope=scope,
        expires_in_seconds=int(token_ttl(request.app.state.settings.auth, scope).total_seconds()),
    )


@router.post("/refresh", response_model=AuthRefreshOut)
def refresh(request: Request, payload: Dict[str, Any] = Depends(require_session)) -> AuthRefreshOut:
    cfg = request.app.state.settings.auth
    token = refresh_session_token(cfg, payload)
    logger.info("[AUTH] session refreshed customer_id=%s", payload.get("customerId"))
    return AuthRefreshOut(token=token, expires_in_seconds=int(token_ttl(cfg, SCOPE_SESSION).total_seconds()))


@router.get("/me", response_model=AuthMeOut)
def me(payload: Dict[str, Any] = Depends(require_bearer)) -> AuthMeOut:
    approval_key: Optional[str] = payload.get("approvalKey")
    return AuthMeOut(
        customer_id=str(payload.get("customerId") or payload.get("sub") or ""),
        email=payload.get("email"),
        first_name=str(payload.get("firstName") or ""),
        last_name=str(payload.get("lastName") or ""),
        scope=str(payload.get("scope") or SCOPE_SESSION),
        approval_key=approval_key,
    )
