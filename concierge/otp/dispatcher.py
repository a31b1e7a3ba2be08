from __future__ import annotations

import html
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ..approvals import ApprovalLookup, ApprovalRegistry, ApprovalRequest
from ..config import AuthConfig
from ..identity import CustomerDirectory, IdentityLookupError, is_email_identity
from ..mailer import AllChannelsFailedError, OutboundMessage, ResilientMailer
from ..models import CustomerProfile
from ..phone import mask_phone
from .codes import generate_code
from .keys import challenge_key, normalize_identity
from .results import DispatchErrorKind, DispatchResult
from .store import Challenge, ChallengeStore

logger = logging.getLogger("concierge.auth")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mask_email(addr: str) -> str:
    try:
        local, domain = addr.split("@", 1)
    except ValueError:
        return addr
    local_mask = local[0] + "***" if len(local) > 1 else "*"
    dot = domain.rfind(".")
    if dot > 0:
        dom_mask = domain[0] + "***" + domain[dot:]
    else:
        dom_mask = domain[0] + "***"
    return f"{local_mask}@{dom_mask}"


def mask_identity(identity: str) -> str:
    return mask_email(identity) if is_email_identity(identity) else mask_phone(identity)


def render_code_message(
    *,
    to: str,
    code: str,
    profile: CustomerProfile,
    ttl_minutes: int,
    service_name: str,
    flow_context: Optional[Dict[str, Any]] = None,
) -> OutboundMessage:
    greeting = f"{profile.full_name} 様" if profile.full_name else "お客様"
    if flow_context:
        subject = f"【{service_name}】買取承認用の認証コード"
        purpose = (
            f"{flow_context.get('customerName') or profile.full_name} 様の買取承認"
            f"（カード {flow_context.get('cardCount', 0)} 枚）を確認するための認証コードです。"
        )
    else:
        subject = f"【{service_name}】認証コード"
        purpose = "以下の認証コードを入力してログインを完了してください。"

    text = (
        f"{greeting}\n\n{purpose}\n\n認証コード: {code}\n"
        f"有効期限は{ttl_minutes}分間です。\n"
        "心当たりがない場合は、このメールを無視してください。\n"
    )
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>認証コード</h2>
        <p>{html.escape(greeting)}</p>
        <p>{html.escape(purpose)}</p>
        <div style="background-color: #f5f5f5; padding: 20px; text-align: center; font-size: 32px; font-weight: bold; letter-spacing: 5px; margin: 20px 0;">
          {code}
        </div>
        <p style="color: #666; font-size: 14px;">
          このコードの有効期限は{ttl_minutes}分間です。<br>
          心当たりがない場合は、このメールを無視してください。
        </p>
      </div>
    """
    return OutboundMessage(to=to, subject=subject, text=text, html=body)


def approval_flow_context(req: ApprovalRequest) -> Dict[str, Any]:
    return {
        "approvalKey": req.approval_key,
        "customerName": req.customer_name,
        "cardCount": len(req.cards),
    }


class OtpDispatcher:
    """Looks up the customer, stores a fresh challenge and mails the code."""

    def __init__(
        self,
        cfg: AuthConfig,
        *,
        store: ChallengeStore,
        directory: CustomerDirectory,
        mailer: ResilientMailer,
        approvals: Optional[ApprovalRegistry] = None,
        service_name: str = "PSA Concierge",
        clock: Callable[[], datetime] = _utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._cfg = cfg
        self._store = store
        self._directory = directory
        self._mailer = mailer
        self._approvals = approvals
        self._service_name = service_name
        self._clock = clock
        self._code_factory = code_factory

    def _resolve_flow(self, email: str, approval_key: str) -> DispatchResult | Dict[str, Any]:
        if self._approvals is None:
            return DispatchResult.failed(DispatchErrorKind.INVALID_FLOW_REFERENCE, "Invalid approval key")
        status, req = self._approvals.resolve_for(email, approval_key, now=self._clock())
        if status is ApprovalLookup.NOT_FOUND or req is None:
            return DispatchResult.failed(DispatchErrorKind.INVALID_FLOW_REFERENCE, "Invalid approval key")
        if status is ApprovalLookup.EXPIRED:
            return DispatchResult.failed(DispatchErrorKind.FLOW_REFERENCE_EXPIRED, "Approval link has expired")
        return approval_flow_context(req)

    async def request_code(
        self,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        approval_key: Optional[str] = None,
    ) -> DispatchResult:
        identity = normalize_identity(email, phone)
        if identity is None:
            return DispatchResult.failed(DispatchErrorKind.INVALID_INPUT, "A valid email or phone number is required")
        approval_key = (approval_key or "").strip() or None
        if approval_key and not is_email_identity(identity):
            return DispatchResult.failed(DispatchErrorKind.INVALID_INPUT, "Approval codes are sent by email only")

        try:
            return await self._dispatch(identity, approval_key)
        except Exception:
            logger.exception("[OTP] request-otp failed identity=%s", mask_identity(identity))
            return DispatchResult.failed(DispatchErrorKind.SYSTEM_ERROR, "System error. Please try again later.")

    async def _dispatch(self, identity: str, approval_key: Optional[str]) -> DispatchResult:
        flow_context: Optional[Dict[str, Any]] = None
        if approval_key:
            resolved = self._resolve_flow(identity, approval_key)
            if isinstance(resolved, DispatchResult):
                logger.info("[OTP] approval key rejected kind=%s", resolved.error.value if resolved.error else None)
                return resolved
            flow_context = resolved

        try:
            profile = await self._directory.lookup(identity)
        except IdentityLookupError as exc:
            logger.error("[OTP] identity lookup failed error=%s", exc)
            return DispatchResult.failed(DispatchErrorKind.SYSTEM_ERROR, "System error. Please try again later.")
        if profile is None:
            logger.info("[OTP] unregistered identity=%s", mask_identity(identity))
            return DispatchResult.failed(
                DispatchErrorKind.UNREGISTERED_IDENTITY,
                "This address is not registered. Please create a store account first.",
            )

        contact = identity if is_email_identity(identity) else profile.email
        if not contact:
            return DispatchResult.failed(
                DispatchErrorKind.NO_CONTACT_ADDRESS,
                "No email address is registered for this account.",
            )

        key = challenge_key(identity, approval_key)
        now = self._clock()
        code = self._code_factory()
        self._store.put(
            Challenge(
                key=key,
                code=code,
                expires_at=now + timedelta(seconds=self._cfg.otp_ttl_seconds),
                identity=profile,
                attempts=0,
                flow_context=flow_context,
                created_at=now,
            )
        )

        message = render_code_message(
            to=contact,
            code=code,
            profile=profile,
            ttl_minutes=max(1, self._cfg.otp_ttl_seconds // 60),
            service_name=self._service_name,
            flow_context=flow_context,
        )
        try:
            delivery = await self._mailer.send(message)
        except AllChannelsFailedError as exc:
            logger.error(
                "[OTP] delivery failed to=%s errors=%s",
                mask_email(contact),
                [e.as_dict() for e in exc.errors],
            )
            return DispatchResult.failed(
                DispatchErrorKind.DELIVERY_FAILED,
                "Could not send the verification code. Please try again later.",
                challenge_key=key,
            )

        logger.info(
            "[OTP] code sent to=%s via=%s scoped=%s",
            mask_email(contact),
            delivery.transport,
            bool(approval_key),
        )
        return DispatchResult.sent(key, delivery.method)
