from __future__ import annotations

from fastapi import APIRouter, Request

from ..mailer import validate_mail_config
from ..models import MailConfigOut

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
def health():
    return {"status": "ok"}


@router.get("/email", response_model=MailConfigOut)
def email_config(request: Request) -> MailConfigOut:
    return MailConfigOut(**validate_mail_config(request.app.state.settings))
