from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerProfile(BaseModel):
    """Identity snapshot captured from the customer directory at dispatch time."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AuthRequestOtpIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    approval_key: Optional[str] = Field(default=None, alias="approvalKey", max_length=64)


class AuthRequestOtpOut(BaseModel):
    success: bool = True
    message: str
    expires_in_seconds: int = Field(serialization_alias="expiresIn")


class AuthVerifyOtpIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    otp: Optional[str] = None
    approval_key: Optional[str] = Field(default=None, alias="approvalKey", max_length=64)


class AuthUserOut(BaseModel):
    customer_id: str = Field(serialization_alias="customerId")
    email: Optional[str] = None
    first_name: str = Field(default="", serialization_alias="firstName")
    last_name: str = Field(default="", serialization_alias="lastName")
    phone: Optional[str] = None


class AuthVerifyOtpOut(BaseModel):
    success: bool = True
    token: str
    user: AuthUserOut
    scope: str
    expires_in_seconds: int = Field(serialization_alias="expiresIn")


class AuthRefreshOut(BaseModel):
    success: bool = True
    token: str
    expires_in_seconds: int = Field(serialization_alias="expiresIn")


class AuthMeOut(BaseModel):
    customer_id: str = Field(serialization_alias="customerId")
    email: Optional[str] = None
    first_name: str = Field(default="", serialization_alias="firstName")
    last_name: str = Field(default="", serialization_alias="lastName")
    scope: str
    approval_key: Optional[str] = Field(default=None, serialization_alias="approvalKey")


class MailConfigOut(BaseModel):
    valid: bool
    issues: List[str]
    smtp_configured: bool = Field(serialization_alias="smtpConfigured")
    fallback_enabled: bool = Field(serialization_alias="fallbackEnabled")
    relay_configured: bool = Field(serialization_alias="relayConfigured")
