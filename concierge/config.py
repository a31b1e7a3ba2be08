from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_PROJECT_ROOT / ".env")

_TRUTHY = {"1", "true", "yes", "on"}


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class AuthConfig:
    jwt_secret: str = ""
    jwt_issuer: str = "psa-concierge"
    jwt_audience: str = "psa-concierge"
    session_ttl_minutes: int = 30
    approval_token_ttl_minutes: int = 60
    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 5
    sweep_interval_seconds: int = 1800
    store_backend: str = "memory"

    @classmethod
    def from_env(cls) -> "AuthConfig":
        return cls(
            jwt_secret=_env_str("JWT_SECRET"),
            jwt_issuer=_env_str("JWT_ISSUER", "psa-concierge"),
            jwt_audience=_env_str("JWT_AUDIENCE", "psa-concierge"),
            session_ttl_minutes=_env_int("SESSION_TTL_MINUTES", 30),
            approval_token_ttl_minutes=_env_int("APPROVAL_TOKEN_TTL_MINUTES", 60),
            otp_ttl_seconds=_env_int("OTP_TTL_SECONDS", 600),
            otp_max_attempts=_env_int("OTP_MAX_ATTEMPTS", 5),
            sweep_interval_seconds=_env_int("OTP_SWEEP_INTERVAL_SECONDS", 1800),
            store_backend=_env_str("OTP_STORE", "memory").lower(),
        )


@dataclass(frozen=True)
class SmtpConfig:
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    use_tls: bool = True
    # connect + greeting + socket budget
    timeout_seconds: float = 15.0
    from_email: str = ""
    from_name: str = "PSA Concierge"

    @classmethod
    def from_env(cls) -> "SmtpConfig":
        return cls(
            host=_env_str("SMTP_HOST"),
            port=_env_int("SMTP_PORT", 587),
            user=_env_str("SMTP_USER"),
            password=_env_str("SMTP_PASS").replace(" ", ""),
            use_tls=_env_bool("SMTP_USE_TLS", True),
            timeout_seconds=_env_float("SMTP_TIMEOUT_SECONDS", 15.0),
            from_email=_env_str("FROM_EMAIL") or _env_str("SMTP_USER"),
            from_name=_env_str("FROM_NAME", "PSA Concierge"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    @property
    def sender(self) -> str:
        if self.from_name and self.from_email:
            return f"{self.from_name} <{self.from_email}>"
        return self.from_email


@dataclass(frozen=True)
class RelayConfig:
    enabled: bool = False
    url: str = ""
    api_key: str = ""
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "RelayConfig":
        return cls(
            enabled=_env_bool("USE_RELAY_FALLBACK", False),
            url=_env_str("RELAY_API_URL").rstrip("/"),
            api_key=_env_str("RELAY_API_KEY"),
            timeout_seconds=_env_float("RELAY_TIMEOUT_SECONDS", 30.0),
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)


@dataclass(frozen=True)
class ShopifyConfig:
    shop_name: str = ""
    access_token: str = ""
    api_version: str = "2024-10"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "ShopifyConfig":
        return cls(
            shop_name=_env_str("SHOPIFY_SHOP_NAME"),
            access_token=_env_str("SHOPIFY_ADMIN_ACCESS_TOKEN"),
            api_version=_env_str("SHOPIFY_API_VERSION", "2024-10"),
            timeout_seconds=_env_float("SHOPIFY_TIMEOUT_SECONDS", 10.0),
        )

    @property
    def configured(self) -> bool:
        return bool(self.shop_name and self.access_token)

    def graphql_url(self) -> str:
        shop = self.shop_name
        if not shop.endswith(".myshopify.com"):
            shop = f"{shop}.myshopify.com"
        return f"https://{shop}/admin/api/{self.api_version}/graphql.json"


@dataclass(frozen=True)
class ApprovalConfig:
    data_path: Optional[str] = None
    link_ttl_days: int = 14

    @classmethod
    def from_env(cls) -> "ApprovalConfig":
        return cls(
            data_path=_env_str("APPROVAL_DATA_PATH") or None,
            link_ttl_days=_env_int("APPROVAL_LINK_TTL_DAYS", 14),
        )


@dataclass(frozen=True)
class PostgresConfig:
    host: str = os.getenv("PGHOST", "localhost")
    port: int = _env_int("PGPORT", 5432)
    database: str = os.getenv("PGDATABASE", "concierge")
    user: str = os.getenv("PGUSER", "concierge")
    password: str = os.getenv("PGPASSWORD", "concierge")

    def dsn(self) -> str:
        return (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user} password={self.password}"
        )


@dataclass(frozen=True)
class Settings:
    auth: AuthConfig = field(default_factory=AuthConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    approvals: ApprovalConfig = field(default_factory=ApprovalConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)


def load_settings() -> Settings:
    return Settings(
        auth=AuthConfig.from_env(),
        smtp=SmtpConfig.from_env(),
        relay=RelayConfig.from_env(),
        shopify=ShopifyConfig.from_env(),
        approvals=ApprovalConfig.from_env(),
        postgres=PostgresConfig(),
    )
