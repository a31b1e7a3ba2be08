import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from concierge.approvals import ApprovalRegistry
from concierge.config import AuthConfig, RelayConfig, Settings, SmtpConfig
from concierge.mailer import OutboundMessage, ResilientMailer
from concierge.main import create_app
from concierge.models import CustomerProfile
from concierge.otp.store import InMemoryChallengeStore

_CODE_RE = re.compile(r"認証コード: (\d{6})")

ALICE = CustomerProfile(
    id="gid://shopify/Customer/42",
    first_name="Alice",
    last_name="Sato",
    email="alice@example.com",
    phone="+819012345678",
    tags=["vip"],
)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeDirectory:
    def __init__(self, profiles: Optional[Dict[str, CustomerProfile]] = None, error: Optional[Exception] = None):
        self.profiles = dict(profiles or {})
        self.error = error
        self.calls: List[str] = []

    async def lookup(self, identity: str) -> Optional[CustomerProfile]:
        self.calls.append(identity)
        if self.error is not None:
            raise self.error
        return self.profiles.get(identity)


class RecordingTransport:
    def __init__(self, name: str, error: Optional[Exception] = None) -> None:
        self.name = name
        self.error = error
        self.sent: List[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> Optional[str]:
        self.sent.append(message)
        if self.error is not None:
            raise self.error
        return f"<{len(self.sent)}@{self.name}.test>"


def code_from(message: OutboundMessage) -> str:
    m = _CODE_RE.search(message.text)
    assert m, message.text
    return m.group(1)


@pytest.fixture
def auth_cfg() -> AuthConfig:
    return AuthConfig(jwt_secret="test-secret", sweep_interval_seconds=3600)


@pytest.fixture
def settings(auth_cfg) -> Settings:
    return Settings(
        auth=auth_cfg,
        smtp=SmtpConfig(host="smtp.test", user="u", password="p", from_email="noreply@example.com"),
        relay=RelayConfig(enabled=True, url="https://relay.test", api_key="k"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory({"alice@example.com": ALICE, "+819012345678": ALICE})


@pytest.fixture
def primary() -> RecordingTransport:
    return RecordingTransport("smtp")


@pytest.fixture
def secondary() -> RecordingTransport:
    return RecordingTransport("relay")


@pytest.fixture
def mailer(primary, secondary) -> ResilientMailer:
    return ResilientMailer(primary=primary, secondary=secondary, fallback_enabled=True)


@pytest.fixture
def approvals() -> ApprovalRegistry:
    return ApprovalRegistry()


@pytest.fixture
def app(settings, store, directory, mailer, approvals):
    return create_app(settings, store=store, directory=directory, mailer=mailer, approvals=approvals)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
