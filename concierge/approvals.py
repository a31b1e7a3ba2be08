"""Buyout approval requests.

Each request is keyed by a uuid approval key and mailed to the customer as a
link. The OTP flow uses a request as its flow scope: a code requested with an
approval key only authorizes that one request.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("concierge.approvals")

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalLookup(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass
class ApprovalRequest:
    approval_key: str
    customer_name: str
    email: str
    cards: List[Dict[str, Any]]
    created_at: str
    status: str = STATUS_PENDING
    responses: Dict[str, Any] = field(default_factory=dict)
    completed_at: Optional[str] = None

    def created(self) -> datetime:
        return parse_timestamp(self.created_at)


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 to an aware UTC datetime; accepts the ``Z`` suffix JavaScript writes."""
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _pick(record: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if record.get(name) is not None:
            return record[name]
    return default


def _request_from_record(key: str, record: Any) -> ApprovalRequest:
    """Build a request from either the camelCase file the JS server wrote or our own dump."""
    if not isinstance(record, dict):
        raise TypeError("record is not an object")
    created_at = _pick(record, "created_at", "createdAt")
    if created_at is None:
        raise KeyError("createdAt")
    parse_timestamp(created_at)
    cards = _pick(record, "cards", default=[])
    responses = _pick(record, "responses", default={})
    if not isinstance(cards, list) or not isinstance(responses, dict):
        raise TypeError("cards must be a list and responses an object")
    return ApprovalRequest(
        approval_key=key,
        customer_name=str(_pick(record, "customer_name", "customerName", default="")).strip(),
        email=str(record["email"]).strip().lower(),
        cards=cards,
        created_at=str(created_at),
        status=str(_pick(record, "status", default=STATUS_PENDING)),
        responses=responses,
        completed_at=_pick(record, "completed_at", "completedAt"),
    )


class ApprovalRegistry:
    def __init__(self, path: Optional[Path] = None, *, link_ttl: timedelta = timedelta(days=14)) -> None:
        self._path = path
        self._link_ttl = link_ttl
        self._lock = threading.Lock()
        self._items: Dict[str, ApprovalRequest] = {}
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("[APPROVAL] failed to load %s", self._path)
            return
        if not isinstance(raw, dict):
            logger.error("[APPROVAL] %s is not a JSON object, ignoring", self._path)
            return
        for key, value in raw.items():
            try:
                self._items[key] = _request_from_record(key, value)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("[APPROVAL] skipping record key=%s error=%s", key, exc)
        logger.info("[APPROVAL] loaded %d request(s) from %s", len(self._items), self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        data = {k: asdict(v) for k, v in self._items.items()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def create(
        self,
        *,
        customer_name: str,
        email: str,
        cards: List[Dict[str, Any]],
        created_at: Optional[datetime] = None,
    ) -> ApprovalRequest:
        req = ApprovalRequest(
            approval_key=str(uuid.uuid4()),
            customer_name=customer_name.strip(),
            email=email.strip().lower(),
            cards=list(cards),
            created_at=(created_at or _utc_now()).isoformat(),
        )
        with self._lock:
            self._items[req.approval_key] = req
            self._save()
        return req

    def get(self, approval_key: str) -> Optional[ApprovalRequest]:
        return self._items.get(approval_key)

    def complete(self, approval_key: str, responses: Dict[str, Any]) -> Optional[ApprovalRequest]:
        with self._lock:
            req = self._items.get(approval_key)
            if req is None or req.status != STATUS_PENDING:
                return None
            req.responses = dict(responses)
            req.status = STATUS_COMPLETED
            req.completed_at = _utc_now().isoformat()
            self._save()
            return req

    def resolve_for(self, email: str, approval_key: str, now: Optional[datetime] = None):
        """Return ``(ApprovalLookup, request)`` for a customer opening an approval link."""
        req = self.get(approval_key)
        if req is None:
            return ApprovalLookup.NOT_FOUND, None
        if req.email != email.strip().lower():
            return ApprovalLookup.NOT_FOUND, None
        now = now or _utc_now()
        if req.status != STATUS_PENDING or now >= req.created() + self._link_ttl:
            return ApprovalLookup.EXPIRED, req
        return ApprovalLookup.OK, req
