"""Challenge storage.

A challenge is the outstanding one-time code for a challenge key. Stores are
synchronous, so the verifier never yields to the event loop mid-check.
Failed attempts are counted with `record_failed_attempt`, which only touches
the row while it still holds the code the verifier compared against: a code
re-issued by another worker is never overwritten, and concurrent increments
are not lost.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from psycopg.types.json import Jsonb

from ..config import PostgresConfig
from ..db import get_conn
from ..models import CustomerProfile

logger = logging.getLogger("concierge.store")


@dataclass
class Challenge:
    key: str
    code: str
    expires_at: datetime
    identity: CustomerProfile
    attempts: int = 0
    flow_context: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class ChallengeStore(Protocol):
    def get(self, key: str) -> Optional[Challenge]: ...

    def put(self, challenge: Challenge) -> None: ...

    def delete(self, key: str, code: Optional[str] = None) -> bool: ...

    def record_failed_attempt(self, key: str, code: str) -> Optional[int]: ...

    def purge_expired(self, now: datetime) -> int: ...


class InMemoryChallengeStore:
    """Process-lifetime table; everything is lost on restart."""

    def __init__(self) -> None:
        self._items: Dict[str, Challenge] = {}

    def get(self, key: str) -> Optional[Challenge]:
        item = self._items.get(key)
        return copy.deepcopy(item) if item is not None else None

    def put(self, challenge: Challenge) -> None:
        self._items[challenge.key] = copy.deepcopy(challenge)

    def delete(self, key: str, code: Optional[str] = None) -> bool:
        item = self._items.get(key)
        if item is None or (code is not None and item.code != code):
            return False
        del self._items[key]
        return True

    def record_failed_attempt(self, key: str, code: str) -> Optional[int]:
        item = self._items.get(key)
        if item is None or item.code != code:
            return None
        item.attempts += 1
        return item.attempts

    def purge_expired(self, now: datetime) -> int:
        dead = [k for k, c in self._items.items() if c.is_expired(now)]
        for k in dead:
            del self._items[k]
        return len(dead)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items


class PostgresChallengeStore:
    """Challenges in ``concierge.otp_challenges`` (see sql/otp_challenges.sql)."""

    def __init__(self, cfg: PostgresConfig) -> None:
        self._cfg = cfg

    def get(self, key: str) -> Optional[Challenge]:
        with get_conn(self._cfg) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT challenge_key, code, expires_at, attempts, identity, flow_context, created_at
                    FROM concierge.otp_challenges
                    WHERE challenge_key = %s;
                    """,
                    (key,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return Challenge(
            key=str(row[0]),
            code=str(row[1]),
            expires_at=row[2],
            attempts=int(row[3]),
            identity=CustomerProfile.model_validate(row[4]),
            flow_context=row[5],
            created_at=row[6],
        )

    def put(self, challenge: Challenge) -> None:
        with get_conn(self._cfg) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO concierge.otp_challenges
                        (challenge_key, code, expires_at, attempts, identity, flow_context, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, COALESCE(%s, now()))
                    ON CONFLICT (challenge_key) DO UPDATE SET
                      code = EXCLUDED.code,
                      expires_at = EXCLUDED.expires_at,
                      attempts = EXCLUDED.attempts,
                      identity = EXCLUDED.identity,
                      flow_context = EXCLUDED.flow_context,
                      created_at = EXCLUDED.created_at;
                    """,
                    (
                        challenge.key,
                        challenge.code,
                        challenge.expires_at,
                        challenge.attempts,
                        Jsonb(challenge.identity.model_dump()),
                        Jsonb(challenge.flow_context) if challenge.flow_context is not None else None,
                        challenge.created_at,
                    ),
                )
            conn.commit()

    def delete(self, key: str, code: Optional[str] = None) -> bool:
        with get_conn(self._cfg) as conn:
            with conn.cursor() as cur:
                if code is None:
                    cur.execute("DELETE FROM concierge.otp_challenges WHERE challenge_key = %s;", (key,))
                else:
                    cur.execute(
                        "DELETE FROM concierge.otp_challenges WHERE challenge_key = %s AND code = %s;",
                        (key, code),
                    )
                removed = cur.rowcount
            conn.commit()
        return bool(removed)

    def record_failed_attempt(self, key: str, code: str) -> Optional[int]:
        with get_conn(self._cfg) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE concierge.otp_challenges
                    SET attempts = attempts + 1
                    WHERE challenge_key = %s AND code = %s
                    RETURNING attempts;
                    """,
                    (key, code),
                )
                row = cur.fetchone()
            conn.commit()
        return int(row[0]) if row is not None else None

    def purge_expired(self, now: datetime) -> int:
        with get_conn(self._cfg) as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM concierge.otp_challenges WHERE expires_at <= %s;", (now,))
                removed = cur.rowcount
            conn.commit()
        return int(removed or 0)


def build_store(backend: str, pg: PostgresConfig) -> ChallengeStore:
    if backend == "postgres":
        logger.info("[OTP] challenge store=postgres host=%s db=%s", pg.host, pg.database)
        return PostgresChallengeStore(pg)
    if backend != "memory":
        logger.warning("[OTP] unknown OTP_STORE=%r, using memory", backend)
    return InMemoryChallengeStore()
