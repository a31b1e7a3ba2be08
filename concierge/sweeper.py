from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from .otp.store import ChallengeStore

logger = logging.getLogger("concierge.store")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sweep_once(store: ChallengeStore, clock: Callable[[], datetime] = _utc_now) -> int:
    removed = store.purge_expired(clock())
    if removed:
        logger.info("[OTP] sweep removed %d expired challenge(s)", removed)
    return removed


async def run_sweeper(
    store: ChallengeStore,
    interval_seconds: float,
    clock: Callable[[], datetime] = _utc_now,
) -> None:
    """Purge expired challenges every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            sweep_once(store, clock)
        except Exception:
            logger.exception("[OTP] sweep failed")
