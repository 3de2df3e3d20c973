"""Provisional, time-bounded claims on shortcodes.

A reservation holds a candidate code for one owner while they finish building
their QR code. It lives under ``reserved:<code>`` and lapses after its TTL unless
released earlier or marked permanent once saved.

Stored Value
============
::
    reserved:Ab3xKm7q  →  {"userId": "user-42", "reservedAt": 1735689600000, "origin": "generation"}
    reserved:Ab3xKm7q  →  "permanent"        (saved; written without TTL)
    reserved:Ab3xKm7q  →  "user-42"          (bare owner id from older clients)

How to Use
===========
**Step 1 — Build on a claim store**::
    reservations = ReservationStore(RedisClaimStore(cache))

**Step 2 — Reserve and inspect**::
    if await reservations.reserve("Ab3xKm7q", "user-42", ttl_seconds=300):
        reservation = await reservations.lookup("Ab3xKm7q")

**Step 3 — Release when abandoned**::
    await reservations.release("Ab3xKm7q")

Key Behaviours
===============
- reserve() is the single gate: at most one outstanding reservation per code.
- Reservations are never mutated; a second reserve() for a held code returns False.
- release() is idempotent.
"""

import datetime
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import ValidationError

from shortcodes.claims import ClaimStore
from shortcodes.config import get_settings
from shortcodes.enums import ReservationOrigin
from shortcodes.schemas import ReservationPayload

__all__ = ["Reservation", "ReservationStore"]

settings = get_settings()

PERMANENT_MARKER = "permanent"


@dataclass(frozen=True)
class Reservation:
    code: str
    owner_id: str | None
    reserved_at: datetime.datetime | None
    origin: ReservationOrigin

    @property
    def is_permanent(self) -> bool:
        return self.origin is ReservationOrigin.PERMANENT


class ReservationStore:
    def __init__(
        self,
        claims: ClaimStore,
        key_prefix: str = settings.RESERVATION_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._claims = claims
        self._key_prefix = key_prefix
        self._clock = clock

    def key_for(self, code: str) -> str:
        return f"{self._key_prefix}:{code}"

    async def reserve(
        self,
        code: str,
        owner_id: str,
        ttl_seconds: int = settings.RESERVATION_TTL_SECONDS,
        origin: ReservationOrigin = ReservationOrigin.GENERATION,
    ) -> bool:
        assert isinstance(code, str) and code, f"code must be a non-empty string, got {code!r}"
        payload = ReservationPayload(
            user_id=owner_id or "anonymous",
            reserved_at=int(self._clock() * 1000),
            origin=origin,
        )
        return await self._claims.claim(self.key_for(code), payload.model_dump_json(by_alias=True), ttl_seconds)

    async def exists(self, code: str) -> bool:
        return await self._claims.exists(self.key_for(code))

    async def release(self, code: str) -> None:
        await self._claims.release(self.key_for(code))

    async def mark_permanent(self, code: str) -> None:
        await self._claims.persist(self.key_for(code), PERMANENT_MARKER)

    async def lookup(self, code: str) -> Reservation | None:
        raw = await self._claims.get(self.key_for(code))
        if raw is None:
            return None
        return _decode(code, raw)


def _decode(code: str, raw: str) -> Reservation:
    if raw == PERMANENT_MARKER:
        return Reservation(code=code, owner_id=None, reserved_at=None, origin=ReservationOrigin.PERMANENT)

    try:
        payload = ReservationPayload.model_validate_json(raw)
    except ValidationError:
        # Bare owner id
        return Reservation(code=code, owner_id=raw, reserved_at=None, origin=ReservationOrigin.CUSTOM)

    return Reservation(
        code=code,
        owner_id=payload.user_id,
        reserved_at=payload.reserved_at_datetime,
        origin=payload.origin,
    )
