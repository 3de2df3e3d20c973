"""De-duplication of billing webhook deliveries.

Payment providers retry deliveries, so the same event id can arrive more than
once. The first delivery claims ``webhook:<provider>:<event_id>``; later ones
see the claim and are acknowledged without being processed again. A handler
that fails calls forget() so the provider's next retry gets processed.
"""

from shortcodes.claims import ClaimStore
from shortcodes.config import get_settings

__all__ = ["WebhookIdempotencyGuard"]

settings = get_settings()


class WebhookIdempotencyGuard:
    def __init__(
        self,
        claims: ClaimStore,
        ttl_seconds: int = settings.WEBHOOK_IDEMPOTENCY_TTL_SECONDS,
        key_prefix: str = settings.WEBHOOK_KEY_PREFIX,
    ) -> None:
        self._claims = claims
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def key_for(self, provider: str, event_id: str) -> str:
        return f"{self._key_prefix}:{provider}:{event_id}"

    async def claim(self, provider: str, event_id: str, event_type: str = "") -> bool:
        """Return True only for the first delivery of ``event_id``."""
        assert event_id, "event_id must be non-empty"
        return await self._claims.claim(self.key_for(provider, event_id), event_type or "1", self._ttl_seconds)

    async def forget(self, provider: str, event_id: str) -> None:
        await self._claims.release(self.key_for(provider, event_id))
