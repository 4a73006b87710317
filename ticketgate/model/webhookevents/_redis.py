from __future__ import annotations
import redis.asyncio as redis


# ---- keys
def k_payment(payment_id: str) -> str: return f"mp:payment:{payment_id}"


class WebhookEventStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def claim(self, payment_id: str) -> bool:
        # NX gate: True only for the first delivery of this payment
        ok = await self.r.set(
            k_payment(payment_id), "1", nx=True, ex=self.ttl
        )
        return bool(ok)

    async def release(self, payment_id: str) -> None:
        # let a later delivery retry after a failed attempt
        await self.r.delete(k_payment(payment_id))
