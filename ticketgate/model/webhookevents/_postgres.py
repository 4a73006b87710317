from __future__ import annotations
from typing import Callable, AsyncContextManager

from sqlalchemy import Column, Float, String, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..orm import Base
from ...helpers import now_ts


class WebhookPaymentSeen(Base):
    __tablename__ = "webhook_payments_seen"
    payment_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class WebhookEventStore:
    def __init__(
        self, *, db: AsyncSession,
        gated: Callable[[], AsyncContextManager[None]]
    ) -> None:
        self.db = db
        self.gated = gated

    async def claim(self, payment_id: str) -> bool:
        async with self.gated():
            try:
                async with self.db.begin():
                    seen = (await self.db.execute(
                        select(WebhookPaymentSeen.payment_id).where(
                            WebhookPaymentSeen.payment_id == payment_id
                        )
                    )).first()
                    if seen is not None:
                        return False
                    self.db.add(WebhookPaymentSeen(
                        payment_id=payment_id, created_at=now_ts()
                    ))
            except IntegrityError:
                # a concurrent delivery inserted the row first
                return False
        return True

    async def release(self, payment_id: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    delete(WebhookPaymentSeen).where(
                        WebhookPaymentSeen.payment_id == payment_id
                    )
                )
