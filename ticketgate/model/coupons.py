from __future__ import annotations
from typing import Callable, AsyncContextManager, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import Coupon

Gated = Callable[[], AsyncContextManager[None]]

PERCENTAGE = "percentage"
FIXED = "fixed"
COUPON_TYPES = (PERCENTAGE, FIXED)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def get(self, code: str) -> Optional[Coupon]:
        async with self.gated():
            async with self.db.begin():
                return (await self.db.execute(
                    select(Coupon).where(Coupon.code == normalize_code(code))
                )).scalars().first()

    async def upsert(self, code: str, type_: str, value: float) -> Coupon:
        if type_ not in COUPON_TYPES:
            raise ValueError(f"unknown coupon type: {type_}")
        async with self.gated():
            async with self.db.begin():
                coupon = await self.db.get(Coupon, normalize_code(code))
                if coupon is None:
                    coupon = Coupon(code=normalize_code(code))
                    self.db.add(coupon)
                coupon.type = type_
                coupon.value = float(value)
        return coupon
