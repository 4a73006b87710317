import argparse
import asyncio
import os

from ticketgate.infra.sql import make_async_engine
from ticketgate.model.coupons import COUPON_TYPES, CouponStore
from ticketgate.model.orm import Base


async def upsert_coupons(database_url: str, coupons) -> None:
    engine, SessionAsync, gated = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionAsync() as session:
            store = CouponStore(db=session, gated=gated)
            for code, type_, value in coupons:
                coupon = await store.upsert(code, type_, value)
                print(f'✅ coupon {coupon.code}: {coupon.type} {coupon.value}')
    finally:
        await engine.dispose()


def main():
    p = argparse.ArgumentParser(description="Create or update coupons.")
    p.add_argument("code")
    p.add_argument("type", choices=COUPON_TYPES)
    p.add_argument("value", type=float)
    p.add_argument("--database-url", default=os.getenv("DATABASE_URL"))
    args = p.parse_args()
    if not args.database_url:
        p.error("NEED DATABASE_URL (env or --database-url)")
    asyncio.run(upsert_coupons(
        args.database_url, [(args.code, args.type, args.value)]
    ))


if __name__ == '__main__':
    main()
