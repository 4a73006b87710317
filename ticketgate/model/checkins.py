from __future__ import annotations
from typing import Callable, AsyncContextManager, Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .orm import CheckinEntry

Gated = Callable[[], AsyncContextManager[None]]


class CheckinLog:
    """Append-only audit of successful check-ins, used for reporting."""

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def append(
        self,
        *,
        name: str,
        type_: str,
        at: float,
        contact: Optional[str],
        inscription_id: Optional[str] = None,
        ticket_id: Optional[str] = None,
    ) -> None:
        async with self.gated():
            async with self.db.begin():
                self.db.add(CheckinEntry(
                    name=name,
                    type=type_,
                    time=at,
                    contact=contact,
                    inscription_id=inscription_id,
                    ticket_id=ticket_id,
                ))

    async def recent(self, limit: int = 500) -> List[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(CheckinEntry)
                    .order_by(CheckinEntry.time.desc(), CheckinEntry.id.desc())
                    .limit(limit)
                )).scalars().all()
        return [
            {"name": r.name, "type": r.type, "time": r.time}
            for r in rows
        ]
