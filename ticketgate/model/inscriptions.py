from __future__ import annotations
from typing import Callable, AsyncContextManager, Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .orm import Inscription, Ticket, PAID, PENDING, VALID

Gated = Callable[[], AsyncContextManager[None]]


class InscriptionStore:
    """Inscriptions and their nested tickets.

    Every method runs in its own transaction behind the DB gate. Multi-row
    writes (inscription + tickets, confirmation of all tickets) go through a
    single transaction so they apply all-or-nothing.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    # ---- writes: creation / deletion

    async def create(
            self, inscription: Inscription, tickets: List[Ticket]) -> None:
        for pos, t in enumerate(tickets):
            t.position = pos
        inscription.tickets = list(tickets)
        async with self.gated():
            async with self.db.begin():
                # the unit of work inserts the parent row before its tickets
                self.db.add(inscription)

    async def delete(self, inscription_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    delete(Ticket).where(
                        Ticket.inscription_id == inscription_id
                    )
                )
                res = await self.db.execute(
                    delete(Inscription).where(
                        Inscription.id == inscription_id
                    )
                )
        return res.rowcount > 0

    async def delete_pending_duplicates(
            self, payer_email: str, keep_id: str) -> List[str]:
        """Drop other still-pending inscriptions of the same payer."""
        async with self.gated():
            async with self.db.begin():
                ids = (await self.db.execute(
                    select(Inscription.id).where(
                        Inscription.payer_email == payer_email,
                        Inscription.payment_status == PENDING,
                        Inscription.id != keep_id,
                    )
                )).scalars().all()
                if ids:
                    await self.db.execute(
                        delete(Ticket).where(Ticket.inscription_id.in_(ids))
                    )
                    await self.db.execute(
                        delete(Inscription).where(Inscription.id.in_(ids))
                    )
        return list(ids)

    # ---- reads

    async def get(self, inscription_id: str) -> Optional[Inscription]:
        async with self.gated():
            async with self.db.begin():
                return (await self.db.execute(
                    select(Inscription)
                    .options(selectinload(Inscription.tickets))
                    .execution_options(populate_existing=True)
                    .where(Inscription.id == inscription_id)
                )).scalars().first()

    async def list_all(self) -> List[Inscription]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(Inscription)
                    .options(selectinload(Inscription.tickets))
                    .execution_options(populate_existing=True)
                    .order_by(Inscription.created_at.desc())
                )).scalars().all()
        return list(rows)

    async def list_paid_without_qr(self) -> List[Inscription]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(Inscription)
                    .options(selectinload(Inscription.tickets))
                    .execution_options(populate_existing=True)
                    .where(
                        Inscription.payment_status == PAID,
                        Inscription.qr_code_generated.is_(False),
                    )
                    .order_by(Inscription.created_at)
                )).scalars().all()
        return list(rows)

    async def get_ticket(
        self, inscription_id: str, ticket_id: str
    ) -> Optional[Tuple[Ticket, Inscription]]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(Ticket, Inscription)
                    .join(Inscription,
                          Inscription.id == Ticket.inscription_id)
                    .execution_options(populate_existing=True)
                    .where(Ticket.inscription_id == inscription_id,
                           Ticket.id == ticket_id)
                )).first()
        return (row[0], row[1]) if row else None

    async def find_ticket(
        self, ticket_id: str
    ) -> Optional[Tuple[Ticket, Inscription]]:
        """Look a ticket id up under every inscription; first match wins."""
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(Ticket, Inscription)
                    .join(Inscription,
                          Inscription.id == Ticket.inscription_id)
                    .execution_options(populate_existing=True)
                    .where(Ticket.id == ticket_id)
                    .order_by(Ticket.inscription_id)
                    .limit(1)
                )).first()
        return (row[0], row[1]) if row else None

    async def get_checkin_state(
        self, inscription_id: str, ticket_id: Optional[str]
    ) -> Tuple[bool, Optional[float]]:
        model = Inscription if ticket_id is None else Ticket
        stmt = select(model.is_checked_in, model.checked_in_at)
        if ticket_id is None:
            stmt = stmt.where(Inscription.id == inscription_id)
        else:
            stmt = stmt.where(Ticket.inscription_id == inscription_id,
                              Ticket.id == ticket_id)
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(stmt)).first()
        if row is None:
            return False, None
        return bool(row[0]), row[1]

    # ---- conditional writes

    async def mark_checked_in(
        self, inscription_id: str, ticket_id: Optional[str], at: float
    ) -> bool:
        """Compare-and-set the check-in flag.

        ``ticket_id=None`` targets a legacy inscription acting as its own
        ticket. Returns False when the flag was already set.
        """
        if ticket_id is None:
            stmt = (
                update(Inscription)
                .where(Inscription.id == inscription_id,
                       Inscription.is_checked_in.is_(False))
                .values(is_checked_in=True, checked_in_at=at)
            )
        else:
            stmt = (
                update(Ticket)
                .where(Ticket.inscription_id == inscription_id,
                       Ticket.id == ticket_id,
                       Ticket.is_checked_in.is_(False))
                .values(is_checked_in=True, checked_in_at=at)
            )
        stmt = stmt.execution_options(synchronize_session=False)
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(stmt)
        return res.rowcount == 1

    async def confirm(
        self,
        inscription_id: str,
        *,
        expected_status: str,
        payment_id: Optional[str],
        qr_by_ticket: Dict[str, str],
        legacy_qr: Optional[str],
        at: float,
    ) -> bool:
        """Flip an inscription to paid and validate all of its tickets.

        Applied as one transaction and only if the inscription is still in
        ``expected_status``; returns False (nothing written) otherwise.
        """
        values = dict(
            payment_status=PAID,
            updated_at=at,
            qr_code_generated=True,
        )
        if payment_id is not None:
            values["mercadopago_id"] = payment_id
        if legacy_qr is not None:
            values["qr_code_data_url"] = legacy_qr

        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    update(Inscription)
                    .where(Inscription.id == inscription_id,
                           Inscription.payment_status == expected_status)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    return False
                for ticket_id, qr in qr_by_ticket.items():
                    await self.db.execute(
                        update(Ticket)
                        .where(Ticket.inscription_id == inscription_id,
                               Ticket.id == ticket_id)
                        .values(status=VALID, qr_code_data_url=qr)
                        .execution_options(synchronize_session=False)
                    )
        return True

    async def store_qr_codes(
        self,
        inscription_id: str,
        *,
        qr_by_ticket: Dict[str, str],
        legacy_qr: Optional[str],
        at: float,
    ) -> bool:
        """Attach QR codes to an already paid inscription and set the marker."""
        values = dict(qr_code_generated=True, updated_at=at)
        if legacy_qr is not None:
            values["qr_code_data_url"] = legacy_qr
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    update(Inscription)
                    .where(Inscription.id == inscription_id,
                           Inscription.payment_status == PAID,
                           Inscription.qr_code_generated.is_(False))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    return False
                for ticket_id, qr in qr_by_ticket.items():
                    await self.db.execute(
                        update(Ticket)
                        .where(Ticket.inscription_id == inscription_id,
                               Ticket.id == ticket_id)
                        .values(status=VALID, qr_code_data_url=qr)
                        .execution_options(synchronize_session=False)
                    )
        return True
