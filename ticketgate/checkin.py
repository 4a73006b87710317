from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import AlreadyUsed, InvalidPayload, NotPaid, TicketNotFound
from .helpers import now_ts, to_iso
from .infra.timings import timeit
from .model.checkins import CheckinLog
from .model.inscriptions import InscriptionStore
from .model.orm import Inscription, Ticket, PAID
from .scan import (
    Composite, Invalid, LegacyLookup, NestedLookup, ScanLookup, lookup_plan,
    parse_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class Located:
    inscription: Inscription
    # None when the inscription is a legacy record acting as its own ticket
    ticket: Optional[Ticket]

    @property
    def ticket_id(self) -> Optional[str]:
        return None if self.ticket is None else self.ticket.id

    @property
    def participant_name(self) -> str:
        if self.ticket is not None and self.ticket.participant_name:
            return self.ticket.participant_name
        return (self.inscription.main_participant or {}).get("name", "")

    @property
    def ticket_type(self) -> str:
        if self.ticket is not None and self.ticket.ticket_type:
            return self.ticket.ticket_type
        return self.inscription.ticket_type

    @property
    def is_checked_in(self) -> bool:
        rec = self.inscription if self.ticket is None else self.ticket
        return bool(rec.is_checked_in)

    @property
    def checked_in_at(self) -> Optional[float]:
        rec = self.inscription if self.ticket is None else self.ticket
        return rec.checked_in_at

    @property
    def contact(self) -> Optional[str]:
        mp = self.inscription.main_participant or {}
        return mp.get("phone") or mp.get("email")


@dataclass
class CheckinResult:
    participant_name: str
    ticket_type: str
    checked_in_at: float


async def locate(store: InscriptionStore, raw: str) -> Located:
    parsed = parse_payload(raw)
    if isinstance(parsed, Invalid):
        raise InvalidPayload(f"Invalid QR code format: {parsed.reason}")

    for step in lookup_plan(parsed):
        if isinstance(step, NestedLookup):
            found = await store.get_ticket(step.inscription_id, step.ticket_id)
            if found is not None:
                return Located(inscription=found[1], ticket=found[0])
        elif isinstance(step, LegacyLookup):
            ins = await store.get(step.inscription_id)
            # only the one-ticket schema lets an inscription stand in for
            # its ticket
            if ins is not None and not ins.tickets:
                return Located(inscription=ins, ticket=None)
        elif isinstance(step, ScanLookup):
            logger.info("ticket %s missed direct lookups, scanning",
                        step.ticket_id)
            found = await store.find_ticket(step.ticket_id)
            if found is not None:
                return Located(inscription=found[1], ticket=found[0])

    missing = (parsed.ticket_id if isinstance(parsed, Composite)
               else parsed.id)
    raise TicketNotFound(missing)


async def check_in(
    store: InscriptionStore,
    audit: CheckinLog,
    raw: str,
) -> CheckinResult:
    async with timeit("checkin.locate"):
        located = await locate(store, raw)

    name = located.participant_name
    if located.inscription.payment_status != PAID:
        raise NotPaid(name)

    if located.is_checked_in:
        raise AlreadyUsed(to_iso(located.checked_in_at), name)

    at = now_ts()
    async with timeit("checkin.mark"):
        won = await store.mark_checked_in(
            located.inscription.id, located.ticket_id, at
        )
    if not won:
        # a concurrent scan flipped the flag between our read and write
        _, first_at = await store.get_checkin_state(
            located.inscription.id, located.ticket_id
        )
        raise AlreadyUsed(to_iso(first_at), name)

    try:
        async with timeit("checkin.audit"):
            await audit.append(
                name=name,
                type_=located.ticket_type,
                at=at,
                contact=located.contact,
                inscription_id=located.inscription.id,
                ticket_id=located.ticket_id,
            )
    except Exception:
        logger.exception("could not write check-in audit entry for %s/%s",
                         located.inscription.id, located.ticket_id)

    logger.info("checked in %s (%s/%s)", name, located.inscription.id,
                located.ticket_id)
    return CheckinResult(
        participant_name=name,
        ticket_type=located.ticket_type,
        checked_in_at=at,
    )
