from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

from .errors import NotFound
from .helpers import now_ts
from .infra.timings import timeit
from .mailer import Mailer, render_confirmation
from .model.inscriptions import InscriptionStore
from .model.orm import Inscription, PAID
from .qrcodes import render_qr
from .scan import ticket_payload

logger = logging.getLogger(__name__)


async def _render_codes(
        ins: Inscription) -> Tuple[Dict[str, str], Optional[str]]:
    # -> (qr per ticket id, legacy qr for ticketless inscriptions)
    if not ins.tickets:
        return {}, await render_qr(ticket_payload(ins.id, None))
    qr_by_ticket = {}
    for t in ins.tickets:
        qr_by_ticket[t.id] = await render_qr(ticket_payload(ins.id, t.id))
    return qr_by_ticket, None


async def confirm_inscription(
    store: InscriptionStore,
    mailer: Mailer,
    inscription_id: str,
    *,
    expected_status: str,
    payment_id: Optional[str],
    base_url: str,
    event_name: str,
    template: str = "payment_confirmed.html",
) -> bool:
    """Mark an inscription paid, issue its QR codes and email the payer.

    Returns False without side effects when the inscription is already paid
    or is no longer in ``expected_status``.
    """
    ins = await store.get(inscription_id)
    if ins is None:
        raise NotFound(f"Inscription not found: {inscription_id}")
    if ins.payment_status == PAID:
        logger.info("inscription %s already paid, skipping", inscription_id)
        return False
    if ins.payment_status != expected_status:
        return False

    async with timeit("fulfillment.qr"):
        qr_by_ticket, legacy_qr = await _render_codes(ins)

    async with timeit("fulfillment.confirm"):
        confirmed = await store.confirm(
            inscription_id,
            expected_status=expected_status,
            payment_id=payment_id,
            qr_by_ticket=qr_by_ticket,
            legacy_qr=legacy_qr,
            at=now_ts(),
        )
    if not confirmed:
        logger.info("inscription %s confirmed concurrently", inscription_id)
        return False
    logger.info("inscription %s paid (%d tickets)", inscription_id,
                len(qr_by_ticket) or 1)

    dropped = await store.delete_pending_duplicates(
        ins.payer_email, keep_id=inscription_id
    )
    if dropped:
        logger.info("removed duplicate pending inscriptions %s", dropped)

    try:
        async with timeit("fulfillment.email"):
            await mailer.send(render_confirmation(
                ins, template=template, base_url=base_url,
                event_name=event_name,
            ))
    except Exception:
        logger.exception("confirmation email for %s failed", inscription_id)
    return True


async def regenerate_qr_codes(store: InscriptionStore) -> int:
    """Issue QR codes for paid inscriptions that never got them."""
    processed = 0
    for ins in await store.list_paid_without_qr():
        qr_by_ticket, legacy_qr = await _render_codes(ins)
        if await store.store_qr_codes(
            ins.id, qr_by_ticket=qr_by_ticket, legacy_qr=legacy_qr,
            at=now_ts(),
        ):
            processed += 1
            logger.info("QR codes generated for inscription %s", ins.id)
    return processed
