from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import ORJSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .checkin import check_in
from .checkout import build_inscription, parse_order
from .config import Settings, load_settings
from .errors import (
    DomainError, InvalidCoupon, InvalidPayload, Misconfigured, MissingField,
    NotFound, Unauthorized,
)
from .fulfillment import confirm_inscription, regenerate_qr_codes
from .helpers import ct_equal, to_iso
from .infra.sql import make_async_engine
from .infra.timings import install_shutdown_report, timeit
from .mailer import Mailer, OutboxMailer, ResendMailer
from .model.checkins import CheckinLog
from .model.coupons import CouponStore, PERCENTAGE
from .model.inscriptions import InscriptionStore
from .model.orm import (
    Base, Inscription, Ticket, AWAITING_APPROVAL, PENDING,
)
from .model.webhookevents import (
    WebhookEventStore, new_store, BACKEND as WEBHOOK_EVENTS_BACKEND
)
from .payments import MercadoPago, MockPay, PaymentAdapter

import redis.asyncio as redis

logger = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = FastAPI(
    title="ticketgate",
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

install_shutdown_report(app)


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    if exc.http_status >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc)
    return ORJSONResponse(exc.to_body(), status_code=exc.http_status)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _configure():
    settings = load_settings()
    app.state.settings = settings
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logger.info("ticketgate is starting up...")
    logger.info("   - Payment backend: %s", settings.payment_backend)
    logger.info("   - Mail backend: %s", settings.mail_backend)
    logger.info("   - Webhook events backend: %s", WEBHOOK_EVENTS_BACKEND)
    if not settings.ok:
        # every request will answer "misconfigured" until this is fixed
        logger.error("missing configuration: %s",
                     ", ".join(settings.missing))


@app.on_event("startup")
async def _db_init():
    settings: Settings = app.state.settings
    app.state.engine = None
    if not settings.ok:
        return
    engine, SessionAsync, gated = make_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        gate_limit=settings.db_gate_limit,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.engine = engine
    app.state.sessionmaker = SessionAsync
    app.state.gated = gated


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=64, max_keepalive_connections=32
        ),
    )


@app.on_event("startup")
async def _redis_start():
    settings: Settings = app.state.settings
    app.state.redis = None
    if settings.ok and WEBHOOK_EVENTS_BACKEND != "pg":
        app.state.redis = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=settings.redis_max_conn,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _providers_start():
    settings: Settings = app.state.settings
    if settings.payment_backend == "mock":
        payments: PaymentAdapter = MockPay()
    else:
        payments = MercadoPago(app.state.http, settings.mp_access_token or "")
    if settings.mail_backend == "outbox":
        mailer: Mailer = OutboxMailer()
    else:
        mailer = ResendMailer(app.state.http, settings.resend_api_key or "",
                              settings.mail_from)
    app.state.payments = payments
    app.state.mailer = mailer


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()
        app.state.engine = None


# ----------------------------
# Dependencies
# ----------------------------
def configured(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    if not settings.ok:
        raise Misconfigured(settings.missing)
    return settings


async def inscriptions(
    request: Request, _: Settings = Depends(configured)
) -> InscriptionStore:
    async with request.app.state.sessionmaker() as session:
        yield InscriptionStore(db=session, gated=request.app.state.gated)


async def coupons(
    request: Request, _: Settings = Depends(configured)
) -> CouponStore:
    async with request.app.state.sessionmaker() as session:
        yield CouponStore(db=session, gated=request.app.state.gated)


async def checkin_log(
    request: Request, _: Settings = Depends(configured)
) -> CheckinLog:
    async with request.app.state.sessionmaker() as session:
        yield CheckinLog(db=session, gated=request.app.state.gated)


def payments(request: Request) -> PaymentAdapter:
    return request.app.state.payments


def mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def require_admin(request: Request, _: Settings = Depends(configured)):
    if not request.session.get("admin_user"):
        raise Unauthorized("Admin login required")


def _require_id(value: Optional[str], name: str = "id") -> str:
    if not value or not str(value).strip():
        raise MissingField(name)
    return str(value).strip()


# ----------------------------
# Serializers
# ----------------------------
def _ticket_json(t: Ticket, with_qr: bool = True) -> Dict[str, Any]:
    out = {
        "id": t.id,
        "participantName": t.participant_name,
        "ticketType": t.ticket_type,
        "status": t.status,
        "isCheckedIn": bool(t.is_checked_in),
        "checkedInAt": to_iso(t.checked_in_at),
    }
    if with_qr:
        out["qrCodeDataURL"] = t.qr_code_data_url
    return out


def _inscription_json(ins: Inscription) -> Dict[str, Any]:
    return {
        "id": ins.id,
        "mainParticipant": ins.main_participant,
        "additionalParticipants": ins.additional_participants or [],
        "ticket_type": ins.ticket_type,
        "quantity": ins.quantity,
        "unit_price": ins.unit_price,
        "total_price": ins.total_price,
        "appliedCoupon": ins.applied_coupon,
        "discountValue": ins.discount_value,
        "paymentStatus": ins.payment_status,
        "createdAt": to_iso(ins.created_at),
        "updatedAt": to_iso(ins.updated_at),
        "mercadoPagoId": ins.mercadopago_id,
        "qrCodeGenerated": bool(ins.qr_code_generated),
        "isCheckedIn": bool(ins.is_checked_in),
        "checkedInAt": to_iso(ins.checked_in_at),
        "tickets": [_ticket_json(t, with_qr=False) for t in ins.tickets],
    }


# ----------------------------
# Health
# ----------------------------
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "ticketgate"}


# ----------------------------
# API: Checkout
# ----------------------------
@app.post("/api/create-preference")
async def create_preference(
    payload: dict,
    settings: Settings = Depends(configured),
    store: InscriptionStore = Depends(inscriptions),
    cs: CouponStore = Depends(coupons),
    pay: PaymentAdapter = Depends(payments),
):
    order = parse_order(payload)
    coupon = None
    if order.coupon_code:
        coupon = await cs.get(order.coupon_code)
        if coupon is None:
            raise NotFound("Invalid or unknown coupon")

    inscription, tickets = build_inscription(
        order, status=PENDING, coupon=coupon
    )
    if inscription.total_price <= 0:
        raise InvalidPayload(
            "Free inscriptions must be requested with a voucher"
        )

    async with timeit("store.create_inscription"):
        await store.create(inscription, tickets)

    async with timeit("payments.create_preference"):
        pref = await pay.create_preference(
            inscription, settings.public_base_url, settings.event_name
        )
    logger.info("preference %s created for inscription %s", pref["id"],
                inscription.id)
    return {
        "id": pref["id"],
        "redirect_url": pref["redirect_url"],
        "inscriptionId": inscription.id,
    }


@app.post("/api/request-voucher-inscription")
async def request_voucher_inscription(
    payload: dict,
    store: InscriptionStore = Depends(inscriptions),
    cs: CouponStore = Depends(coupons),
):
    order = parse_order(payload)
    if not order.coupon_code:
        raise MissingField("coupon")
    coupon = await cs.get(order.coupon_code)
    if (coupon is None or coupon.type != PERCENTAGE
            or coupon.value != 100):
        raise InvalidCoupon("This coupon is not valid for a free inscription.")

    inscription, tickets = build_inscription(
        order, status=AWAITING_APPROVAL, coupon=coupon
    )
    await store.create(inscription, tickets)
    logger.info("voucher inscription %s awaiting approval", inscription.id)
    return {
        "success": True,
        "message": "Inscription request received.",
        "inscriptionId": inscription.id,
    }


@app.post("/api/validate-coupon")
async def validate_coupon(
    payload: dict,
    cs: CouponStore = Depends(coupons),
):
    code = _require_id(payload.get("couponCode"), "couponCode")
    coupon = await cs.get(code)
    if coupon is None:
        raise NotFound("Invalid or unknown coupon")
    return {"code": coupon.code, "type": coupon.type, "value": coupon.value}


# ----------------------------
# Webhook endpoint (Mercado Pago)
# ----------------------------
def _event_from_request(body: Any, request: Request) -> Dict[str, Any]:
    event = body if isinstance(body, dict) else {}
    q = request.query_params
    if not event.get("type") and (q.get("type") or q.get("topic")):
        event["type"] = q.get("type") or q.get("topic")
    if not event.get("data") and (q.get("data.id") or q.get("id")):
        event["data"] = {"id": q.get("data.id") or q.get("id")}
    return event


@app.post("/api/webhook-mp")
async def payments_webhook(request: Request):
    # Always 200: the provider re-delivers anything else.
    settings: Settings = request.app.state.settings
    if not settings.ok:
        logger.error("webhook dropped, server misconfigured: %s",
                     ", ".join(settings.missing))
        return {"ok": False, "reason": "misconfigured"}

    try:
        body = await request.json()
    except ValueError:
        body = None
    pay: PaymentAdapter = request.app.state.payments
    kind, payment_id = pay.event_ids(_event_from_request(body, request))
    if kind != "payment" or not payment_id:
        return {"ok": True, "ignored": True}

    async with request.app.state.sessionmaker() as session:
        gated = request.app.state.gated
        events: WebhookEventStore = new_store(
            db=session, r=request.app.state.redis, gated=gated
        )
        store = InscriptionStore(db=session, gated=gated)
        claimed = False
        try:
            async with timeit("payments.get_payment"):
                info = await pay.get_payment(payment_id)
            if info is None:
                logger.warning("webhook for unknown payment %s", payment_id)
                return {"ok": True, "ignored": True}
            if info["status"] != "approved" or not info["external_reference"]:
                return {"ok": True, "payment_status": info["status"]}

            claimed = await events.claim(payment_id)
            if not claimed:
                return {"ok": True, "idempotent": True}

            confirmed = await confirm_inscription(
                store,
                request.app.state.mailer,
                info["external_reference"],
                expected_status=PENDING,
                payment_id=payment_id,
                base_url=settings.public_base_url,
                event_name=settings.event_name,
            )
            return {"ok": True, "confirmed": confirmed}
        except Exception:
            logger.exception("webhook processing failed for payment %s",
                             payment_id)
            if claimed:
                try:
                    await events.release(payment_id)
                except Exception:
                    logger.exception("could not release webhook gate %s",
                                     payment_id)
            return {"ok": False}


# ----------------------------
# API: Inscription status and tickets
# ----------------------------
@app.get("/api/check-status")
async def check_status(
    id: Optional[str] = None,
    store: InscriptionStore = Depends(inscriptions),
):
    ins = await store.get(_require_id(id))
    if ins is None:
        raise NotFound("Inscription not found")
    return {"status": ins.payment_status}


@app.get("/api/get-ticket")
async def get_ticket(
    id: Optional[str] = None,
    store: InscriptionStore = Depends(inscriptions),
):
    ins = await store.get(_require_id(id))
    if ins is None:
        raise NotFound("Ticket not found")
    qr = ins.qr_code_data_url
    if qr is None and ins.tickets:
        qr = ins.tickets[0].qr_code_data_url
    return {
        "participantName": ins.main_participant.get("name"),
        "ticketType": ins.ticket_type,
        "quantity": ins.quantity,
        "qrCodeDataURL": qr,
    }


@app.get("/api/get-tickets")
async def get_tickets(
    id: Optional[str] = None,
    store: InscriptionStore = Depends(inscriptions),
):
    ins = await store.get(_require_id(id))
    if ins is None or not ins.tickets:
        raise NotFound("No tickets found for this inscription")
    return [_ticket_json(t) for t in ins.tickets]


# ----------------------------
# API: Check-in at the door
# ----------------------------
@app.post("/api/validate-ticket")
async def validate_ticket(
    payload: dict,
    store: InscriptionStore = Depends(inscriptions),
    audit: CheckinLog = Depends(checkin_log),
):
    raw = payload.get("ticketId")
    if not isinstance(raw, str) or not raw.strip():
        raise MissingField("ticketId", "No ticket id was provided.")
    result = await check_in(store, audit, raw)
    return {
        "status": "success",
        "message": "VALID ENTRY",
        "participantName": result.participant_name,
        "ticketType": result.ticket_type,
    }


@app.get("/api/checkins")
async def list_checkins(
    limit: int = 500,
    audit: CheckinLog = Depends(checkin_log),
):
    items = await audit.recent(limit=max(1, min(limit, 5000)))
    for item in items:
        item["time"] = to_iso(item["time"])
    return items


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/login")
async def admin_login(
    payload: dict,
    request: Request,
    settings: Settings = Depends(configured),
):
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        raise MissingField("password")
    if not ct_equal(password, settings.admin_password):
        raise Unauthorized("Wrong password")
    request.session["admin_user"] = "admin"
    return {"success": True}


@app.post("/api/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return {"success": True}


@app.get("/api/admin/inscriptions", dependencies=[Depends(require_admin)])
async def admin_inscriptions(
    store: InscriptionStore = Depends(inscriptions),
):
    return [_inscription_json(ins) for ins in await store.list_all()]


@app.post("/api/admin/approve-inscription",
          dependencies=[Depends(require_admin)])
async def admin_approve_inscription(
    payload: dict,
    settings: Settings = Depends(configured),
    store: InscriptionStore = Depends(inscriptions),
    m: Mailer = Depends(mailer),
):
    inscription_id = _require_id(payload.get("id"))
    ins = await store.get(inscription_id)
    if ins is None or ins.payment_status != AWAITING_APPROVAL:
        raise NotFound("Inscription not found or already processed.")
    confirmed = await confirm_inscription(
        store, m, inscription_id,
        expected_status=AWAITING_APPROVAL,
        payment_id=None,
        base_url=settings.public_base_url,
        event_name=settings.event_name,
        template="voucher_approved.html",
    )
    if not confirmed:
        raise NotFound("Inscription not found or already processed.")
    return {"success": True, "message": "Inscription approved and email sent."}


@app.post("/api/admin/delete-inscription",
          dependencies=[Depends(require_admin)])
async def admin_delete_inscription(
    payload: dict,
    store: InscriptionStore = Depends(inscriptions),
):
    inscription_id = _require_id(payload.get("id"))
    if not await store.delete(inscription_id):
        raise NotFound("Inscription not found")
    logger.info("inscription %s deleted by admin", inscription_id)
    return {"success": True, "message": "Inscription deleted."}


@app.post("/api/admin/regenerate-qrcodes",
          dependencies=[Depends(require_admin)])
async def admin_regenerate_qrcodes(
    store: InscriptionStore = Depends(inscriptions),
):
    count = await regenerate_qr_codes(store)
    return {"success": True, "count": count}
