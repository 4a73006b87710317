"""Pytest configuration and shared fixtures."""

import os

# backend modules are picked at import time
os.environ["WEBHOOK_EVENTS_BACKEND"] = "pg"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from ticketgate.helpers import now_ts
from ticketgate.infra.sql import make_async_engine
from ticketgate.model.checkins import CheckinLog
from ticketgate.model.coupons import CouponStore
from ticketgate.model.inscriptions import InscriptionStore
from ticketgate.model.orm import Base, Coupon, Inscription, Ticket, PAID

ADMIN_PASSWORD = "letmein"


def make_inscription(
    id: str,
    *,
    status: str = PAID,
    tickets=(),
    email: str = "ana@example.com",
    name: str = "Ana Souza",
    phone: str = "+55 11 99999-0000",
    ticket_type: str = "pista",
    checked_in: bool = False,
    created_at: float | None = None,
) -> Inscription:
    """Inscription with nested tickets given as (ticket_id, name) pairs.

    No tickets means the legacy one-ticket schema.
    """
    ts = created_at if created_at is not None else now_ts()
    ins = Inscription(
        id=id,
        main_participant={"name": name, "email": email, "cpf": "123.456.789-00",
                          "phone": phone},
        additional_participants=[{"name": n} for _, n in tickets[1:]],
        payer_email=email,
        ticket_type=ticket_type,
        quantity=max(1, len(tickets)),
        unit_price=100.0,
        total_price=100.0 * max(1, len(tickets)),
        discount_value=0.0,
        payment_status=status,
        created_at=ts,
        updated_at=ts,
        qr_code_generated=False,
        is_checked_in=checked_in,
        checked_in_at=ts if checked_in else None,
    )
    ins.tickets = [
        Ticket(id=tid, position=pos, participant_name=n,
               ticket_type=ticket_type,
               status="valid" if status == PAID else status,
               is_checked_in=False)
        for pos, (tid, n) in enumerate(tickets)
    ]
    return ins


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ticketgate.db'}"


@pytest.fixture
async def db(db_url):
    engine, SessionAsync, gated = make_async_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SessionAsync, gated
    await engine.dispose()


@pytest.fixture
async def store(db):
    SessionAsync, gated = db
    async with SessionAsync() as session:
        yield InscriptionStore(db=session, gated=gated)


@pytest.fixture
async def audit(db):
    SessionAsync, gated = db
    async with SessionAsync() as session:
        yield CheckinLog(db=session, gated=gated)


@pytest.fixture
async def coupon_store(db):
    SessionAsync, gated = db
    async with SessionAsync() as session:
        yield CouponStore(db=session, gated=gated)


@pytest.fixture
def app_env(monkeypatch, db_url):
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("PAYMENT_BACKEND", "mock")
    monkeypatch.setenv("MAIL_BACKEND", "outbox")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://tickets.example.com")
    monkeypatch.delenv("MP_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)


@pytest.fixture
def client(app_env) -> TestClient:
    from ticketgate.server import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(client) -> TestClient:
    r = client.post("/api/admin/login", json={"password": ADMIN_PASSWORD})
    assert r.status_code == 200
    return client


@pytest.fixture
def seed(db_url):
    """Insert ORM rows synchronously, next to the running app."""
    engine = create_engine(db_url)
    Base.metadata.create_all(engine)

    def _seed(*rows):
        with Session(engine) as session:
            session.add_all(rows)
            session.commit()

    yield _seed
    engine.dispose()


@pytest.fixture
def coupons(seed):
    seed(
        Coupon(code="HALF", type="percentage", value=50),
        Coupon(code="TENOFF", type="fixed", value=10),
        Coupon(code="FREE", type="percentage", value=100),
    )
