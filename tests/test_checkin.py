"""Ticket location and the one-time check-in transition."""

import pytest

from ticketgate.checkin import check_in, locate
from ticketgate.errors import (
    AlreadyUsed, InvalidPayload, NotPaid, TicketNotFound,
)
from ticketgate.model.inscriptions import InscriptionStore
from ticketgate.model.orm import PENDING

from conftest import make_inscription


@pytest.fixture
async def ins1(store):
    ins = make_inscription(
        "ins1", tickets=[("t1", "Ana Souza"), ("t2", "Bruno Lima")]
    )
    await store.create(ins, list(ins.tickets))
    return ins


class TestScenario:
    async def test_two_tickets_check_in_independently(
            self, store, audit, ins1):
        r = await check_in(store, audit, "ins1_t1")
        assert r.participant_name == "Ana Souza"
        assert r.ticket_type == "pista"

        with pytest.raises(AlreadyUsed) as exc:
            await check_in(store, audit, "ins1_t1")
        assert exc.value.extra["participantName"] == "Ana Souza"

        r = await check_in(store, audit, "ins1_t2")
        assert r.participant_name == "Bruno Lima"

        with pytest.raises(TicketNotFound):
            await check_in(store, audit, "ins1_tX")

    async def test_second_scan_reports_original_timestamp(
            self, store, audit, ins1):
        first = await check_in(store, audit, "ins1_t1")
        with pytest.raises(AlreadyUsed) as exc:
            await check_in(store, audit, "ins1_t1")

        checked, at = await store.get_checkin_state("ins1", "t1")
        assert checked is True
        assert at == first.checked_in_at
        assert exc.value.checked_in_at is not None

    async def test_audit_entry_written_once(self, store, audit, ins1):
        await check_in(store, audit, "ins1_t1")
        with pytest.raises(AlreadyUsed):
            await check_in(store, audit, "ins1_t1")

        entries = await audit.recent()
        assert len(entries) == 1
        assert entries[0]["name"] == "Ana Souza"
        assert entries[0]["type"] == "pista"


class TestLegacy:
    async def test_unpaid_legacy_inscription_is_rejected(self, store, audit):
        await store.create(make_inscription("oldIns", status=PENDING), [])

        with pytest.raises(NotPaid):
            await check_in(store, audit, "oldIns")

        checked, at = await store.get_checkin_state("oldIns", None)
        assert checked is False
        assert at is None
        assert await audit.recent() == []

    async def test_paid_legacy_inscription_is_its_own_ticket(
            self, store, audit):
        await store.create(make_inscription("oldPaid", name="Carla"), [])

        r = await check_in(store, audit, "oldPaid")
        assert r.participant_name == "Carla"
        with pytest.raises(AlreadyUsed):
            await check_in(store, audit, "oldPaid")

    async def test_legacy_already_checked_in_flag_is_honored(
            self, store, audit):
        await store.create(make_inscription("oldUsed", checked_in=True), [])
        with pytest.raises(AlreadyUsed):
            await check_in(store, audit, "oldUsed")


class TestLocator:
    async def test_url_payload(self, store, ins1):
        found = await locate(
            store, "https://tickets.example.com/ticket.html?id=ins1_t2"
        )
        assert found.inscription.id == "ins1"
        assert found.ticket.id == "t2"

    async def test_url_without_id(self, store):
        with pytest.raises(InvalidPayload):
            await locate(store, "https://tickets.example.com/ticket.html")

    async def test_bare_ticket_id_found_by_scan(self, store, ins1):
        found = await locate(store, "t2")
        assert found.inscription.id == "ins1"
        assert found.ticket.participant_name == "Bruno Lima"

    async def test_composite_with_wrong_inscription_falls_back_to_scan(
            self, store, ins1):
        found = await locate(store, "stale_t1")
        assert found.inscription.id == "ins1"
        assert found.ticket.id == "t1"

    async def test_bare_multi_ticket_inscription_id_is_not_a_ticket(
            self, store, ins1):
        with pytest.raises(TicketNotFound):
            await locate(store, "ins1")

    async def test_nested_lookup_is_tried_before_scan(self, store, ins1):
        calls = []

        class Spy(InscriptionStore):
            async def get_ticket(self, *a):
                calls.append("nested")
                return await super().get_ticket(*a)

            async def find_ticket(self, *a):
                calls.append("scan")
                return await super().find_ticket(*a)

        spy = Spy(db=store.db, gated=store.gated)
        await locate(spy, "ins1_t1")
        assert calls == ["nested"]

        calls.clear()
        with pytest.raises(TicketNotFound):
            await locate(spy, "ins1_missing")
        assert calls == ["nested", "scan"]


class TestPaymentGate:
    async def test_nested_ticket_of_unpaid_inscription(self, store, audit):
        ins = make_inscription("pend", status=PENDING,
                               tickets=[("p1", "Davi")])
        await store.create(ins, list(ins.tickets))

        with pytest.raises(NotPaid) as exc:
            await check_in(store, audit, "pend_p1")
        assert exc.value.extra["participantName"] == "Davi"
        assert (await store.get_checkin_state("pend", "p1"))[0] is False


class TestConcurrency:
    async def test_compare_and_set_only_succeeds_once(self, store, ins1):
        assert await store.mark_checked_in("ins1", "t1", 1000.0) is True
        assert await store.mark_checked_in("ins1", "t1", 2000.0) is False
        assert await store.get_checkin_state("ins1", "t1") == (True, 1000.0)

    async def test_losing_a_race_reports_already_used(self, store, audit,
                                                      ins1):
        class Racing(InscriptionStore):
            async def mark_checked_in(self, ins_id, ticket_id, at):
                # another scanner wins between our read and our write
                await super().mark_checked_in(ins_id, ticket_id, 1234.0)
                return await super().mark_checked_in(ins_id, ticket_id, at)

        racing = Racing(db=store.db, gated=store.gated)
        with pytest.raises(AlreadyUsed) as exc:
            await check_in(racing, audit, "ins1_t1")
        assert exc.value.checked_in_at.startswith("1970-01-01T00:20:34")
        assert await audit.recent() == []

    async def test_audit_failure_does_not_fail_check_in(self, store, ins1):
        class BrokenAudit:
            async def append(self, **kw):
                raise RuntimeError("audit store down")

        r = await check_in(store, BrokenAudit(), "ins1_t2")
        assert r.participant_name == "Bruno Lima"
        assert (await store.get_checkin_state("ins1", "t2"))[0] is True
