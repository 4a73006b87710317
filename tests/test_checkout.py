"""Order validation and coupon pricing."""

import pytest

from ticketgate.checkout import (
    apply_coupon, build_inscription, compute_discount, parse_order,
)
from ticketgate.errors import InvalidPayload, MissingField
from ticketgate.model.orm import Coupon, PENDING


def _payload(**overrides):
    payload = {
        "mainParticipant": {"name": "Ana Souza", "email": "ana@example.com",
                            "cpf": "123.456.789-00"},
        "additionalParticipants": [{"name": "Bruno Lima"}],
        "ticket_type": "vip",
        "quantity": 2,
    }
    payload.update(overrides)
    return payload


class TestCouponMath:
    def test_percentage(self):
        coupon = Coupon(code="HALF", type="percentage", value=25)
        assert compute_discount(200.0, coupon) == 50.0
        assert apply_coupon(200.0, coupon) == (50.0, 150.0)

    def test_fixed(self):
        coupon = Coupon(code="TENOFF", type="fixed", value=10)
        assert apply_coupon(300.0, coupon) == (10.0, 290.0)

    def test_total_is_clamped_at_zero(self):
        coupon = Coupon(code="BIG", type="fixed", value=500)
        discount, total = apply_coupon(150.0, coupon)
        assert total == 0.0
        assert discount == 150.0

    def test_no_coupon(self):
        assert apply_coupon(100.0, None) == (0.0, 100.0)


class TestParseOrder:
    def test_valid(self):
        order = parse_order(_payload(coupon={"code": " half "}))
        assert order.unit_price == 150.0
        assert order.subtotal == 300.0
        assert order.coupon_code == "HALF"
        assert order.participant_names == ["Ana Souza", "Bruno Lima"]

    @pytest.mark.parametrize("field", ["mainParticipant", "ticket_type",
                                       "quantity"])
    def test_missing_required_field(self, field):
        payload = _payload()
        del payload[field]
        with pytest.raises(MissingField):
            parse_order(payload)

    def test_unknown_ticket_type(self):
        with pytest.raises(InvalidPayload):
            parse_order(_payload(ticket_type="backstage"))

    def test_invalid_email(self):
        with pytest.raises(InvalidPayload):
            parse_order(_payload(mainParticipant={"name": "Ana",
                                                  "email": "not-an-email"}))

    def test_quantity_must_match_participants(self):
        with pytest.raises(InvalidPayload):
            parse_order(_payload(quantity=3))


def test_build_inscription_creates_one_ticket_per_participant():
    order = parse_order(_payload())
    coupon = Coupon(code="HALF", type="percentage", value=50)

    ins, tickets = build_inscription(order, status=PENDING, coupon=coupon)

    assert ins.payment_status == PENDING
    assert ins.total_price == 150.0
    assert ins.discount_value == 150.0
    assert ins.applied_coupon == "HALF"
    assert [t.participant_name for t in tickets] == ["Ana Souza",
                                                     "Bruno Lima"]
    assert all(t.status == PENDING for t in tickets)
    assert all("_" not in t.id for t in tickets)
