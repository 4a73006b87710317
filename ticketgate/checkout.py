from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import TICKET_PRICES
from .errors import InvalidPayload, MissingField
from .helpers import is_valid_email, new_id, now_ts
from .model.coupons import PERCENTAGE, FIXED
from .model.orm import Coupon, Inscription, Ticket


@dataclass
class Order:
    main_participant: Dict[str, Any]
    additional_participants: List[Dict[str, Any]]
    ticket_type: str
    quantity: int
    unit_price: float
    coupon_code: Optional[str]

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    @property
    def participant_names(self) -> List[str]:
        names = [self.main_participant["name"]]
        names.extend(p["name"] for p in self.additional_participants)
        return names


def compute_discount(total: float, coupon: Optional[Coupon]) -> float:
    """Discount granted by ``coupon`` on ``total``, never more than total."""
    if coupon is None:
        return 0.0
    if coupon.type == PERCENTAGE:
        discount = total * coupon.value / 100
    elif coupon.type == FIXED:
        discount = coupon.value
    else:
        raise InvalidPayload(f"Unknown coupon type: {coupon.type}")
    return round(min(max(discount, 0.0), total), 2)


def apply_coupon(total: float,
                 coupon: Optional[Coupon]) -> Tuple[float, float]:
    # -> (discount, total clamped at 0)
    discount = compute_discount(total, coupon)
    return discount, round(max(total - discount, 0.0), 2)


def _coupon_code(raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        raw = raw.get("code")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidPayload("Invalid coupon")
    return raw.strip().upper()


def parse_order(payload: Dict[str, Any]) -> Order:
    main = payload.get("mainParticipant")
    ticket_type = payload.get("ticket_type")
    quantity = payload.get("quantity")
    if not main:
        raise MissingField("mainParticipant")
    if not ticket_type:
        raise MissingField("ticket_type")
    if not quantity:
        raise MissingField("quantity")
    if not isinstance(main, dict):
        raise InvalidPayload("mainParticipant must be an object")
    if not (main.get("name") or "").strip():
        raise MissingField("mainParticipant.name")
    if not (main.get("email") or "").strip():
        raise MissingField("mainParticipant.email")
    if not is_valid_email(main["email"]):
        raise InvalidPayload("mainParticipant.email must be a valid email "
                             "address")

    unit_price = TICKET_PRICES.get(ticket_type)
    if unit_price is None:
        raise InvalidPayload("Invalid ticket type")

    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise InvalidPayload("quantity must be a number")
    if quantity < 1:
        raise InvalidPayload("quantity must be at least 1")

    additional = payload.get("additionalParticipants") or []
    if not isinstance(additional, list):
        raise InvalidPayload("additionalParticipants must be a list")
    for p in additional:
        if not isinstance(p, dict) or not (p.get("name") or "").strip():
            raise MissingField("additionalParticipants[].name")
    if quantity != 1 + len(additional):
        raise InvalidPayload(
            "quantity does not match the number of participants"
        )

    return Order(
        main_participant={**main, "email": main["email"].strip()},
        additional_participants=additional,
        ticket_type=ticket_type,
        quantity=quantity,
        unit_price=unit_price,
        coupon_code=_coupon_code(payload.get("coupon")),
    )


def build_inscription(
    order: Order,
    *,
    status: str,
    coupon: Optional[Coupon],
) -> Tuple[Inscription, List[Ticket]]:
    """One inscription plus one ticket per participant, both in ``status``."""
    discount, total = apply_coupon(order.subtotal, coupon)
    ts = now_ts()
    inscription = Inscription(
        id=new_id(),
        main_participant=order.main_participant,
        additional_participants=order.additional_participants,
        payer_email=order.main_participant["email"].lower(),
        ticket_type=order.ticket_type,
        quantity=order.quantity,
        unit_price=order.unit_price,
        total_price=total,
        applied_coupon=coupon.code if coupon is not None else None,
        discount_value=discount,
        payment_status=status,
        created_at=ts,
        updated_at=ts,
        qr_code_generated=False,
        is_checked_in=False,
    )
    tickets = [
        Ticket(
            id=new_id(),
            participant_name=name,
            ticket_type=order.ticket_type,
            status=status,
            is_checked_in=False,
        )
        for name in order.participant_names
    ]
    return inscription, tickets
