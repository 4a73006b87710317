from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional, Tuple, TypedDict
import uuid

import httpx

from .config import CURRENCY
from .errors import UpstreamFailure
from .helpers import digits_only
from .model.orm import Inscription

logger = logging.getLogger(__name__)

MP_API_BASE = "https://api.mercadopago.com"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PreferenceResult(TypedDict):
    id: str
    redirect_url: str


class PaymentInfo(TypedDict):
    id: str
    # "approved" | "pending" | "rejected" | ...
    status: str
    external_reference: Optional[str]


class PaymentAdapter(ABC):
    @abstractmethod
    async def create_preference(
            self, inscription: Inscription, base_url: str, title: str
    ) -> PreferenceResult: ...

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentInfo]: ...

    def event_ids(self, event: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        # (event type, payment id)
        data = event.get("data") or {}
        pid = data.get("id") if isinstance(data, dict) else None
        return event.get("type", ""), (str(pid) if pid else None)


def preference_body(
        inscription: Inscription, base_url: str, title: str) -> dict:
    mp = inscription.main_participant
    qty = int(inscription.quantity)
    item = {
        "title": f"Ingresso {inscription.ticket_type.upper()} - {title}",
        "description": f"Inscrição para o evento {title}",
        "quantity": 1 if inscription.applied_coupon else qty,
        "unit_price": (
            inscription.total_price if inscription.applied_coupon
            else inscription.unit_price
        ),
        "currency_id": CURRENCY,
    }
    payer: Dict[str, Any] = {"name": mp.get("name"), "email": mp.get("email")}
    cpf = digits_only(mp.get("cpf"))
    if cpf:
        payer["identification"] = {"type": "CPF", "number": cpf}
    return {
        "items": [item],
        "payer": payer,
        "external_reference": inscription.id,
        "notification_url": f"{base_url}/api/webhook-mp",
        "back_urls": {
            "success": f"{base_url}/sucesso.html?id={inscription.id}",
            "failure": f"{base_url}/falha.html",
            "pending": f"{base_url}/pendente.html",
        },
        "auto_return": "approved",
    }


# ----------------------------
# Mercado Pago implementation
# ----------------------------
class MercadoPago(PaymentAdapter):
    def __init__(self, http: httpx.AsyncClient, access_token: str,
                 api_base: str = MP_API_BASE) -> None:
        self.http = http
        self.api_base = api_base.rstrip("/")
        self.headers = {"Authorization": f"Bearer {access_token}"}

    async def create_preference(
            self, inscription: Inscription, base_url: str, title: str
    ) -> PreferenceResult:
        try:
            r = await self.http.post(
                f"{self.api_base}/checkout/preferences",
                json=preference_body(inscription, base_url, title),
                headers={**self.headers,
                         "X-Idempotency-Key": inscription.id},
            )
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPStatusError as e:
            logger.error("mercadopago preference failed: %s %s",
                         e.response.status_code, e.response.text)
            raise UpstreamFailure(
                "Failed to create preference with Mercado Pago."
            ) from e
        except httpx.HTTPError as e:
            logger.error("mercadopago unreachable: %s", e)
            raise UpstreamFailure(
                "Failed to create preference with Mercado Pago."
            ) from e
        return {"id": str(body["id"]), "redirect_url": body["init_point"]}

    async def get_payment(self, payment_id: str) -> Optional[PaymentInfo]:
        try:
            r = await self.http.get(
                f"{self.api_base}/v1/payments/{payment_id}",
                headers=self.headers,
            )
            if r.status_code == 404:
                return None
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPError as e:
            raise UpstreamFailure(
                f"Could not fetch payment {payment_id}"
            ) from e
        return {
            "id": str(body.get("id", payment_id)),
            "status": body.get("status", ""),
            "external_reference": body.get("external_reference"),
        }


# ----------------------------
# MockPay implementation (local runs and tests)
# ----------------------------
class MockPay(PaymentAdapter):
    def __init__(self) -> None:
        self.preferences: Dict[str, dict] = {}
        self.payments: Dict[str, PaymentInfo] = {}

    async def create_preference(
            self, inscription: Inscription, base_url: str, title: str
    ) -> PreferenceResult:
        pref_id = f"mock_{uuid.uuid4().hex}"
        self.preferences[pref_id] = preference_body(
            inscription, base_url, title
        )
        return {"id": pref_id, "redirect_url": f"/mockpay/{pref_id}"}

    def emit_payment(self, inscription_id: str,
                     status: str = "approved") -> str:
        """Register a payment for an inscription; returns its id."""
        pid = str(uuid.uuid4().int % 10**12)
        self.payments[pid] = {
            "id": pid, "status": status,
            "external_reference": inscription_id,
        }
        return pid

    async def get_payment(self, payment_id: str) -> Optional[PaymentInfo]:
        return self.payments.get(payment_id)
