from abc import ABC, abstractmethod
import logging
from typing import List, TypedDict

import httpx
from jinja2 import Environment, DictLoader, select_autoescape

from .errors import UpstreamFailure
from .model.orm import Inscription

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

TEMPLATES = {
    "payment_confirmed.html": """
<h1>Olá, {{ name }}!</h1>
<p>O seu pagamento para o {{ event_name }} foi confirmado.</p>
<p>{{ quantity }} bilhete(s) do tipo <strong>{{ ticket_type|upper }}</strong>.</p>
<p>Para aceder aos seus bilhetes digitais, clique no link abaixo:</p>
<a href="{{ ticket_url }}">Ver os seus Bilhetes</a>
<p>Obrigado!</p>
""",
    "voucher_approved.html": """
<h1>Olá, {{ name }}!</h1>
<p>A sua solicitação de inscrição com o voucher <strong>{{ coupon }}</strong> foi aprovada!</p>
<p>Para aceder aos seus bilhetes digitais, clique no link abaixo:</p>
<a href="{{ ticket_url }}">Ver os seus Bilhetes</a>
<p>Obrigado!</p>
""",
}

SUBJECTS = {
    "payment_confirmed.html": "Os seus bilhetes para o {event_name}",
    "voucher_approved.html":
        "O seu voucher para o {event_name} foi aprovado!",
}

env = Environment(loader=DictLoader(TEMPLATES),
                  autoescape=select_autoescape(["html"]))


class Email(TypedDict):
    to: str
    subject: str
    html: str


def ticket_url(base_url: str, inscription_id: str) -> str:
    return f"{base_url}/ticket.html?id={inscription_id}"


def render_confirmation(
    inscription: Inscription, *, template: str, base_url: str,
    event_name: str,
) -> Email:
    mp = inscription.main_participant
    html = env.get_template(template).render(
        name=mp.get("name", ""),
        event_name=event_name,
        quantity=inscription.quantity,
        ticket_type=inscription.ticket_type,
        coupon=inscription.applied_coupon,
        ticket_url=ticket_url(base_url, inscription.id),
    )
    return {
        "to": mp["email"],
        "subject": SUBJECTS[template].format(event_name=event_name),
        "html": html,
    }


# ----------------------------
# Mailer Interface
# ----------------------------
class Mailer(ABC):
    @abstractmethod
    async def send(self, email: Email) -> None: ...


class ResendMailer(Mailer):
    def __init__(self, http: httpx.AsyncClient, api_key: str,
                 sender: str) -> None:
        self.http = http
        self.sender = sender
        self.headers = {"Authorization": f"Bearer {api_key}"}

    async def send(self, email: Email) -> None:
        try:
            r = await self.http.post(
                RESEND_API_URL,
                json={"from": self.sender, "to": [email["to"]],
                      "subject": email["subject"], "html": email["html"]},
                headers=self.headers,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Email to {email['to']} failed") from e


class OutboxMailer(Mailer):
    """Keeps messages in memory instead of sending them."""

    def __init__(self) -> None:
        self.outbox: List[Email] = []

    async def send(self, email: Email) -> None:
        logger.info("outbox: %s -> %s", email["subject"], email["to"])
        self.outbox.append(email)
