"""Parsing of scanned QR payloads.

Three payload shapes have been printed over time:

- a bare id (legacy inscription id, or a ticket id on its own),
- ``"<inscription_id>_<ticket_id>"``,
- a URL carrying either of the above in its ``id`` query parameter.

``parse_payload`` turns a raw string into one of the closed variants below
and ``lookup_plan`` lists the store lookups to try, in order. Neither does
any I/O.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Union
from urllib.parse import urlsplit, parse_qs

SEPARATOR = "_"


@dataclass(frozen=True)
class Composite:
    inscription_id: str
    ticket_id: str


@dataclass(frozen=True)
class Bare:
    id: str


@dataclass(frozen=True)
class Invalid:
    reason: str


Parsed = Union[Composite, Bare, Invalid]


def _id_from_url(raw: str) -> str | None:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    values = parse_qs(parts.query).get("id")
    if not values or not values[0].strip():
        return None
    return values[0].strip()


def parse_payload(raw: str) -> Parsed:
    raw = (raw or "").strip()
    if not raw:
        return Invalid("empty payload")

    if "http" in raw:
        ident = _id_from_url(raw)
        if ident is None:
            return Invalid('"id" parameter not found in URL')
    else:
        ident = raw

    if SEPARATOR in ident:
        inscription_id, _, ticket_id = ident.partition(SEPARATOR)
        if not inscription_id or not ticket_id:
            return Invalid(f"malformed composite id: {ident}")
        return Composite(inscription_id, ticket_id)
    return Bare(ident)


# ---- lookup plan

@dataclass(frozen=True)
class NestedLookup:
    """inscriptions[inscription_id].tickets[ticket_id]"""
    inscription_id: str
    ticket_id: str


@dataclass(frozen=True)
class LegacyLookup:
    """Inscription acting as its own ticket (one-ticket schema)."""
    inscription_id: str


@dataclass(frozen=True)
class ScanLookup:
    """Ticket id searched under every inscription."""
    ticket_id: str


Lookup = Union[NestedLookup, LegacyLookup, ScanLookup]


def lookup_plan(parsed: Composite | Bare) -> List[Lookup]:
    if isinstance(parsed, Composite):
        return [
            NestedLookup(parsed.inscription_id, parsed.ticket_id),
            ScanLookup(parsed.ticket_id),
        ]
    return [LegacyLookup(parsed.id), ScanLookup(parsed.id)]


def ticket_payload(inscription_id: str, ticket_id: str | None) -> str:
    """QR content for a ticket; legacy inscriptions encode their own id."""
    if ticket_id is None:
        return inscription_id
    return f"{inscription_id}{SEPARATOR}{ticket_id}"
